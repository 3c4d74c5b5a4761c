"""Self-consistent transport/dynamics coupling."""

from .orchestrator import CoupledResult, CouplingOrchestrator

__all__ = ["CoupledResult", "CouplingOrchestrator"]
