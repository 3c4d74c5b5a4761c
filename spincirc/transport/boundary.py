"""
Boundary conditions applied to stack nodes at solve time.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping

import numpy as np

from ..exceptions import ConfigurationError

KINDS = ("voltage", "current")


@dataclass(frozen=True)
class BoundaryCondition:
    """
    Imposed 4-vector (charge, spin x, spin y, spin z) at one node.

    A voltage condition fixes all four potentials of the node; a current
    condition injects a 4-current into it.
    """

    kind: str
    value: tuple

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ConfigurationError(f"Unknown boundary condition type: {self.kind}",
                                     valid=KINDS)
        try:
            value = np.atleast_1d(np.asarray(self.value, dtype=float))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("Boundary value must be numeric",
                                     value=self.value) from exc
        if value.shape == (1,):
            value = np.array([value[0], 0.0, 0.0, 0.0])
        if value.shape != (4,) or not np.all(np.isfinite(value)):
            raise ConfigurationError("Boundary value must be a finite scalar or 4-vector",
                                     value=self.value)
        object.__setattr__(self, "value", tuple(float(v) for v in value))

    @classmethod
    def voltage(cls, charge: float, spin=(0.0, 0.0, 0.0)) -> "BoundaryCondition":
        return cls("voltage", (charge, *spin))

    @classmethod
    def current(cls, charge: float, spin=(0.0, 0.0, 0.0)) -> "BoundaryCondition":
        return cls("current", (charge, *spin))

    @property
    def vector(self) -> np.ndarray:
        return np.array(self.value)


def normalize_boundary_conditions(spec: Mapping[int, Any], n_nodes: int) -> Dict[int, BoundaryCondition]:
    """
    Convert a boundary specification into {node: BoundaryCondition}.

    Entries may be BoundaryCondition instances, ``{"type": ..., "value": ...}``
    mappings or ``(type, value)`` pairs. Negative node indices count from
    the last node.
    """
    if spec is None or len(spec) == 0:
        raise ConfigurationError("No boundary conditions given; the system is under-determined")

    conditions: Dict[int, BoundaryCondition] = {}
    for node, entry in spec.items():
        try:
            index = int(node)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Boundary node {node!r} is not an integer index",
                                     nodes=[node]) from exc
        if index < 0:
            index += n_nodes
        if not 0 <= index < n_nodes:
            raise ConfigurationError(f"Boundary node {node} out of range",
                                     nodes=[node], n_nodes=n_nodes)
        if index in conditions:
            raise ConfigurationError(f"Node {index} constrained twice", nodes=[index])

        conditions[index] = _parse_entry(index, entry)
    return conditions


def _parse_entry(node: int, entry: Any) -> BoundaryCondition:
    if isinstance(entry, BoundaryCondition):
        return entry
    if isinstance(entry, Mapping):
        if "value" not in entry:
            raise ConfigurationError(f"Boundary condition on node {node} has no value",
                                     nodes=[node], entry=dict(entry))
        kind, value = entry.get("type", entry.get("kind")), entry["value"]
    else:
        try:
            kind, value = entry
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Boundary condition on node {node} must be a "
                                     "{type, value} mapping or a (type, value) pair",
                                     nodes=[node], entry=entry) from exc
    try:
        return BoundaryCondition(kind, value)
    except ConfigurationError as exc:
        exc.context.setdefault("nodes", [node])
        raise


def two_terminal_bias(n_nodes: int, voltage: float) -> Dict[int, BoundaryCondition]:
    """Voltage ``voltage`` on node 0 and ground on the last node."""
    return {0: BoundaryCondition.voltage(voltage),
            n_nodes - 1: BoundaryCondition.voltage(0.0)}
