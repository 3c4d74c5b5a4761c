"""Materials, geometry and compiled kernels shared by transport and dynamics."""

from .materials import Material, MaterialRegistry, default_registry
from .structure import LayerGeometry, Layer, MultilayerStack

__all__ = ["Material", "MaterialRegistry", "default_registry",
           "LayerGeometry", "Layer", "MultilayerStack"]
