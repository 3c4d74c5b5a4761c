"""
Layer geometry and multilayer stack definitions.

A stack is an ordered series of layers carrying current along their
``length``. For circuit purposes every layer is one element, and an extra
interface element is inserted wherever a ferromagnet meets a normal metal.
N elements connect N + 1 nodes in series; node 0 and node N are the outer
contacts.
"""

import logging
from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .materials import Material
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

UNIT_NORM_TOLERANCE = 1e-6


@dataclass(frozen=True)
class LayerGeometry:
    """Layer dimensions in meters; current flows along ``length``."""

    length: float
    width: float
    thickness: float

    def __post_init__(self):
        for name in ("length", "width", "thickness"):
            value = getattr(self, name)
            if not np.isfinite(value) or not value > 0:
                raise ConfigurationError(f"Layer {name} must be a positive length",
                                         dimension=name, value=value)

    @property
    def cross_section(self) -> float:
        return self.width * self.thickness

    @property
    def volume(self) -> float:
        return self.length * self.width * self.thickness


@dataclass(frozen=True)
class Layer:
    """One layer of a stack. Materials are shared by reference."""

    material: Material
    geometry: LayerGeometry
    name: Optional[str] = None

    @property
    def is_magnetic(self) -> bool:
        return self.material.is_magnetic

    @property
    def label(self) -> str:
        return self.name or self.material.name


class Element(NamedTuple):
    """A two-terminal circuit element between ``node`` and ``node + 1``."""

    kind: str  # "bulk" or "interface"
    layer: int  # bulk: its own layer; interface: the ferromagnetic neighbour
    node: int
    normal_layer: Optional[int] = None  # interface only


LayerSpec = Union[Layer, Tuple[Material, LayerGeometry]]


class MultilayerStack:
    """
    Ordered, immutable sequence of layers with its circuit layout.
    """

    def __init__(self, layers: Sequence[LayerSpec]):
        if len(layers) == 0:
            raise ConfigurationError("A stack needs at least one layer")

        converted = []
        for spec in layers:
            if isinstance(spec, Layer):
                converted.append(spec)
            else:
                material, geometry = spec
                converted.append(Layer(material, geometry))
        self._layers: Tuple[Layer, ...] = tuple(converted)
        self._elements: Tuple[Element, ...] = self._layout()

    def _layout(self) -> Tuple[Element, ...]:
        elements: List[Element] = []
        for index, layer in enumerate(self._layers):
            if index > 0:
                previous = self._layers[index - 1]
                if previous.is_magnetic != layer.is_magnetic:
                    magnetic = index - 1 if previous.is_magnetic else index
                    normal = index if previous.is_magnetic else index - 1
                    elements.append(Element("interface", magnetic, len(elements), normal))
            elements.append(Element("bulk", index, len(elements)))
        return tuple(elements)

    @property
    def layers(self) -> Tuple[Layer, ...]:
        return self._layers

    @property
    def elements(self) -> Tuple[Element, ...]:
        return self._elements

    @property
    def n_layers(self) -> int:
        return len(self._layers)

    @property
    def n_nodes(self) -> int:
        return len(self._elements) + 1

    @property
    def magnetic_indices(self) -> Tuple[int, ...]:
        """Layer indices of the ferromagnetic layers, in stack order."""
        return tuple(i for i, layer in enumerate(self._layers) if layer.is_magnetic)

    @property
    def n_magnetic(self) -> int:
        return len(self.magnetic_indices)

    def bulk_element(self, layer_index: int) -> int:
        """Element index of a layer's bulk element."""
        for k, element in enumerate(self._elements):
            if element.kind == "bulk" and element.layer == layer_index:
                return k
        raise ConfigurationError(f"No layer with index {layer_index}",
                                 n_layers=self.n_layers)

    def magnetic_parameter(self, attribute: str) -> np.ndarray:
        """Per-magnetic-layer material attribute as an array."""
        return np.array([getattr(self._layers[i].material, attribute)
                         for i in self.magnetic_indices], dtype=float)

    def magnetic_volumes(self) -> np.ndarray:
        return np.array([self._layers[i].geometry.volume for i in self.magnetic_indices])

    def validate_magnetization(self, magnetization) -> Tuple[np.ndarray, List[int]]:
        """
        Check a magnetization configuration against this stack.

        Vectors off unit norm by more than 1e-6 are normalised and reported
        with a logged warning.

        Returns:
            Tuple of (normalised (n_magnetic, 3) array, offending indices)
        """
        m = np.array(magnetization, dtype=float)
        if m.size % 3:
            raise ConfigurationError("Magnetization must be a list of 3-vectors",
                                     shape=m.shape)
        m = m.reshape(-1, 3)
        if m.shape[0] != self.n_magnetic:
            raise ConfigurationError(
                f"Expected {self.n_magnetic} magnetization vectors, got {m.shape[0]}",
                magnetic_layers=self.magnetic_indices)
        if not np.all(np.isfinite(m)):
            raise ConfigurationError("Magnetization contains non-finite values")

        norms = np.linalg.norm(m, axis=1)
        if np.any(norms == 0):
            raise ConfigurationError("Magnetization vectors must be nonzero",
                                     layers=[self.magnetic_indices[i]
                                             for i in np.flatnonzero(norms == 0)])

        offending = [int(i) for i in np.flatnonzero(np.abs(norms - 1.0) > UNIT_NORM_TOLERANCE)]
        if offending:
            logger.warning("Magnetization of layers %s not unit norm (norms %s); normalized",
                           [self.magnetic_indices[i] for i in offending],
                           np.round(norms[offending], 8).tolist())
        return m / norms[:, None], offending

    def at_temperature(self, temperature: float) -> "MultilayerStack":
        """Same stack with every material evaluated at ``temperature``."""
        return MultilayerStack([Layer(layer.material.at_temperature(temperature),
                                      layer.geometry, layer.name)
                                for layer in self._layers])

    def __len__(self) -> int:
        return len(self._layers)

    def __repr__(self) -> str:
        names = "/".join(layer.label for layer in self._layers)
        return f"MultilayerStack({names}, nodes={self.n_nodes})"
