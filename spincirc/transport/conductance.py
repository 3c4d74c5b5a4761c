"""
Assembly of 4x4 spin/charge conductance blocks into the nodal matrix of a
multilayer stack.

Every node carries a 4-component potential (charge, spin x, spin y, spin z).
A two-terminal element between nodes i and j draws the 4-current

    I_i = G_se (V_i - V_j) + G_sh V_i

out of node i, where G_se is its series and G_sh its shunt (spin relaxation)
conductance. Ferromagnetic elements are built in a local frame whose spin z
axis is the magnetization and rotated into the lab frame by an explicit 3x3
rotation of the spin sub-block, so the matrix must be rebuilt whenever the
magnetization changes.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..core.materials import Material
from ..core.structure import Element, Layer, LayerGeometry, LayerSpec, MultilayerStack
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# L/λ beyond which a spin channel is relaxed to machine precision
MAX_RELAXATION_RATIO = 50.0
COLLINEAR_TOLERANCE = 1e-12


@dataclass(frozen=True)
class ConductanceMatrix:
    """
    Assembled nodal conductance matrix of a stack.

    Attributes:
        matrix: (4N, 4N) nodal matrix, node k occupying rows/cols 4k..4k+3
        series: (n_elements, 4, 4) series blocks in the lab frame
        shunt: (n_elements, 4, 4) shunt blocks in the lab frame
        elements: circuit layout of the stack
        magnetization: (n_magnetic, 3) unit vectors the matrix was built for
        magnetic_indices: layer index of each magnetization row
        reciprocal: True when collinear and free of antisymmetric mixing terms
    """

    matrix: np.ndarray
    series: np.ndarray
    shunt: np.ndarray
    elements: Tuple[Element, ...]
    magnetization: np.ndarray
    magnetic_indices: Tuple[int, ...]
    reciprocal: bool

    @property
    def n_nodes(self) -> int:
        return self.matrix.shape[0] // 4

    @property
    def n_elements(self) -> int:
        return len(self.elements)

    def block(self, i: int, j: int) -> np.ndarray:
        """4x4 block coupling node i to node j."""
        return self.matrix[4 * i:4 * i + 4, 4 * j:4 * j + 4]

    def conservation_residual(self) -> float:
        """
        Relative current-conservation residual.

        Each row summed over the charge columns must vanish (a uniform
        potential shift drives no current), and the charge rows must sum to
        zero over all nodes (no charge is created inside the stack).
        """
        scale = np.max(np.abs(self.matrix))
        if scale == 0:
            return 0.0
        row_sums = self.matrix[:, 0::4].sum(axis=1)
        charge_sums = self.matrix[0::4, :].sum(axis=0)
        return float(max(np.max(np.abs(row_sums)), np.max(np.abs(charge_sums))) / scale)

    def check_conservation(self, tolerance: float = 1e-9) -> bool:
        return self.conservation_residual() <= tolerance

    def symmetry_residual(self) -> float:
        scale = np.max(np.abs(self.matrix))
        if scale == 0:
            return 0.0
        return float(np.max(np.abs(self.matrix - self.matrix.T)) / scale)

    def is_symmetric(self, tolerance: float = 1e-9) -> bool:
        return self.symmetry_residual() <= tolerance

    def element_currents(self, potentials: np.ndarray) -> np.ndarray:
        """
        Terminal 4-currents of every element, flowing left to right.

        Args:
            potentials: (n_nodes, 4) node potentials

        Returns:
            (n_elements, 2, 4) array; [:, 0] enters the element at its left
            node, [:, 1] leaves it at its right node
        """
        currents = np.zeros((self.n_elements, 2, 4))
        for k, element in enumerate(self.elements):
            v_left = potentials[element.node]
            v_right = potentials[element.node + 1]
            drive = self.series[k] @ (v_left - v_right)
            currents[k, 0] = drive + self.shunt[k] @ v_left
            currents[k, 1] = drive - self.shunt[k] @ v_right
        return currents


def spin_rotation(direction: np.ndarray) -> np.ndarray:
    """
    Rotation matrix taking the local spin axis +z onto ``direction``.

    Uses Rodrigues' formula about z × m; the antiparallel case is a rotation
    by π about x.
    """
    m = np.asarray(direction, dtype=float)
    m = m / np.linalg.norm(m)
    z = np.array([0.0, 0.0, 1.0])
    v = np.cross(z, m)
    c = float(np.dot(z, m))
    if c < -1.0 + 1e-12:
        return np.diag([1.0, -1.0, -1.0])
    vx = np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0],
    ])
    return np.eye(3) + vx + vx @ vx / (1.0 + c)


def _relaxation_factors(length: float, relaxation_length: float) -> Tuple[float, float]:
    """
    Series and shunt factors of a diffusive spin channel of the given length.

    Returns (x / sinh x, x tanh(x/2)) with x = L/λ, so a channel much shorter
    than λ conducts like the charge channel and does not relax.
    """
    if relaxation_length == 0:
        x = MAX_RELAXATION_RATIO
    else:
        x = min(length / relaxation_length, MAX_RELAXATION_RATIO)
    if x < 1e-8:
        return 1.0, 0.0
    return x / np.sinh(x), x * np.tanh(x / 2.0)


def normal_metal_blocks(material: Material, geometry: LayerGeometry) -> Tuple[np.ndarray, np.ndarray]:
    """Series and shunt blocks of a normal-metal layer."""
    a = geometry.cross_section / (material.resistivity * geometry.length)
    s, h = _relaxation_factors(geometry.length, material.spin_diffusion_length)
    series = a * np.diag([1.0, s, s, s])
    shunt = a * np.diag([0.0, h, h, h])
    return series, shunt


def ferromagnet_blocks(material: Material, geometry: LayerGeometry) -> Tuple[np.ndarray, np.ndarray]:
    """
    Series and shunt blocks of a ferromagnetic layer in its local frame.

    The longitudinal spin channel couples to charge through the bulk
    polarization β; transverse spin dephases over ``dephasing_length``.
    """
    a = geometry.cross_section / (material.resistivity * geometry.length)
    beta = material.polarization
    s, h = _relaxation_factors(geometry.length, material.spin_diffusion_length)
    s_t, h_t = _relaxation_factors(geometry.length, material.dephasing_length)

    series = np.zeros((4, 4))
    series[0, 0] = a
    series[0, 3] = series[3, 0] = beta * a
    series[3, 3] = a * (beta**2 + (1.0 - beta**2) * s)
    series[1, 1] = series[2, 2] = a * s_t

    shunt = a * np.diag([0.0, h_t, h_t, (1.0 - beta**2) * h])
    return series, shunt


def interface_blocks(material: Material, cross_section: float, orientation: float) -> np.ndarray:
    """
    Series block of a ferromagnet/normal-metal interface in the local frame.

    Args:
        material: The ferromagnet's material
        cross_section: Contact area (m²)
        orientation: +1 when the normal metal is on the left, -1 otherwise

    Returns:
        4x4 series conductance (interfaces have no shunt)
    """
    g = cross_section / material.interface_resistance_area
    beta = material.effective_interface_polarization
    g_r = cross_section * material.mixing_conductance
    g_i = cross_section * material.mixing_conductance_imag * orientation

    series = np.zeros((4, 4))
    series[0, 0] = series[3, 3] = g
    series[0, 3] = series[3, 0] = beta * g
    series[1, 1] = series[2, 2] = g_r
    series[1, 2] = g_i
    series[2, 1] = -g_i
    return series


def _rotate(block: np.ndarray, rotation: np.ndarray) -> np.ndarray:
    u = np.eye(4)
    u[1:, 1:] = rotation
    return u @ block @ u.T


def _unit_vectors(magnetization, n_magnetic: int) -> np.ndarray:
    m = np.asarray(magnetization, dtype=float)
    if m.size != 3 * n_magnetic:
        raise ConfigurationError(f"Expected {n_magnetic} magnetization vectors",
                                 shape=m.shape)
    m = m.reshape(n_magnetic, 3)
    norms = np.linalg.norm(m, axis=1)
    if not np.all(np.isfinite(m)) or np.any(norms == 0):
        raise ConfigurationError("Magnetization vectors must be finite and nonzero",
                                 norms=norms.tolist())
    return m / norms[:, None]


def _is_collinear(m: np.ndarray) -> bool:
    if len(m) < 2:
        return True
    return bool(np.all(np.linalg.norm(np.cross(m[0], m[1:]), axis=1) < COLLINEAR_TOLERANCE))


class ConductanceMatrixBuilder:
    """
    Pure builder of conductance matrices.

    Identical inputs give a bit-identical matrix; the builder keeps no state
    beyond its immutable options.
    """

    def __init__(
        self,
        temperature: Optional[float] = None,
        conservation_tolerance: float = 1e-9,
    ):
        """
        Initialize the builder.

        Args:
            temperature: Evaluate materials at this temperature (None = as given)
            conservation_tolerance: Relative tolerance of the conservation self-check
        """
        self.temperature = temperature
        self.conservation_tolerance = conservation_tolerance

    def build(
        self,
        stack: Union[MultilayerStack, Sequence[LayerSpec]],
        magnetization=None,
    ) -> ConductanceMatrix:
        """
        Assemble the nodal conductance matrix of ``stack``.

        Args:
            stack: MultilayerStack or ordered (Material, LayerGeometry) pairs
            magnetization: (n_magnetic, 3) magnetization directions

        Returns:
            ConductanceMatrix that passed the current-conservation self-check
        """
        if not isinstance(stack, MultilayerStack):
            stack = MultilayerStack(stack)
        if magnetization is None:
            if stack.n_magnetic:
                raise ConfigurationError("Stack has magnetic layers; magnetization is required",
                                         magnetic_layers=stack.magnetic_indices)
            magnetization = np.zeros((0, 3))

        m = _unit_vectors(magnetization, stack.n_magnetic)
        rotations = {layer: spin_rotation(m[row])
                     for row, layer in enumerate(stack.magnetic_indices)}
        layers = [self._resolve(layer) for layer in stack.layers]

        n_elements = len(stack.elements)
        series = np.zeros((n_elements, 4, 4))
        shunt = np.zeros((n_elements, 4, 4))
        has_mixing_torque = False

        for k, element in enumerate(stack.elements):
            layer = layers[element.layer]
            if element.kind == "interface":
                normal = layers[element.normal_layer]
                area = min(layer.geometry.cross_section, normal.geometry.cross_section)
                self._check_area(area, element)
                orientation = 1.0 if element.normal_layer < element.layer else -1.0
                local = interface_blocks(layer.material, area, orientation)
                series[k] = _rotate(local, rotations[element.layer])
                has_mixing_torque |= layer.material.mixing_conductance_imag != 0
            elif layer.is_magnetic:
                self._check_area(layer.geometry.cross_section, element)
                local_se, local_sh = ferromagnet_blocks(layer.material, layer.geometry)
                series[k] = _rotate(local_se, rotations[element.layer])
                shunt[k] = _rotate(local_sh, rotations[element.layer])
            else:
                self._check_area(layer.geometry.cross_section, element)
                series[k], shunt[k] = normal_metal_blocks(layer.material, layer.geometry)

        matrix = np.zeros((4 * stack.n_nodes, 4 * stack.n_nodes))
        for k, element in enumerate(stack.elements):
            i = 4 * element.node
            j = i + 4
            matrix[i:i + 4, i:i + 4] += series[k] + shunt[k]
            matrix[j:j + 4, j:j + 4] += series[k] + shunt[k]
            matrix[i:i + 4, j:j + 4] -= series[k]
            matrix[j:j + 4, i:i + 4] -= series[k]

        result = ConductanceMatrix(
            matrix=matrix,
            series=series,
            shunt=shunt,
            elements=stack.elements,
            magnetization=m.copy(),
            magnetic_indices=stack.magnetic_indices,
            reciprocal=_is_collinear(m) and not has_mixing_torque,
        )

        residual = result.conservation_residual()
        if not residual <= self.conservation_tolerance:
            raise ConfigurationError("Conductance matrix fails current conservation",
                                     residual=residual,
                                     tolerance=self.conservation_tolerance)
        logger.debug("Assembled %d-node conductance matrix for %r (reciprocal=%s, "
                     "conservation residual %.2e)", stack.n_nodes, stack,
                     result.reciprocal, residual)
        return result

    def _resolve(self, layer: Layer) -> Layer:
        if self.temperature is None:
            return layer
        return Layer(layer.material.at_temperature(self.temperature), layer.geometry, layer.name)

    @staticmethod
    def _check_area(area: float, element: Element) -> None:
        if not area > 0:
            raise ConfigurationError("Degenerate geometry: zero cross-section",
                                     element=element.node, layer=element.layer)
