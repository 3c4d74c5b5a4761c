"""
Boundary-value solve of the nodal spin/charge circuit.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, Mapping, Union

import numpy as np
import scipy.sparse as sp
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve
from scipy.linalg.lapack import dgecon
from scipy.sparse.linalg import LinearOperator, gmres, spilu

from .boundary import BoundaryCondition, normalize_boundary_conditions, two_terminal_bias
from .conductance import ConductanceMatrix
from ..exceptions import ConfigurationError, NumericalInstabilityError, SingularSystemError

logger = logging.getLogger(__name__)

METHODS = ("lu", "gmres")


@dataclass
class TransportSolution:
    """
    Potentials and currents of a solved stack.

    Attributes:
        potentials: (n_nodes, 4) charge and spin potentials (V)
        node_currents: (n_nodes, 4) external 4-current injected at each node (A)
        element_currents: (n_elements, 2, 4) terminal currents, left to right
        matrix: ConductanceMatrix the solution belongs to
        boundary_conditions: Conditions the solve imposed
        kirchhoff_residual: Relative current imbalance at the free nodes
    """

    potentials: np.ndarray
    node_currents: np.ndarray
    element_currents: np.ndarray
    matrix: ConductanceMatrix
    boundary_conditions: Dict[int, BoundaryCondition] = field(default_factory=dict)
    kirchhoff_residual: float = 0.0

    @property
    def charge_potential(self) -> np.ndarray:
        return self.potentials[:, 0]

    @property
    def spin_potential(self) -> np.ndarray:
        return self.potentials[:, 1:]

    @property
    def charge_current(self) -> float:
        """Charge current through the stack, positive left to right."""
        return float(self.element_currents[0, 0, 0])

    @property
    def spin_current(self) -> np.ndarray:
        """(n_nodes, 3) spin current flowing rightwards out of each node."""
        currents = np.empty((self.matrix.n_nodes, 3))
        currents[:-1] = self.element_currents[:, 0, 1:]
        currents[-1] = self.element_currents[-1, 1, 1:]
        return currents

    @property
    def total_resistance(self) -> float:
        """Two-terminal resistance between the outer nodes."""
        current = self.charge_current
        if current == 0:
            return float("inf")
        return float((self.charge_potential[0] - self.charge_potential[-1]) / current)

    def absorbed_spin_current(self, layer: int) -> np.ndarray:
        """Net spin current deposited in a layer's bulk element."""
        for k, element in enumerate(self.matrix.elements):
            if element.kind == "bulk" and element.layer == layer:
                return self.element_currents[k, 0, 1:] - self.element_currents[k, 1, 1:]
        raise ConfigurationError(f"No layer with index {layer}")

    def spin_torque(self, layer: int) -> np.ndarray:
        """Absorbed spin current transverse to a magnetic layer's magnetization (A)."""
        try:
            row = self.matrix.magnetic_indices.index(layer)
        except ValueError:
            raise ConfigurationError(f"Layer {layer} is not magnetic",
                                     magnetic_layers=self.matrix.magnetic_indices) from None
        m = self.matrix.magnetization[row]
        absorbed = self.absorbed_spin_current(layer)
        return absorbed - np.dot(absorbed, m) * m

    def transverse_spin_currents(self) -> np.ndarray:
        """(n_magnetic, 3) absorbed transverse spin currents, stack order."""
        if not self.matrix.magnetic_indices:
            return np.zeros((0, 3))
        return np.array([self.spin_torque(layer) for layer in self.matrix.magnetic_indices])

    def magnetoresistance_ratio(self, reference: Union["TransportSolution", float]) -> float:
        """(R - R_ref) / R_ref against a reference solution or resistance."""
        if isinstance(reference, TransportSolution):
            reference = reference.total_resistance
        return magnetoresistance_ratio(self.total_resistance, reference)


def magnetoresistance_ratio(resistance: float, reference_resistance: float) -> float:
    if not reference_resistance > 0 or not np.isfinite(reference_resistance):
        raise ConfigurationError("Reference resistance must be positive and finite",
                                 value=reference_resistance)
    return float((resistance - reference_resistance) / reference_resistance)


class TransportSolver:
    """
    Stateless solver for node potentials under boundary conditions.

    Voltage nodes are eliminated and the reduced system of the free nodes is
    solved by LU factorisation, or by ILU-preconditioned GMRES on the sparse
    matrix for large stacks.
    """

    def __init__(
        self,
        condition_threshold: float = 1e12,
        kirchhoff_tolerance: float = 1e-9,
        method: str = "lu",
        iterative_tolerance: float = 1e-13,
    ):
        """
        Initialize transport solver.

        Args:
            condition_threshold: Largest acceptable condition number (1-norm)
            kirchhoff_tolerance: Relative tolerance of the post-solve current balance
            method: "lu" (direct) or "gmres" (iterative)
            iterative_tolerance: Relative residual target of GMRES
        """
        if method not in METHODS:
            raise ConfigurationError(f"Unknown transport solver method: {method}",
                                     valid=METHODS)
        self.condition_threshold = condition_threshold
        self.kirchhoff_tolerance = kirchhoff_tolerance
        self.method = method
        self.iterative_tolerance = iterative_tolerance

    def solve(
        self,
        matrix: ConductanceMatrix,
        boundary_conditions: Mapping[int, object],
    ) -> TransportSolution:
        """
        Solve for the node potentials and currents.

        Args:
            matrix: Assembled conductance matrix
            boundary_conditions: {node: BoundaryCondition or {type, value}}

        Returns:
            TransportSolution satisfying Kirchhoff's law at the free nodes
        """
        n_nodes = matrix.n_nodes
        conditions = normalize_boundary_conditions(boundary_conditions, n_nodes)
        voltage_nodes = sorted(k for k, bc in conditions.items() if bc.kind == "voltage")
        if not voltage_nodes:
            raise SingularSystemError("No voltage reference: potentials are undetermined",
                                      nodes=sorted(conditions))

        Y = matrix.matrix
        potentials = np.zeros(4 * n_nodes)
        injected = np.zeros(4 * n_nodes)
        for node, bc in conditions.items():
            dofs = slice(4 * node, 4 * node + 4)
            if bc.kind == "voltage":
                potentials[dofs] = bc.vector
            else:
                injected[dofs] = bc.vector

        fixed = np.concatenate([np.arange(4 * k, 4 * k + 4) for k in voltage_nodes])
        free = np.setdiff1d(np.arange(4 * n_nodes), fixed)
        free_nodes = sorted(set(range(n_nodes)) - set(voltage_nodes))

        if free.size:
            A = Y[np.ix_(free, free)]
            b = injected[free] - Y[np.ix_(free, fixed)] @ potentials[fixed]
            if self.method == "lu":
                potentials[free] = self._solve_direct(A, b, free_nodes)
            else:
                potentials[free] = self._solve_iterative(A, b, free_nodes)

        node_currents = Y @ potentials
        residual = self._kirchhoff_residual(Y, potentials, node_currents, injected, free)
        if residual > self.kirchhoff_tolerance:
            imbalance = np.abs(node_currents[free] - injected[free]).reshape(-1, 4).max(axis=1)
            worst = [free_nodes[i] for i in np.argsort(imbalance)[::-1][:3]]
            raise NumericalInstabilityError("Kirchhoff check failed after transport solve",
                                            residual=residual, nodes=worst,
                                            tolerance=self.kirchhoff_tolerance)

        V = potentials.reshape(n_nodes, 4)
        return TransportSolution(
            potentials=V,
            node_currents=node_currents.reshape(n_nodes, 4),
            element_currents=matrix.element_currents(V),
            matrix=matrix,
            boundary_conditions=conditions,
            kirchhoff_residual=residual,
        )

    def resistance(self, matrix: ConductanceMatrix, voltage: float = 1.0) -> float:
        """Two-terminal resistance with ``voltage`` across the outer nodes."""
        return self.solve(matrix, two_terminal_bias(matrix.n_nodes, voltage)).total_resistance

    def _solve_direct(self, A: np.ndarray, b: np.ndarray, free_nodes) -> np.ndarray:
        with warnings.catch_warnings():
            # Singular factors are reported through the condition estimate below
            warnings.simplefilter("ignore", LinAlgWarning)
            lu, piv = lu_factor(A)
        rcond, info = dgecon(lu, np.linalg.norm(A, 1), norm='1')
        condition = np.inf if info != 0 or rcond == 0 else 1.0 / rcond
        logger.debug("Reduced transport system: %d unknowns, condition number %.3g",
                     A.shape[0], condition)
        if not condition <= self.condition_threshold:
            raise SingularSystemError("Reduced transport system is singular or ill-conditioned",
                                      condition_number=condition,
                                      threshold=self.condition_threshold,
                                      nodes=free_nodes)
        return lu_solve((lu, piv), b)

    def _solve_iterative(self, A: np.ndarray, b: np.ndarray, free_nodes) -> np.ndarray:
        A_sparse = sp.csc_matrix(A)
        try:
            ilu = spilu(A_sparse)
        except RuntimeError as exc:
            raise SingularSystemError("Reduced transport system is singular",
                                      nodes=free_nodes, reason=str(exc)) from exc
        preconditioner = LinearOperator(A.shape, ilu.solve)
        x, info = gmres(A_sparse, b, rtol=self.iterative_tolerance, atol=0.0,
                        M=preconditioner, maxiter=10 * A.shape[0])
        logger.debug("GMRES on %d unknowns finished with info=%d", A.shape[0], info)
        if info != 0:
            raise SingularSystemError("GMRES did not converge on the reduced transport system",
                                      nodes=free_nodes, info=info)
        return x

    @staticmethod
    def _kirchhoff_residual(Y, potentials, node_currents, injected, free) -> float:
        if not free.size:
            return 0.0
        scale = np.max(np.abs(Y)) * np.max(np.abs(potentials))
        scale = max(scale, np.max(np.abs(injected)), np.finfo(float).tiny)
        return float(np.max(np.abs(node_currents[free] - injected[free])) / scale)
