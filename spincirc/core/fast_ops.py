"""
Numba-compiled kernels for the per-step hot loops of the LLG integrator.
"""

import numpy as np
from numba import njit


@njit(cache=True)
def llg_rhs(magnetization, effective_fields, gamma, alpha):
    """
    Landau-Lifshitz form of the LLG equation.

    dm/dt = -γ/(1+α²) [ m × H + α m × (m × H) ]

    Args:
        magnetization: (n, 3) array of magnetization vectors
        effective_fields: (n, 3) array of effective fields (Tesla)
        gamma: (n,) gyromagnetic ratios in rad/(s·T)
        alpha: (n,) Gilbert damping parameters

    Returns:
        (n, 3) array of time derivatives
    """
    n = magnetization.shape[0]
    derivatives = np.zeros((n, 3))

    for i in range(n):
        mx = magnetization[i, 0]
        my = magnetization[i, 1]
        mz = magnetization[i, 2]
        hx = effective_fields[i, 0]
        hy = effective_fields[i, 1]
        hz = effective_fields[i, 2]

        # m × H
        cx = my * hz - mz * hy
        cy = mz * hx - mx * hz
        cz = mx * hy - my * hx

        # m × (m × H)
        dx = my * cz - mz * cy
        dy = mz * cx - mx * cz
        dz = mx * cy - my * cx

        prefactor = -gamma[i] / (1.0 + alpha[i] * alpha[i])
        derivatives[i, 0] = prefactor * (cx + alpha[i] * dx)
        derivatives[i, 1] = prefactor * (cy + alpha[i] * dy)
        derivatives[i, 2] = prefactor * (cz + alpha[i] * dz)

    return derivatives


@njit(cache=True)
def normalize_magnetization(magnetization):
    """
    Project magnetization vectors back onto the unit sphere.

    Args:
        magnetization: (n, 3) array of magnetization vectors

    Returns:
        Tuple of (normalized (n, 3) array, (n,) array of | |m| - 1 | before projection)
    """
    n = magnetization.shape[0]
    normalized = np.zeros_like(magnetization)
    drift = np.zeros(n)

    for i in range(n):
        magnitude = np.sqrt(magnetization[i, 0]**2 + magnetization[i, 1]**2
                            + magnetization[i, 2]**2)
        drift[i] = abs(magnitude - 1.0)
        if magnitude > 0:
            normalized[i, 0] = magnetization[i, 0] / magnitude
            normalized[i, 1] = magnetization[i, 1] / magnitude
            normalized[i, 2] = magnetization[i, 2] / magnitude
        else:
            # Degenerate vector, fall back to +z
            normalized[i, 2] = 1.0

    return normalized, drift


@njit(cache=True)
def zeeman_energy(magnetization, effective_fields):
    """Reduced energy -Σ m·H (Tesla) of the given field."""
    energy = 0.0
    for i in range(magnetization.shape[0]):
        energy -= (magnetization[i, 0] * effective_fields[i, 0]
                   + magnetization[i, 1] * effective_fields[i, 1]
                   + magnetization[i, 2] * effective_fields[i, 2])
    return energy
