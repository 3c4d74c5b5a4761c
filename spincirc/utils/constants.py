"""Physical constants (SI units)."""

import numpy as np

PHYSICAL_CONSTANTS = {
    # Boltzmann constant
    'kB': 1.380649e-23,  # J/K

    # Reduced Planck constant
    'hbar': 1.054571817e-34,  # J·s

    # Elementary charge
    'e': 1.602176634e-19,  # C

    # Bohr magneton
    'mu_B': 9.2740100783e-24,  # J/T

    # Gyromagnetic ratio for electron
    'gamma_e': 1.76085963e11,  # rad/(s·T)

    # Vacuum permeability
    'mu_0': 4 * np.pi * 1e-7,  # H/m
}

# ħ/(2e): converts a spin current in amperes to angular momentum flux
SPIN_CURRENT_TO_TORQUE = PHYSICAL_CONSTANTS['hbar'] / (2 * PHYSICAL_CONSTANTS['e'])
