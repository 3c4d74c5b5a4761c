"""Random number utilities.

Generators are always created and passed explicitly; nothing here touches
numpy's global random state.
"""

import numpy as np
from typing import Optional


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Create an independent random generator for one simulation run.

    Args:
        seed: Random seed value (None draws fresh OS entropy)

    Returns:
        numpy Generator
    """
    return np.random.default_rng(seed)


def random_unit_vectors(n: int, rng: np.random.Generator) -> np.ndarray:
    """
    Generate random unit vectors uniformly distributed on sphere.

    Args:
        n: Number of vectors to generate
        rng: Random generator supplied by the caller

    Returns:
        Array of shape (n, 3) with unit vectors
    """
    # Uniform in azimuth and cos(theta) gives a uniform sphere
    phi = rng.uniform(0, 2 * np.pi, n)
    cos_theta = rng.uniform(-1, 1, n)
    sin_theta = np.sqrt(1 - cos_theta**2)

    x = sin_theta * np.cos(phi)
    y = sin_theta * np.sin(phi)
    z = cos_theta

    return np.column_stack((x, y, z))
