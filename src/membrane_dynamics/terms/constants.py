"""
Constants for the membrane energy terms.

Unit system (reduced):
- Length, energy and time in caller-chosen consistent units
- Temperature in energy units (k_B = 1)
"""

from typing import Final

import numpy as np

# Boltzmann constant in reduced units
K_BOLTZMANN: Final[float] = 1.0


def gaussian(distance: np.ndarray, std_dev: float) -> np.ndarray:
    """Normalized 1D Gaussian profile evaluated at ``distance``."""
    return np.exp(-0.5 * (distance / std_dev) ** 2) / (std_dev * np.sqrt(2.0 * np.pi))
