"""
Interior penalty keeping the protein density inside (0, 1).

Physics:
    E = -lambda_phi sum_i (ln phi_i + ln(1 - phi_i))
    mu_i = lambda_phi (1 / phi_i - 1 / (1 - phi_i))
"""

import numpy as np

from ..exceptions import GeometryError
from .types import TermResult, TermContext


def check_density_range(phi: np.ndarray) -> None:
    """Raise GeometryError if any density is outside the open interval (0, 1)."""
    outside = (phi <= 0.0) | (phi >= 1.0)
    if outside.any():
        idx = int(np.flatnonzero(outside)[0])
        raise GeometryError(
            f"Protein density {phi[idx]:.6g} at vertex {idx} is outside (0, 1)"
        )


def compute_entropy(geometry, mesh, params, context: TermContext) -> TermResult:
    weight = params.protein.entropy_weight
    phi = np.asarray(mesh.protein_density)
    check_density_range(phi)
    energy = -weight * float(np.sum(np.log(phi) + np.log1p(-phi)))
    potential = weight * (1.0 / phi - 1.0 / (1.0 - phi))
    return TermResult(energy=energy, potential=potential)
