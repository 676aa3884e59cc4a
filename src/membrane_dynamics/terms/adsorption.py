"""
Protein adsorption and aggregation energies.

Physics:
    adsorption:  E = epsilon sum_i phi_i A_i,    mu_i = -epsilon A_i
    aggregation: E = chi sum_i phi_i^2 A_i,      mu_i = -2 chi phi_i A_i

Both depend on shape only through the dual areas A_i.
"""

import numpy as np

from ..geometry import GeometrySnapshot, scatter_face_vectors
from .types import TermResult, TermContext


def _area_weighted_force(geometry: GeometrySnapshot, mesh, weights: np.ndarray) -> np.ndarray:
    """-d/dx of sum_i weights_i A_i with weights held fixed."""
    face_w = weights[mesh.faces].sum(axis=1) / 3.0
    grad = scatter_face_vectors(mesh.n_vertices, mesh.faces,
                                face_w[:, None, None] * geometry.face_area_gradients)
    return -grad


def compute_adsorption(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    eps = params.adsorption.epsilon
    phi = np.asarray(mesh.protein_density)
    weights = eps * phi
    return TermResult(
        energy=float(np.sum(weights * geometry.vertex_areas)),
        force=_area_weighted_force(geometry, mesh, weights),
        potential=-eps * geometry.vertex_areas,
    )


def compute_aggregation(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    chi = params.aggregation.chi
    phi = np.asarray(mesh.protein_density)
    weights = chi * phi * phi
    return TermResult(
        energy=float(np.sum(weights * geometry.vertex_areas)),
        force=_area_weighted_force(geometry, mesh, weights),
        potential=-2.0 * chi * phi * geometry.vertex_areas,
    )
