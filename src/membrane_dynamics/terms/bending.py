"""
Helfrich bending energy with protein-dependent rigidity.

Physics:
    E = sum_i Kb_i (H_i - H0_i)^2 A_i

    linear:  Kb_i = Kb + Kbc phi_i,               H0_i = H0c phi_i
    hill:    Kb_i = Kb + Kbc phi^2 / (1 + phi^2),  H0_i = H0c phi^2 / (1 + phi^2)

With M_i the integrated mean curvature and A_i the dual area,
E_i = Kb_i (M_i - H0_i A_i)^2 / A_i, so

    dE_i/dM_i = 2 Kb_i (H_i - H0_i)
    dE_i/dA_i = Kb_i (H0_i^2 - H_i^2)

and the shape gradient follows from dM (edge length and dihedral
gradients) and dA (face area gradients).
"""

import numpy as np

from ..geometry import GeometrySnapshot, scatter_edge_vectors, scatter_face_vectors
from .types import TermResult, TermContext


def bending_coefficients(phi: np.ndarray, bending):
    """
    Protein-dependent rigidity and spontaneous curvature.

    Returns:
        (Kb, dKb/dphi, H0, dH0/dphi), each shape (N,).
    """
    if bending.relation == "linear":
        shape = phi
        dshape = np.ones_like(phi)
    elif bending.relation == "hill":
        phi2 = phi * phi
        shape = phi2 / (1.0 + phi2)
        dshape = 2.0 * phi / (1.0 + phi2) ** 2
    else:
        raise ValueError(f"Unknown bending relation: {bending.relation}")
    Kb = bending.Kb + bending.Kbc * shape
    H0 = bending.H0c * shape
    return Kb, bending.Kbc * dshape, H0, bending.H0c * dshape


def compute_bending(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    conn = mesh.connectivity
    phi = np.asarray(mesh.protein_density)
    Kb, dKb, H0, dH0 = bending_coefficients(phi, params.bending)

    A = geometry.vertex_areas
    H = geometry.mean_curvature
    dH = H - H0
    energy = float(np.sum(Kb * dH * dH * A))

    # dM contribution, per edge: w_e (theta de_l + l de_theta)
    a = 2.0 * Kb * dH
    i, j = conn.edges[:, 0], conn.edges[:, 1]
    w = 0.25 * (a[i] + a[j])
    e_hat = geometry.edge_vectors / geometry.edge_lengths[:, None]
    stencil = (w * geometry.edge_lengths)[:, None, None] * geometry.dihedral_gradients
    length_term = (w * geometry.dihedral_angles)[:, None] * e_hat
    stencil[:, 0] -= length_term
    stencil[:, 1] += length_term
    grad = scatter_edge_vectors(mesh.n_vertices, conn, stencil)

    # dA contribution, per face: mean of corner weights times dA_f
    b = Kb * (H0 * H0 - H * H)
    face_w = b[conn.faces].sum(axis=1) / 3.0
    grad += scatter_face_vectors(mesh.n_vertices, conn.faces,
                                 face_w[:, None, None] * geometry.face_area_gradients)

    potential = -A * (dH * dH * dKb - 2.0 * Kb * dH * dH0)
    return TermResult(energy=energy, force=-grad, potential=potential)
