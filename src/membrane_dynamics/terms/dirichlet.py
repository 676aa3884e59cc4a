"""
Dirichlet (line tension) energy of the protein density.

Physics:
    E = eta / 2 sum_f A_f |grad phi|_f^2 = eta / 2 phi^T L phi

On face f = (a, b, c) with edges e_a = x_c - x_b, e_b = x_a - x_c,
e_c = x_b - x_a, let u = phi_a e_a + phi_b e_b + phi_c e_c. Then
|grad phi|_f = |u| / (2 A_f) and

    E_f        = eta |u|^2 / (8 A_f)
    dE_f/dphi_a = eta / (4 A_f) u . e_a
    dE_f/dx_a   = eta / (4 A_f) (phi_b - phi_c) u - E_f / A_f dA_f/dx_a

The shape part is the line capillary force; the density part is the
diffusion potential.
"""

import numpy as np

from ..geometry import GeometrySnapshot, scatter_face_vectors
from .types import TermResult, TermContext


def compute_dirichlet(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    eta = params.dirichlet.eta
    faces = mesh.faces
    x = np.asarray(mesh.positions)
    phi = np.asarray(mesh.protein_density)

    xa, xb, xc = x[faces[:, 0]], x[faces[:, 1]], x[faces[:, 2]]
    ea, eb, ec = xc - xb, xa - xc, xb - xa
    pa, pb, pc = phi[faces[:, 0]], phi[faces[:, 1]], phi[faces[:, 2]]
    u = pa[:, None] * ea + pb[:, None] * eb + pc[:, None] * ec

    area = geometry.face_areas
    u2 = np.einsum("ij,ij->i", u, u)
    face_energy = eta * u2 / (8.0 * area)
    coef = (eta / (4.0 * area))[:, None]

    corner = np.empty((len(faces), 3, 3))
    corner[:, 0] = coef * (pb - pc)[:, None] * u
    corner[:, 1] = coef * (pc - pa)[:, None] * u
    corner[:, 2] = coef * (pa - pb)[:, None] * u
    corner -= (face_energy / area)[:, None, None] * geometry.face_area_gradients
    grad = scatter_face_vectors(mesh.n_vertices, faces, corner)

    dphi = np.zeros(mesh.n_vertices)
    for k, e in enumerate((ea, eb, ec)):
        np.add.at(dphi, faces[:, k], coef[:, 0] * np.einsum("ij,ij->i", u, e))

    return TermResult(energy=float(face_energy.sum()), force=-grad, potential=-dphi)


def dirichlet_energy_from_laplacian(geometry: GeometrySnapshot, phi: np.ndarray, eta: float) -> float:
    """Same energy via the cotangent Laplacian, eta / 2 phi^T L phi."""
    return float(0.5 * eta * phi @ (geometry.cotan_laplacian @ phi))
