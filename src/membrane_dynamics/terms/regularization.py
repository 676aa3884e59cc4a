"""
Mesh regularization against the reference edge lengths and face areas.

Physics:
    E = Kse / 2 sum_e (l_e - l0_e)^2 + Ksl / 2 sum_f (A_f - A0_f)^2

Keeps triangles from degenerating during long runs. The full gradient
is used (no projection onto the tangent plane), so the force is conservative.
"""

import numpy as np

from ..exceptions import ConfigurationError
from ..geometry import GeometrySnapshot, scatter_face_vectors
from .types import TermResult, TermContext


def compute_regularization(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    reference = context.reference
    if reference is None:
        raise ConfigurationError(["regularization: reference configuration is required"])
    reg = params.regularization
    conn = mesh.connectivity
    n = mesh.n_vertices

    dl = geometry.edge_lengths - reference.edge_lengths
    dA = geometry.face_areas - reference.face_areas
    energy = 0.5 * reg.Kse * float(dl @ dl) + 0.5 * reg.Ksl * float(dA @ dA)

    grad = np.zeros((n, 3))
    if reg.Kse:
        pull = (reg.Kse * dl / geometry.edge_lengths)[:, None] * geometry.edge_vectors
        np.add.at(grad, conn.edges[:, 1], pull)
        np.add.at(grad, conn.edges[:, 0], -pull)
    if reg.Ksl:
        grad += scatter_face_vectors(n, conn.faces,
                                     (reg.Ksl * dA)[:, None, None] * geometry.face_area_gradients)
    return TermResult(energy=energy, force=-grad)
