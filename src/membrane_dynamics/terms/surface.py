"""
Surface tension energy.

Physics:
    constant tension:  E = Ksg A
    area penalty:      E = Ksg (A - At)^2 / (2 At) + lambdaSG (A - At)

The force is -dE/dA times the total area gradient.
"""

from ..geometry import GeometrySnapshot, scatter_face_vectors
from .types import TermResult, TermContext


def surface_tension(area: float, tension) -> float:
    """Effective tension dE/dA at the given total area."""
    if tension.is_constant_surface_tension:
        return tension.Ksg
    return tension.Ksg * (area - tension.At) / tension.At + tension.lambdaSG


def compute_surface(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    tension = params.tension
    A = geometry.total_area
    if tension.is_constant_surface_tension:
        energy = tension.Ksg * A
    else:
        dA = A - tension.At
        energy = tension.Ksg * dA * dA / (2.0 * tension.At) + tension.lambdaSG * dA

    area_grad = scatter_face_vectors(mesh.n_vertices, mesh.faces, geometry.face_area_gradients)
    force = -surface_tension(A, tension) * area_grad
    return TermResult(energy=float(energy), force=force)
