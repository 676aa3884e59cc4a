"""
Anchored external force.

Physics:
    f_i(t) = Kf exp(-t / tau) G(d_i; sigma) A0_i e
    E      = -sum_i f_i . (x_i - x0_i)

d_i is the distance from the anchor point to vertex i on the reference
configuration, A0_i the reference dual area and e the unit direction.
Since f does not depend on the current positions, force = -dE/dx holds
exactly.
"""

import numpy as np

from ..exceptions import ConfigurationError
from .constants import gaussian
from .types import TermResult, TermContext


def external_force_field(reference, external, time: float) -> np.ndarray:
    """Force field (N, 3) at the given time."""
    anchor = np.asarray(external.anchor, dtype=np.float64)
    distance = np.linalg.norm(reference.positions - anchor, axis=1)
    magnitude = (
        external.Kf
        * np.exp(-time / external.decay_time)
        * gaussian(distance, external.std_dev)
        * reference.vertex_areas
    )
    return magnitude[:, None] * external.direction_unit[None, :]


def compute_external(geometry, mesh, params, context: TermContext) -> TermResult:
    if context.reference is None:
        raise ConfigurationError(["external: reference configuration is required"])
    force = external_force_field(context.reference, params.external, context.time)
    displacement = np.asarray(mesh.positions) - context.reference.positions
    energy = -float(np.sum(force * displacement))
    return TermResult(energy=energy, force=force)
