"""
Osmotic pressure energy.

Physics:
    preferred volume:  E = Kv (V - Vt)^2 / (2 Vt) + lambdaV (V - Vt)
    constant pressure: E = -Kv V
    van 't Hoff:       E = Kv (cam V - n - n ln(cam V / n))

The van 't Hoff form is the ideal-solution free energy of n enclosed
solute particles against ambient concentration cam; its pressure is
Kv (n / V - cam).
"""

import numpy as np

from ..exceptions import GeometryError
from ..geometry import GeometrySnapshot
from .types import TermResult, TermContext


def osmotic_pressure(volume: float, osmotic) -> float:
    """Pressure -dE/dV at the given enclosed volume."""
    if osmotic.is_preferred_volume:
        return -(osmotic.Kv * (volume - osmotic.Vt) / osmotic.Vt + osmotic.lambdaV)
    if osmotic.is_constant_osmotic_pressure:
        return osmotic.Kv
    return osmotic.Kv * (osmotic.n / volume - osmotic.cam)


def compute_pressure(geometry: GeometrySnapshot, mesh, params, context: TermContext) -> TermResult:
    osmotic = params.osmotic
    V = geometry.volume

    if osmotic.is_preferred_volume:
        dV = V - osmotic.Vt
        energy = osmotic.Kv * dV * dV / (2.0 * osmotic.Vt) + osmotic.lambdaV * dV
    elif osmotic.is_constant_osmotic_pressure:
        energy = -osmotic.Kv * V
    else:
        if V <= 0:
            raise GeometryError(f"van 't Hoff pressure needs positive enclosed volume, got {V:.3e}")
        ratio = osmotic.cam * V / osmotic.n
        energy = osmotic.Kv * (osmotic.cam * V - osmotic.n - osmotic.n * np.log(ratio))

    force = osmotic_pressure(V, osmotic) * geometry.volume_gradient
    return TermResult(energy=float(energy), force=force)
