"""
Forward Euler (overdamped) integrator.

    x <- x + alpha F,   alpha = dt, or the backtracked step when enabled

Velocities are not evolved. The DPD thermostat needs inertia and is
rejected at validation.
"""

from typing import List

import numpy as np

from ..terms import ForceBreakdown
from .base import Integrator


class Euler(Integrator):

    METHOD = "euler"

    def check_parameters(self) -> List[str]:
        errors = []
        if self.parameters.is_enabled("dpd"):
            errors.append("DPD thermostat requires an inertial scheme (use velocity_verlet)")
        return errors

    def march(self, forces: ForceBreakdown) -> None:
        if not self.parameters.is_enabled("shape"):
            return
        direction = forces.mechanical
        alpha = self.state.time_step
        if self.config.is_backtrack:
            alpha, direction = self.mechanical_backtrack(direction, alpha)
        self.mesh.set_positions(np.asarray(self.mesh.positions) + alpha * direction)
