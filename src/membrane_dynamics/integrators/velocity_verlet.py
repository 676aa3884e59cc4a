"""
Velocity Verlet integrator with optional DPD thermostat.

    x(t+dt) = x + v dt + 1/2 a(t) dt^2
    v(t+dt) = v + 1/2 (a(t) + a(t+dt)) dt

a is the total force per unit mass: conservative force plus DPD damping
and noise. Vertex mass is 1. Without DPD the scheme is symplectic and
conserves the total energy to O(dt^2).
"""

from typing import List, Optional

import numpy as np

from ..terms import ForceBreakdown
from .base import Integrator


class VelocityVerlet(Integrator):

    METHOD = "velocity_verlet"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._acceleration: Optional[np.ndarray] = None

    def check_parameters(self) -> List[str]:
        errors = []
        if not self.config.time_step > 0:
            errors.append("a positive time step is required")
        if self.parameters.dpd.gamma < 0:
            errors.append("damping coefficient gamma must be non-negative")
        if not self.parameters.is_enabled("shape"):
            errors.append("shape variation must be on")
        return errors

    def _total_acceleration(self, forces: ForceBreakdown) -> np.ndarray:
        damping, stochastic = self.engine.compute_dpd_forces(self.state.time_step)
        return forces.mechanical + damping + stochastic

    def begin(self, forces: ForceBreakdown) -> None:
        self._acceleration = self._total_acceleration(forces)

    def march(self, forces: ForceBreakdown) -> None:
        dt = self.state.time_step
        x = np.asarray(self.mesh.positions)
        v = np.asarray(self.mesh.velocities)
        self.mesh.set_positions(x + v * dt + 0.5 * self._acceleration * dt * dt)

    def complete_step(self, new_forces: ForceBreakdown) -> None:
        dt = self.state.time_step
        a_new = self._total_acceleration(new_forces)
        v = np.asarray(self.mesh.velocities)
        self.mesh.set_velocities(v + 0.5 * (self._acceleration + a_new) * dt)
        self._acceleration = a_new
