"""
BFGS quasi-Newton minimizer with a dense inverse Hessian.

    d = H F
    s = alpha d,  y = F_old - F_new
    H <- (I - rho s y^T) H (I - rho y s^T) + rho s s^T,   rho = 1 / (s . y)

H is reset to the identity when the curvature condition s . y > eps fails
or when H F is not a descent direction. Suitable for meshes up to a few
thousand vertices.
"""

from typing import List, Optional

import numpy as np

from ..terms import ForceBreakdown
from ..utils.logger import Logger
from .base import Integrator


class BFGS(Integrator):

    METHOD = "bfgs"
    CURVATURE_EPS = 1e-12

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._inverse_hessian: Optional[np.ndarray] = None
        self._step: Optional[np.ndarray] = None
        self._force: Optional[np.ndarray] = None
        self.resets = 0

    def check_parameters(self) -> List[str]:
        errors = []
        if self.parameters.is_enabled("dpd"):
            errors.append("DPD thermostat is not supported by a minimizer")
        return errors

    def _reset(self, reason: str) -> None:
        n = 3 * self.mesh.n_vertices
        self._inverse_hessian = np.eye(n)
        self.resets += 1
        Logger.log(f"BFGS inverse Hessian reset: {reason}", Logger.LogPriority.DEBUG, "integrator")

    def begin(self, forces: ForceBreakdown) -> None:
        self._inverse_hessian = np.eye(3 * self.mesh.n_vertices)

    def march(self, forces: ForceBreakdown) -> None:
        if not self.parameters.is_enabled("shape"):
            self._step = None
            return
        force = forces.mechanical.ravel()
        direction = self._inverse_hessian @ force
        if float(direction @ force) <= 0:
            self._reset("not a descent direction")
            direction = force.copy()
        direction = self.engine.mask_force(direction.reshape(-1, 3))

        alpha, direction = self.mechanical_backtrack(direction, self.state.time_step)
        self.mesh.set_positions(np.asarray(self.mesh.positions) + alpha * direction)
        self._step = (alpha * direction).ravel()
        self._force = force

    def complete_step(self, new_forces: ForceBreakdown) -> None:
        if self._step is None:
            return
        s = self._step
        y = self._force - new_forces.mechanical.ravel()
        sy = float(s @ y)
        if sy <= self.CURVATURE_EPS:
            self._reset(f"curvature condition failed (s.y={sy:.3e})")
            return
        rho = 1.0 / sy
        H = self._inverse_hessian
        Hy = H @ y
        # Expanded form of (I - rho s y^T) H (I - rho y s^T) + rho s s^T
        self._inverse_hessian = (
            H
            - rho * (np.outer(s, Hy) + np.outer(Hy, s))
            + (rho * rho * float(y @ Hy) + rho) * np.outer(s, s)
        )

    def is_converged(self, forces: ForceBreakdown) -> bool:
        tol = self.config.tolerance
        force_sq = float(np.sum(forces.mechanical ** 2))
        return super().is_converged(forces) or (force_sq < tol * tol and forces.chem_error_norm < tol)
