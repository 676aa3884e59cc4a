"""
Nonlinear conjugate gradient minimizer (Fletcher-Reeves).

    beta_k = |F_k|^2 / |F_{k-1}|^2
    d_k    = F_k + beta_k d_{k-1}      (d_k = F_k every restart_period steps)
    x     <- x + alpha d_k             (alpha from backtracking)

Area and volume targets can be enforced by an outer loop that runs once
the inner minimization has converged but the constraint residual is still
above ``constraint_tolerance``:

    augmented Lagrangian:  lambdaSG += Ksg (A - At) / At,  lambdaV += Kv (V - Vt) / Vt
    incremental penalty:   Ksg *= penalty_increment,       Kv *= penalty_increment

The outer loop is off when constraint_tolerance is 0.
"""

import dataclasses
from typing import List, Optional

import numpy as np

from ..terms import ForceBreakdown
from ..utils.logger import Logger
from .base import Integrator


class ConjugateGradient(Integrator):

    METHOD = "conjugate_gradient"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._direction: Optional[np.ndarray] = None
        self._force_sq: float = 0.0
        self._iterations = 0
        self.outer_iterations = 0

    def check_parameters(self) -> List[str]:
        errors = []
        if self.parameters.is_enabled("dpd"):
            errors.append("DPD thermostat is not supported by a minimizer")
        return errors

    def march(self, forces: ForceBreakdown) -> None:
        if not self.parameters.is_enabled("shape"):
            return
        force = forces.mechanical
        force_sq = float(np.sum(force * force))

        if (self._direction is None or self._force_sq == 0.0
                or self._iterations % self.config.restart_period == 0):
            direction = force
        else:
            beta = force_sq / self._force_sq
            direction = force + beta * self._direction

        alpha, direction = self.mechanical_backtrack(direction, self.state.time_step)
        self.mesh.set_positions(np.asarray(self.mesh.positions) + alpha * direction)

        self._direction = direction
        self._force_sq = force_sq
        self._iterations += 1

    def restart(self) -> None:
        self._direction = None
        self._iterations = 0

    def _inner_converged(self, forces: ForceBreakdown) -> bool:
        tol = self.config.tolerance
        force_sq = float(np.sum(forces.mechanical ** 2))
        return super().is_converged(forces) or (
            force_sq < tol * tol and forces.chem_error_norm < tol
        )

    def _constraints_met(self) -> bool:
        if self.config.constraint_tolerance <= 0:
            return True
        residuals = self.constraint_residuals()
        return not residuals or max(residuals.values()) <= self.config.constraint_tolerance

    def is_converged(self, forces: ForceBreakdown) -> bool:
        return self._inner_converged(forces) and self._constraints_met()

    def before_termination(self) -> None:
        """Start the next outer iteration once the inner minimization has settled."""
        state = self.state
        if self.is_diverged() or not self._inner_converged(state.forces):
            return
        if not self._constraints_met():
            self._update_constraints()

    # --- outer constraint loop ---

    def constraint_residuals(self) -> dict:
        """Relative area/volume residuals of the active constraints."""
        p = self.parameters
        geometry = self.engine.geometry()
        residuals = {}
        if p.is_enabled("tension") and not p.tension.is_constant_surface_tension:
            residuals["area"] = abs(geometry.total_area - p.tension.At) / p.tension.At
        if p.is_enabled("osmotic") and p.osmotic.is_preferred_volume:
            residuals["volume"] = abs(geometry.volume - p.osmotic.Vt) / p.osmotic.Vt
        return residuals

    def _update_constraints(self) -> None:
        p = self.parameters
        geometry = self.engine.geometry()
        residuals = self.constraint_residuals()
        tension, osmotic = p.tension, p.osmotic

        if self.config.is_augmented_lagrangian:
            if "area" in residuals:
                tension = dataclasses.replace(
                    tension, lambdaSG=tension.lambdaSG + tension.Ksg * (geometry.total_area - tension.At) / tension.At
                )
            if "volume" in residuals:
                osmotic = dataclasses.replace(
                    osmotic, lambdaV=osmotic.lambdaV + osmotic.Kv * (geometry.volume - osmotic.Vt) / osmotic.Vt
                )
        else:
            k = self.config.penalty_increment
            if "area" in residuals:
                tension = dataclasses.replace(tension, Ksg=tension.Ksg * k)
            if "volume" in residuals:
                osmotic = dataclasses.replace(osmotic, Kv=osmotic.Kv * k)

        self.engine.set_parameters(dataclasses.replace(p, tension=tension, osmotic=osmotic))
        self.outer_iterations += 1
        Logger.log(
            f"Constraint update {self.outer_iterations}: residuals={residuals} "
            f"lambdaSG={tension.lambdaSG:.6g} lambdaV={osmotic.lambdaV:.6g} "
            f"Ksg={tension.Ksg:.6g} Kv={osmotic.Kv:.6g}",
            Logger.LogPriority.INFO, "integrator",
        )

        # New energy landscape: refresh forces, energy and divergence reference
        state = self.state
        state.forces = self.engine.compute_physical_forces()
        state.energy = self.engine.compute_free_energy()
        state.initial_energy = state.energy
        self.restart()
