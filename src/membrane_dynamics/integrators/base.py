"""
Shared integrator protocol.

Every scheme runs the same step protocol:
    1. Read the forces of the current state.
    2. Chemical update: descend the free energy in the protein density
       (backtracking line search when enabled).
    3. Scheme update of positions/velocities (march).
    4. Commit the new density, advance time.
    5. Recompute forces and energy; let the scheme finish (complete_step).
    6. Termination test; write a frame on cadence.

Lifecycle (IntegratorStatus):
    UNINITIALIZED -> VALIDATED -> RUNNING -> CONVERGED | DIVERGED |
    STEP_LIMIT_REACHED | FAILED -> FINALIZED

Diverged and step-limit outcomes are results, not exceptions. Geometry,
configuration and mechanical line search failures set FAILED, restore the
state committed before the failing step and re-raise.
"""

import time as _time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from ..config import IntegrationConfig, OutputConfig
from ..engine import ForceEngine
from ..exceptions import (
    ConfigurationError, ConvergenceError, GeometryError, StateTransitionError,
)
from ..terms import EnergyBreakdown, ForceBreakdown
from ..trajectory import NullTrajectory, TrajectorySink
from ..utils.logger import Logger


class IntegratorStatus(Enum):
    UNINITIALIZED = "uninitialized"
    VALIDATED = "validated"
    RUNNING = "running"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    STEP_LIMIT_REACHED = "step_limit_reached"
    FAILED = "failed"
    FINALIZED = "finalized"


class RunOutcome(Enum):
    CONVERGED = "converged"
    DIVERGED = "diverged"
    STEP_LIMIT_REACHED = "step_limit_reached"
    FAILED = "failed"


TERMINAL_STATUSES = (
    IntegratorStatus.CONVERGED,
    IntegratorStatus.DIVERGED,
    IntegratorStatus.STEP_LIMIT_REACHED,
    IntegratorStatus.FAILED,
)

_OUTCOMES = {
    IntegratorStatus.CONVERGED: RunOutcome.CONVERGED,
    IntegratorStatus.DIVERGED: RunOutcome.DIVERGED,
    IntegratorStatus.STEP_LIMIT_REACHED: RunOutcome.STEP_LIMIT_REACHED,
    IntegratorStatus.FAILED: RunOutcome.FAILED,
}

# Errors that fail a step; the mesh is rolled back to the step start
STEP_ERRORS = (GeometryError, ConvergenceError, ConfigurationError)


@dataclass
class RunState:
    """
    Mutable progress of a run.

    Attributes:
        step_index: Number of completed steps.
        time: Simulation time.
        time_step: Current (possibly adaptive) time step.
        energy: Energy of the current state.
        initial_energy: Energy used as divergence reference.
        forces: Forces of the current state.
        max_force0: Largest vertex force at start (adaptive step reference).
        dt_ratio: time_step0 / l_min0^2 (adaptive step constant).
    """
    step_index: int
    time: float
    time_step: float
    energy: EnergyBreakdown
    initial_energy: EnergyBreakdown
    forces: ForceBreakdown
    max_force0: float
    dt_ratio: float
    chemical_failures: int = 0
    line_search_shrinks: int = 0
    frames_written: int = 0
    last_frame_step: int = -1
    sink_failures: int = 0
    started_at: float = 0.0
    message: str = ""


@dataclass
class RunResult:
    """
    Summary of a finished run.

    Attributes:
        outcome: How the run ended.
        steps: Completed steps.
        time: Final simulation time.
        energy: Final energy breakdown.
        line_search_shrinks: Backtracking step reductions over the whole run.
        energy_history: Total energy after every step, starting at step 0.
        wall_time_s: Elapsed wall-clock time.
    """
    outcome: RunOutcome
    status: IntegratorStatus
    steps: int
    time: float
    energy: EnergyBreakdown
    initial_energy: EnergyBreakdown
    mech_error_norm: float
    chem_error_norm: float
    chemical_failures: int
    line_search_shrinks: int
    frames_written: int
    sink_failures: int
    wall_time_s: float
    message: str = ""
    energy_history: List[float] = field(default_factory=list)

    @property
    def converged(self) -> bool:
        return self.outcome is RunOutcome.CONVERGED


class Integrator(ABC):
    """
    Base class for time integrators and minimizers.

    Subclasses implement march() and may override check_parameters(),
    begin(), complete_step(), before_termination() and is_converged().
    """

    METHOD = "base"

    def __init__(self, engine: ForceEngine, integration: IntegrationConfig,
                 output: Optional[OutputConfig] = None,
                 sink: Optional[TrajectorySink] = None):
        self.engine = engine
        self.config = integration
        self.output = output if output is not None else OutputConfig()
        self.sink = sink if sink is not None else NullTrajectory()
        self.status = IntegratorStatus.UNINITIALIZED
        self.state: Optional[RunState] = None
        self.energy_history: List[float] = []
        self._stop_requested = False

    @property
    def mesh(self):
        return self.engine.mesh

    @property
    def parameters(self):
        return self.engine.parameters

    # --- validation ---

    def check_parameters(self) -> List[str]:
        """Scheme-specific constraints. Override in subclasses."""
        return []

    def validate(self) -> None:
        """
        Check parameters, integration options and mesh compatibility.

        Raises:
            StateTransitionError: If not UNINITIALIZED.
            ConfigurationError: Listing every violation; status becomes FAILED.
        """
        if self.status is not IntegratorStatus.UNINITIALIZED:
            raise StateTransitionError(f"validate() called in state {self.status.value}")

        _, errors = self.parameters.validate()
        errors = list(errors)
        _, integration_errors = self.config.validate()
        errors.extend(f"integration: {e}" for e in integration_errors)
        _, output_errors = self.output.validate()
        errors.extend(f"output: {e}" for e in output_errors)
        errors.extend(self.engine.check_mesh_compatibility())
        errors.extend(f"{self.METHOD}: {e}" for e in self.check_parameters())

        if errors:
            self.status = IntegratorStatus.FAILED
            Logger.log(f"Validation failed: {'; '.join(errors)}", Logger.LogPriority.ERROR, "integrator")
            raise ConfigurationError(errors)
        self.status = IntegratorStatus.VALIDATED

    # --- lifecycle ---

    def request_stop(self) -> None:
        """Ask the run loop to stop at the next step boundary."""
        self._stop_requested = True

    def _start(self) -> None:
        forces = self.engine.compute_physical_forces()
        energy = self.engine.compute_free_energy()
        l_min = self.engine.geometry().min_edge_length
        self.state = RunState(
            step_index=0,
            time=self.engine.time,
            time_step=self.config.time_step,
            energy=energy,
            initial_energy=energy,
            forces=forces,
            max_force0=self._driving_force(forces),
            dt_ratio=self.config.time_step / (l_min * l_min),
            started_at=_time.monotonic(),
        )
        self.energy_history = [energy.total]
        self.begin(forces)
        self.status = IntegratorStatus.RUNNING
        Logger.log(
            f"{self.METHOD} run started: E0={energy.total:.6g} dt={self.config.time_step:g} "
            f"terms={self.engine.enabled_terms()}",
            Logger.LogPriority.INFO, "integrator",
        )
        self._write_frame()

    def begin(self, forces: ForceBreakdown) -> None:
        """Hook called once with the initial forces."""

    def finalize(self) -> None:
        if self.status not in TERMINAL_STATUSES:
            raise StateTransitionError(f"finalize() called in state {self.status.value}")
        self.status = IntegratorStatus.FINALIZED

    def _fail(self, exc: Exception) -> None:
        self.status = IntegratorStatus.FAILED
        if self.state is not None:
            self.state.message = f"{type(exc).__name__}: {exc}"
        Logger.log(f"{self.METHOD} failed: {type(exc).__name__}: {exc}", Logger.LogPriority.ERROR, "integrator")

    # --- step protocol ---

    def step(self) -> IntegratorStatus:
        """
        Execute one protocol step.

        Returns:
            Status after the step (RUNNING or a terminal status).
        """
        if self.status is IntegratorStatus.VALIDATED:
            try:
                self._start()
            except STEP_ERRORS as exc:
                self._fail(exc)
                raise
        if self.status is not IntegratorStatus.RUNNING:
            raise StateTransitionError(f"step() called in state {self.status.value}")

        state = self.state
        start = self.mesh.snapshot()
        start_time = self.engine.time
        try:
            self._update_time_step()
            forces = state.forces
            new_density = self._chemical_update(forces)
            self.march(forces)
            if new_density is not None:
                self.mesh.set_protein_density(new_density)

            state.step_index += 1
            state.time += state.time_step
            self.engine.time = state.time

            new_forces = self.engine.compute_physical_forces()
            self.complete_step(new_forces)
            state.forces = new_forces
            state.energy = self.engine.compute_free_energy()
        except STEP_ERRORS as exc:
            self.mesh.restore(start)
            self.engine.time = start_time
            self._fail(exc)
            raise

        self.energy_history.append(state.energy.total)
        self._check_termination()
        if (self.status in TERMINAL_STATUSES
                or state.step_index % self.output.frame_every_steps == 0):
            self._write_frame()
        return self.status

    def run(self) -> RunResult:
        """
        Validate if needed, then step until a terminal outcome.

        Raises:
            StateTransitionError: If the integrator already ran.
        """
        if self.status is IntegratorStatus.UNINITIALIZED:
            self.validate()
        if self.status is not IntegratorStatus.VALIDATED:
            raise StateTransitionError(f"run() called in state {self.status.value}")

        while True:
            status = self.step()
            if status is not IntegratorStatus.RUNNING:
                break
            if self._stop_requested:
                self.state.message = "stop requested"
                self._terminate(IntegratorStatus.STEP_LIMIT_REACHED)
                self._write_frame()
                break
        return self.result()

    def result(self) -> RunResult:
        if self.state is None or self.status not in TERMINAL_STATUSES + (IntegratorStatus.FINALIZED,):
            raise StateTransitionError(f"result() called in state {self.status.value}")
        state = self.state
        outcome = _OUTCOMES.get(self.status, RunOutcome.FAILED)
        return RunResult(
            outcome=outcome,
            status=self.status,
            steps=state.step_index,
            time=state.time,
            energy=state.energy,
            initial_energy=state.initial_energy,
            mech_error_norm=state.forces.mech_error_norm,
            chem_error_norm=state.forces.chem_error_norm,
            chemical_failures=state.chemical_failures,
            line_search_shrinks=state.line_search_shrinks,
            frames_written=state.frames_written,
            sink_failures=state.sink_failures,
            wall_time_s=_time.monotonic() - state.started_at,
            message=state.message,
            energy_history=list(self.energy_history),
        )

    # --- scheme hooks ---

    @abstractmethod
    def march(self, forces: ForceBreakdown) -> None:
        """Update positions (and velocities) from the current forces."""

    def complete_step(self, new_forces: ForceBreakdown) -> None:
        """Hook called with the forces of the new state, before its energy is computed."""

    def is_converged(self, forces: ForceBreakdown) -> bool:
        tol = self.config.tolerance
        return forces.mech_error_norm < tol and forces.chem_error_norm < tol

    # --- termination ---

    def _terminate(self, status: IntegratorStatus) -> None:
        self.status = status
        state = self.state
        Logger.log(
            f"{self.METHOD} finished: {status.value} after {state.step_index} steps, "
            f"t={state.time:.6g}, E={state.energy.total:.6g}, "
            f"|F|={state.forces.mech_error_norm:.3e}, |mu|={state.forces.chem_error_norm:.3e}"
            + (f" ({state.message})" if state.message else ""),
            Logger.LogPriority.INFO, "integrator",
        )

    def is_diverged(self) -> bool:
        e0 = self.state.initial_energy.total
        e = self.state.energy.total
        if not np.isfinite(e):
            return True
        return e - e0 > self.config.divergence_factor * max(abs(e0), 1.0)

    def before_termination(self) -> None:
        """Hook called after each step, before the termination test."""

    def _check_termination(self) -> None:
        state = self.state
        self.before_termination()
        if self.is_diverged():
            state.message = (
                f"energy rose from {state.initial_energy.total:.6g} to {state.energy.total:.6g}"
            )
            self._terminate(IntegratorStatus.DIVERGED)
        elif self.is_converged(state.forces):
            self._terminate(IntegratorStatus.CONVERGED)
        elif state.step_index >= self.config.max_steps or state.time >= self.config.total_time:
            self._terminate(IntegratorStatus.STEP_LIMIT_REACHED)
        elif (self.config.max_wall_time_s is not None
              and _time.monotonic() - state.started_at > self.config.max_wall_time_s):
            state.message = f"wall-clock limit {self.config.max_wall_time_s}s reached"
            self._terminate(IntegratorStatus.STEP_LIMIT_REACHED)

    # --- time step ---

    def _driving_force(self, forces: ForceBreakdown) -> float:
        """Largest vertex force, or largest chemical potential when the shape is frozen."""
        if self.parameters.is_enabled("shape"):
            return forces.max_force
        return forces.max_chemical_potential

    def _update_time_step(self) -> None:
        """Adaptive characteristic step: dt = r * l_min^2 * (f_max0 / f_max)."""
        if not self.config.is_adaptive_step:
            return
        state = self.state
        f_max = self._driving_force(state.forces)
        if f_max <= 0 or state.max_force0 <= 0:
            return
        l_min = self.engine.geometry().min_edge_length
        state.time_step = state.dt_ratio * l_min * l_min * (state.max_force0 / f_max)

    # --- line searches ---

    def _backtrack(self, energy_at: Callable[[float], float], e0: float, slope: float,
                   alpha0: float, kind: str) -> float:
        """
        Armijo backtracking: accept alpha with E(alpha) <= E0 + c1 alpha slope.

        Trials that raise GeometryError are rejected and shrunk.

        Raises:
            ConvergenceError: When alpha falls below min_step_fraction * alpha0.
        """
        rho, c1 = self.config.rho, self.config.c1
        floor = self.config.min_step_fraction * alpha0
        alpha = alpha0
        while alpha >= floor:
            try:
                trial = energy_at(alpha)
            except GeometryError as exc:
                Logger.log(f"{kind} trial alpha={alpha:.3e} rejected: {exc}", Logger.LogPriority.DEBUG, "line_search")
                trial = None
            if trial is not None and trial <= e0 + c1 * alpha * slope:
                return alpha
            alpha *= rho
            self.state.line_search_shrinks += 1
            Logger.log(f"{kind} backtrack: alpha -> {alpha:.3e}", Logger.LogPriority.DEBUG, "line_search")
        raise ConvergenceError(
            f"{kind} line search reached step floor {floor:.3e} without sufficient decrease",
            alpha=alpha, kind=kind,
        )

    def chemical_backtrack(self, direction: np.ndarray, alpha0: float) -> float:
        """
        Step size for the density update phi + alpha * direction.

        Raises:
            ConvergenceError: kind="chemical" when the step floor is reached.
        """
        mu = self.state.forces.chemical_potential
        slope = -float(mu @ direction)
        if slope == 0.0:
            return alpha0
        phi = np.asarray(self.mesh.protein_density)
        e0 = self.state.energy.free_energy
        try:
            return self._backtrack(
                lambda a: self.engine.evaluate_trial(density=phi + a * direction).free_energy,
                e0, slope, alpha0, "chemical",
            )
        except ConvergenceError as exc:
            self._attach_breakdown(exc)
            raise

    def mechanical_backtrack(self, direction: np.ndarray, alpha0: float) -> Tuple[float, np.ndarray]:
        """
        Step size for positions x + alpha * direction.

        An uphill direction is replaced with the bare mechanical force.

        Returns:
            (alpha, direction actually used).

        Raises:
            ConvergenceError: kind="mechanical" when the step floor is reached.
        """
        force = self.state.forces.mechanical
        slope = -float(np.sum(force * direction))
        if slope > 0:
            Logger.log(f"{self.METHOD}: uphill search direction replaced with force",
                       Logger.LogPriority.WARNING, "line_search")
            direction = force
            slope = -float(np.sum(force * force))
        if slope == 0.0:
            return alpha0, direction
        x = np.asarray(self.mesh.positions)
        e0 = self.state.energy.potential
        try:
            alpha = self._backtrack(
                lambda a: self.engine.evaluate_trial(positions=x + a * direction).potential,
                e0, slope, alpha0, "mechanical",
            )
        except ConvergenceError as exc:
            self._attach_breakdown(exc)
            raise
        return alpha, direction

    def line_search_breakdown(self, kind: str, alpha: float) -> Dict[str, Tuple[float, float]]:
        """
        Per-term check of a failed line search.

        Each term is stepped along its own force (kind="mechanical") or its
        own chemical potential (kind="chemical") by alpha, and only that
        term's energy is compared.

        Returns:
            term name -> (actual energy change, first-order expected change).
            A positive actual change means the term's force and energy disagree.
        """
        forces, energy = self.state.forces, self.state.energy
        report = {}
        if kind == "mechanical":
            x = np.asarray(self.mesh.positions)
            fields = forces.vectors
        else:
            phi = np.asarray(self.mesh.protein_density)
            fields = {name: self.parameters.protein.mobility * mu
                      for name, mu in forces.potentials.items()}
        for name, direction in fields.items():
            try:
                if kind == "mechanical":
                    trial = self.engine.evaluate_trial(positions=x + alpha * direction)
                    expected = -alpha * float(np.sum(direction * direction))
                else:
                    trial = self.engine.evaluate_trial(density=phi + alpha * direction)
                    expected = -alpha * float(forces.potentials[name] @ direction)
            except GeometryError:
                continue
            report[name] = (getattr(trial, name) - getattr(energy, name), expected)
        return report

    def _attach_breakdown(self, exc: ConvergenceError) -> None:
        exc.breakdown = self.line_search_breakdown(exc.kind, exc.alpha)
        for name, (actual, expected) in exc.breakdown.items():
            Logger.log(
                f"{exc.kind} line search failure: {name} energy change {actual:.3e} "
                f"(expected {expected:.3e})",
                Logger.LogPriority.WARNING if actual > 0 else Logger.LogPriority.DEBUG,
                "line_search",
            )

    def _chemical_update(self, forces: ForceBreakdown) -> Optional[np.ndarray]:
        """New protein density, or None when the density does not evolve this step."""
        if not self.parameters.is_enabled("protein"):
            return None
        direction = self.parameters.protein.mobility * forces.chemical_potential
        phi = np.asarray(self.mesh.protein_density)
        alpha = self.state.time_step
        if self.config.is_backtrack:
            try:
                alpha = self.chemical_backtrack(direction, alpha)
            except ConvergenceError as exc:
                self.state.chemical_failures += 1
                if self.config.abort_on_chemical_failure:
                    raise
                Logger.log(f"Chemical step skipped at step {self.state.step_index}: {exc}",
                           Logger.LogPriority.WARNING, "integrator")
                return None
        return phi + alpha * direction

    # --- frames ---

    def _write_frame(self) -> None:
        state = self.state
        if state.last_frame_step == state.step_index:
            return
        try:
            self.sink.append_frame(state.step_index, state.time, self.mesh, state.energy)
        except Exception as exc:
            state.sink_failures += 1
            if self.output.fail_on_sink_error:
                self._fail(exc)
                raise
            Logger.log(f"Trajectory sink failed at step {state.step_index}: {exc}",
                       Logger.LogPriority.WARNING, "sink")
            return
        state.frames_written += 1
        state.last_frame_step = state.step_index
