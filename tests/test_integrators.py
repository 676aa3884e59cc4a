"""
Tests for the integrator lifecycle, termination and the individual schemes.
"""

import numpy as np
import pytest

from membrane_dynamics.config import (
    Parameters, BendingConfig, TensionConfig, OsmoticConfig, DPDConfig, AdsorptionConfig, ProteinConfig,
    RegularizationConfig, VariationConfig, IntegrationConfig, OutputConfig,
)
from membrane_dynamics.engine import ForceEngine
from membrane_dynamics.exceptions import (
    ConfigurationError, GeometryError, StateTransitionError,
)
from membrane_dynamics.integrators import (
    BFGS, ConjugateGradient, Euler, IntegratorStatus, RunOutcome, VelocityVerlet,
    create_integrator,
)
from membrane_dynamics.mesh import icosphere, hexagon_patch
from membrane_dynamics.terms import EnergyBreakdown

from conftest import make_perturbed_sphere


BENDING = Parameters(bending=BendingConfig(Kb=1.0))

MINIMIZATION = Parameters(
    bending=BendingConfig(Kb=1.0),
    tension=TensionConfig(Ksg=0.5),
    osmotic=OsmoticConfig(Kv=1.0, Vt=4.0),
)


def make_integrator(cls=Euler, params=BENDING, mesh=None, output=None, sink=None, **integration):
    mesh = mesh if mesh is not None else make_perturbed_sphere()
    engine = ForceEngine(mesh, params)
    config = IntegrationConfig(method=cls.METHOD, **integration)
    return cls(engine, config, output=output, sink=sink)


class TestLifecycle:

    def test_step_requires_validation(self):
        integrator = make_integrator()
        with pytest.raises(StateTransitionError):
            integrator.step()

    def test_validate_only_once(self):
        integrator = make_integrator()
        integrator.validate()
        assert integrator.status is IntegratorStatus.VALIDATED
        with pytest.raises(StateTransitionError):
            integrator.validate()

    def test_first_step_starts_run(self):
        integrator = make_integrator()
        integrator.validate()
        assert integrator.step() is IntegratorStatus.RUNNING
        assert integrator.state.step_index == 1
        assert len(integrator.energy_history) == 2

    def test_finalize_requires_terminal_status(self):
        integrator = make_integrator(max_steps=2)
        integrator.validate()
        with pytest.raises(StateTransitionError):
            integrator.finalize()
        integrator.run()
        integrator.finalize()
        assert integrator.status is IntegratorStatus.FINALIZED
        assert integrator.result().steps == 2

    def test_run_only_once(self):
        integrator = make_integrator(max_steps=1)
        integrator.run()
        with pytest.raises(StateTransitionError):
            integrator.run()
        with pytest.raises(StateTransitionError):
            integrator.step()

    def test_result_before_run(self):
        with pytest.raises(StateTransitionError):
            make_integrator().result()


class TestValidation:

    def test_collects_every_violation(self):
        params = Parameters(bending=BendingConfig(Kb=-1.0), dpd=DPDConfig(gamma=1.0))
        integrator = make_integrator(params=params, time_step=-1.0)
        with pytest.raises(ConfigurationError) as info:
            integrator.validate()
        errors = info.value.errors
        assert any(e.startswith("bending") for e in errors)
        assert "integration: time_step must be positive" in errors
        assert any(e.startswith("euler: DPD") for e in errors)
        assert integrator.status is IntegratorStatus.FAILED

    def test_open_mesh_with_volume_term(self, patch):
        params = Parameters(osmotic=OsmoticConfig(Kv=1.0, Vt=1.0))
        integrator = make_integrator(params=params, mesh=patch)
        with pytest.raises(ConfigurationError, match="closed mesh"):
            integrator.validate()

    def test_verlet_needs_shape_variation(self):
        params = Parameters(bending=BendingConfig(Kb=1.0),
                            variation=VariationConfig(is_shape_variation=False))
        integrator = make_integrator(VelocityVerlet, params=params)
        with pytest.raises(ConfigurationError, match="shape variation"):
            integrator.validate()

    def test_minimizers_reject_dpd(self):
        params = Parameters(bending=BendingConfig(Kb=1.0), dpd=DPDConfig(gamma=1.0))
        for cls in (ConjugateGradient, BFGS):
            with pytest.raises(ConfigurationError, match="DPD"):
                make_integrator(cls, params=params).validate()

    def test_unknown_method(self):
        engine = ForceEngine(icosphere(1), BENDING)
        with pytest.raises(ConfigurationError, match="Unknown integration method"):
            create_integrator("leapfrog", engine, IntegrationConfig())

    def test_factory_builds_every_method(self):
        engine = ForceEngine(icosphere(1), BENDING)
        for cls in (Euler, VelocityVerlet, ConjugateGradient, BFGS):
            integrator = create_integrator(cls.METHOD, engine, IntegrationConfig(method=cls.METHOD))
            assert type(integrator) is cls


class TestTermination:

    def test_step_limit(self):
        result = make_integrator(max_steps=3, tolerance=0.0).run()
        assert result.outcome is RunOutcome.STEP_LIMIT_REACHED
        assert result.steps == 3
        assert len(result.energy_history) == 4

    def test_total_time(self):
        result = make_integrator(time_step=0.01, total_time=0.035, tolerance=0.0).run()
        assert result.outcome is RunOutcome.STEP_LIMIT_REACHED
        assert result.steps == 4
        assert result.time == pytest.approx(0.04)

    def test_wall_time(self):
        result = make_integrator(max_wall_time_s=1e-9, tolerance=0.0).run()
        assert result.outcome is RunOutcome.STEP_LIMIT_REACHED
        assert result.steps == 1
        assert "wall-clock" in result.message

    def test_request_stop_during_run(self):
        from membrane_dynamics.trajectory import MemoryTrajectory

        class StoppingSink(MemoryTrajectory):
            def append_frame(self, step_index, time, mesh_state, energy):
                super().append_frame(step_index, time, mesh_state, energy)
                if step_index >= 2:
                    integrator.request_stop()

        sink = StoppingSink()
        integrator = make_integrator(tolerance=0.0, sink=sink,
                                     output=OutputConfig(frame_every_steps=1))
        result = integrator.run()
        assert result.outcome is RunOutcome.STEP_LIMIT_REACHED
        assert result.steps == 2
        assert result.message == "stop requested"
        assert sink.step_indices == [0, 1, 2]

    def test_converged_on_flat_patch(self):
        mesh = hexagon_patch(3, 1.0)
        result = make_integrator(mesh=mesh, tolerance=1e-6).run()
        assert result.outcome is RunOutcome.CONVERGED
        assert result.converged
        assert result.steps == 1
        assert result.mech_error_norm < 1e-6

    def test_diverged(self):
        integrator = make_integrator(divergence_factor=0.5)
        integrator.validate()
        assert integrator.step() is IntegratorStatus.RUNNING
        # Bending energy of a sphere is about 4 pi, far above a zero reference
        integrator.state.initial_energy = EnergyBreakdown()
        assert integrator.step() is IntegratorStatus.DIVERGED
        result = integrator.result()
        assert result.outcome is RunOutcome.DIVERGED
        assert "energy rose" in result.message

    def test_failed_step_restores_state(self, monkeypatch):
        integrator = make_integrator()
        integrator.validate()
        integrator.step()
        before = integrator.mesh.snapshot()
        time_before = integrator.engine.time

        def collapse(forces):
            integrator.mesh.set_positions(np.zeros((integrator.mesh.n_vertices, 3)))

        monkeypatch.setattr(integrator, "march", collapse)
        with pytest.raises(GeometryError):
            integrator.step()
        assert integrator.status is IntegratorStatus.FAILED
        np.testing.assert_array_equal(integrator.mesh.positions, before.positions)
        assert integrator.engine.time == time_before
        result = integrator.result()
        assert result.outcome is RunOutcome.FAILED
        assert "GeometryError" in result.message
        with pytest.raises(StateTransitionError):
            integrator.step()


class TestAdaptiveStep:

    def test_first_step_uses_configured_step(self):
        integrator = make_integrator(time_step=1e-3, is_adaptive_step=True, tolerance=0.0)
        integrator.validate()
        integrator.step()
        assert integrator.state.time == pytest.approx(1e-3)

    def test_step_follows_force_ratio(self):
        integrator = make_integrator(time_step=1e-3, is_adaptive_step=True, tolerance=0.0)
        integrator.validate()
        integrator.step()
        integrator.step()
        state = integrator.state
        l_min = integrator.engine.geometry().min_edge_length
        expected = state.dt_ratio * l_min ** 2 * state.max_force0 / state.forces.max_force
        integrator.step()
        assert state.time_step == pytest.approx(expected)

    def test_frozen_shape_follows_chemical_potential(self):
        params = Parameters(
            bending=BendingConfig(Kb=1.0),
            adsorption=AdsorptionConfig(epsilon=-1.0),
            protein=ProteinConfig(mobility=1.0, entropy_weight=0.05),
            variation=VariationConfig(is_shape_variation=False, is_protein_variation=True),
        )
        integrator = make_integrator(params=params, mesh=make_perturbed_sphere(density="random"),
                                     time_step=1e-3, is_adaptive_step=True, tolerance=0.0)
        integrator.validate()
        integrator.step()
        state = integrator.state
        assert state.forces.max_force == 0.0
        assert state.max_force0 > 0.0
        mu_max = state.forces.max_chemical_potential
        integrator.step()
        # positions are fixed, so the edge-length factor stays at one
        assert state.time_step == pytest.approx(1e-3 * state.max_force0 / mu_max)


class TestEuler:

    def test_energy_decreases_with_backtracking(self):
        result = make_integrator(time_step=1e-2, max_steps=10, tolerance=0.0).run()
        history = np.array(result.energy_history)
        assert np.all(np.diff(history) <= 1e-12)
        assert history[-1] < history[0]

    def test_plain_step_follows_force(self):
        integrator = make_integrator(time_step=1e-4, is_backtrack=False, tolerance=0.0)
        integrator.validate()
        integrator._start()
        x0 = np.array(integrator.mesh.positions)
        force = integrator.state.forces.mechanical
        integrator.step()
        np.testing.assert_allclose(integrator.mesh.positions, x0 + 1e-4 * force)
        assert np.all(integrator.mesh.velocities == 0.0)


class TestVelocityVerlet:

    def test_conserves_energy(self):
        mesh = icosphere(2)
        integrator = make_integrator(VelocityVerlet, mesh=mesh, time_step=1e-3,
                                     max_steps=1000, tolerance=0.0)
        x0 = np.array(mesh.positions)
        result = integrator.run()
        e0 = result.energy_history[0]
        history = np.array(result.energy_history)
        assert result.steps == 1000
        np.testing.assert_allclose(history, e0, rtol=0.01)
        # Bending energy is non-negative, so kinetic energy never exceeds the total
        bound = result.time * np.sqrt(2.0 * 1.01 * e0)
        assert np.linalg.norm(np.asarray(mesh.positions) - x0, axis=1).max() <= bound

    def test_velocities_evolve(self):
        integrator = make_integrator(VelocityVerlet, time_step=1e-3, max_steps=5, tolerance=0.0)
        integrator.run()
        assert np.abs(integrator.mesh.velocities).sum() > 0
        assert integrator.result().energy.kinetic > 0

    def test_damping_dissipates(self):
        mesh = icosphere(1)
        rng = np.random.default_rng(2)
        mesh.set_velocities(rng.normal(scale=0.5, size=(mesh.n_vertices, 3)))
        params = Parameters(
            regularization=RegularizationConfig(Kse=1.0),
            dpd=DPDConfig(gamma=5.0, temperature=0.0),
        )
        result = make_integrator(VelocityVerlet, params=params, mesh=mesh,
                                 time_step=1e-3, max_steps=500, tolerance=0.0).run()
        assert result.energy_history[-1] < 0.9 * result.energy_history[0]

    def test_thermostat_momentum_conserved(self):
        mesh = icosphere(1)
        params = Parameters(
            bending=BendingConfig(Kb=1.0),
            dpd=DPDConfig(gamma=1.0, temperature=0.01, seed=3),
        )
        integrator = make_integrator(VelocityVerlet, params=params, mesh=mesh,
                                     time_step=1e-3, max_steps=20, tolerance=0.0)
        integrator.run()
        np.testing.assert_allclose(np.asarray(mesh.velocities).sum(axis=0), 0.0, atol=1e-8)


class TestMinimizers:

    @pytest.mark.parametrize("cls", [ConjugateGradient, BFGS])
    def test_energy_monotone(self, cls):
        result = make_integrator(cls, params=MINIMIZATION, time_step=1e-2,
                                 max_steps=20, tolerance=0.0).run()
        history = np.array(result.energy_history)
        assert np.all(np.diff(history) <= 1e-12)
        assert history[-1] < history[0]
        assert result.energy.kinetic == 0.0

    def test_cg_restart_period(self):
        integrator = make_integrator(ConjugateGradient, params=MINIMIZATION, time_step=1e-2,
                                     restart_period=1, tolerance=0.0)
        integrator.validate()
        integrator._start()
        force = integrator.state.forces.mechanical.copy()
        integrator.step()
        # Every step restarts, so the first direction is the bare force
        np.testing.assert_allclose(integrator._direction, force)

    def test_bfgs_inverse_hessian_symmetric(self):
        integrator = make_integrator(BFGS, params=MINIMIZATION, time_step=1e-2,
                                     max_steps=5, tolerance=0.0)
        integrator.run()
        H = integrator._inverse_hessian
        np.testing.assert_allclose(H, H.T, atol=1e-10)
        assert H.shape == (3 * integrator.mesh.n_vertices,) * 2


class TestConstraintLoop:

    def _integrator(self, augmented, tolerance=0.0):
        mesh = make_perturbed_sphere()
        area = ForceEngine(mesh, Parameters()).geometry().total_area
        params = Parameters(
            bending=BendingConfig(Kb=1.0),
            tension=TensionConfig(Ksg=1.0, At=1.2 * area, is_constant_surface_tension=False),
        )
        integrator = make_integrator(ConjugateGradient, params=params, mesh=mesh,
                                     time_step=1e-2, is_augmented_lagrangian=augmented,
                                     constraint_tolerance=1e-3, tolerance=tolerance)
        integrator.validate()
        integrator.step()
        return integrator

    def test_residuals(self):
        integrator = self._integrator(True)
        residuals = integrator.constraint_residuals()
        assert set(residuals) == {"area"}
        assert residuals["area"] > 0.1

    def test_augmented_lagrangian_update(self, log_records):
        integrator = self._integrator(True)
        g = integrator.engine.geometry()
        At = integrator.parameters.tension.At
        integrator._update_constraints()
        tension = integrator.parameters.tension
        assert tension.lambdaSG == pytest.approx((g.total_area - At) / At)
        assert tension.Ksg == 1.0
        assert integrator.outer_iterations == 1
        assert integrator.state.initial_energy is integrator.state.energy
        assert integrator._direction is None
        assert log_records.contains("Constraint update 1", "INFO")

    def test_incremental_penalty_update(self):
        integrator = self._integrator(False)
        integrator._update_constraints()
        tension = integrator.parameters.tension
        assert tension.Ksg == pytest.approx(1.3)
        assert tension.lambdaSG == 0.0

    def test_outer_loop_off_without_tolerance(self):
        integrator = make_integrator(ConjugateGradient, params=MINIMIZATION, tolerance=1e30)
        integrator.validate()
        assert integrator.step() is IntegratorStatus.CONVERGED
        assert integrator.outer_iterations == 0

    def test_convergence_check_leaves_state_alone(self):
        integrator = self._integrator(True, tolerance=1e30)
        assert integrator.status is IntegratorStatus.RUNNING
        assert integrator.outer_iterations == 1
        params, energy = integrator.parameters, integrator.state.energy
        assert not integrator.is_converged(integrator.state.forces)
        assert not integrator.is_converged(integrator.state.forces)
        assert integrator.parameters is params
        assert integrator.state.energy is energy
        assert integrator.outer_iterations == 1

    def test_outer_iteration_runs_after_each_settled_step(self):
        integrator = self._integrator(True, tolerance=1e30)
        integrator.step()
        assert integrator.outer_iterations == 2
        assert integrator.parameters.tension.lambdaSG != 0.0
