"""
Tests for frame cadence and trajectory sink failure handling.
"""

import numpy as np
import pytest

from membrane_dynamics.config import Parameters, BendingConfig, IntegrationConfig, OutputConfig
from membrane_dynamics.engine import ForceEngine
from membrane_dynamics.integrators import Euler, IntegratorStatus, RunOutcome
from membrane_dynamics.mesh import icosphere
from membrane_dynamics.terms import EnergyBreakdown
from membrane_dynamics.trajectory import MemoryTrajectory, NullTrajectory, TrajectorySink

from conftest import make_perturbed_sphere


class FailingSink(TrajectorySink):
    """Sink whose storage is always unavailable."""

    def __init__(self):
        self.calls = 0

    def append_frame(self, step_index, time, mesh_state, energy):
        self.calls += 1
        raise RuntimeError("disk full")


def make_euler(sink, max_steps=5, frame_every_steps=2, fail_on_sink_error=False):
    engine = ForceEngine(make_perturbed_sphere(), Parameters(bending=BendingConfig(Kb=1.0)))
    integrator = Euler(
        engine,
        IntegrationConfig(method="euler", max_steps=max_steps, tolerance=0.0),
        output=OutputConfig(frame_every_steps=frame_every_steps, fail_on_sink_error=fail_on_sink_error),
        sink=sink,
    )
    return integrator


class TestFrameCadence:

    def test_empty_memory_sink_is_kept(self):
        """An empty MemoryTrajectory has len 0 but is still the sink used."""
        sink = MemoryTrajectory()
        assert len(sink) == 0
        integrator = make_euler(sink)
        assert integrator.sink is sink
        result = integrator.run()
        assert len(sink) == result.frames_written

    def test_output_config_is_kept(self):
        output = OutputConfig(frame_every_steps=3)
        engine = ForceEngine(make_perturbed_sphere(), Parameters(bending=BendingConfig(Kb=1.0)))
        integrator = Euler(engine, IntegrationConfig(method="euler"), output=output)
        assert integrator.output is output
        assert isinstance(integrator.sink, NullTrajectory)

    def test_initial_periodic_and_final_frames(self):
        """Frames at step 0, every N steps and on the terminal step."""
        sink = MemoryTrajectory()
        result = make_euler(sink).run()
        assert sink.step_indices == [0, 2, 4, 5]
        assert result.frames_written == 4

    def test_terminal_frame_not_duplicated(self):
        sink = MemoryTrajectory()
        make_euler(sink, max_steps=4).run()
        assert sink.step_indices == [0, 2, 4]

    def test_frames_hold_copies(self):
        sink = MemoryTrajectory()
        integrator = make_euler(sink)
        integrator.run()
        first, last = sink.frames[0], sink.frames[-1]
        assert not np.array_equal(first.positions, last.positions)
        np.testing.assert_array_equal(last.positions, integrator.mesh.positions)
        assert first.time == 0.0
        assert last.energy.total == pytest.approx(integrator.result().energy.total)

    def test_null_sink(self):
        integrator = make_euler(NullTrajectory())
        result = integrator.run()
        assert result.frames_written == 4


class TestSinkFailures:

    def test_failures_are_logged_and_counted(self, log_records):
        """A broken sink does not stop the run."""
        sink = FailingSink()
        result = make_euler(sink).run()
        assert result.outcome is RunOutcome.STEP_LIMIT_REACHED
        assert result.steps == 5
        assert result.sink_failures == 4
        assert result.frames_written == 0
        assert log_records.contains("[sink] Trajectory sink failed", "WARNING")
        assert log_records.contains("disk full", "WARNING")

    def test_fail_on_sink_error(self):
        sink = FailingSink()
        integrator = make_euler(sink, fail_on_sink_error=True)
        with pytest.raises(RuntimeError, match="disk full"):
            integrator.run()
        assert integrator.status is IntegratorStatus.FAILED
        assert sink.calls == 1
        assert integrator.state.sink_failures == 1


class TestMemoryTrajectory:

    def test_step_indices_must_increase(self):
        sink = MemoryTrajectory()
        mesh = icosphere(1)
        sink.append_frame(3, 0.3, mesh, EnergyBreakdown())
        with pytest.raises(ValueError):
            sink.append_frame(3, 0.3, mesh, EnergyBreakdown())
        with pytest.raises(ValueError):
            sink.append_frame(1, 0.1, mesh, EnergyBreakdown())
        assert len(sink) == 1

    def test_capacity(self):
        sink = MemoryTrajectory(max_frames=2)
        mesh = icosphere(1)
        sink.append_frame(0, 0.0, mesh, EnergyBreakdown())
        sink.append_frame(1, 0.1, mesh, EnergyBreakdown())
        with pytest.raises(OverflowError):
            sink.append_frame(2, 0.2, mesh, EnergyBreakdown())

    def test_frame_is_independent_of_mesh(self):
        sink = MemoryTrajectory()
        mesh = icosphere(1)
        sink.append_frame(0, 0.0, mesh, EnergyBreakdown())
        mesh.set_positions(2.0 * np.asarray(mesh.positions))
        np.testing.assert_allclose(np.linalg.norm(sink.frames[0].positions, axis=1), 1.0)
