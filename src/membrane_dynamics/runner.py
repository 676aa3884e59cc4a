"""
Main simulation runner.

Orchestrates mesh construction, the force engine, the integrator and
frame recording.
"""

from dataclasses import dataclass
from typing import Optional

from .config import SimulationConfig, MeshConfig
from .engine import ForceEngine
from .integrators import create_integrator, Integrator, RunResult
from .mesh import MeshState, icosphere, hexagon_patch
from .trajectory import TrajectorySink, MemoryTrajectory


@dataclass
class SimulationResult:
    """
    Complete simulation results.

    Attributes:
        config: Configuration used.
        run: Integrator run summary.
        mesh: Final mesh state.
        trajectory: Sink that received the frames.
    """
    config: SimulationConfig
    run: RunResult
    mesh: MeshState
    trajectory: TrajectorySink


def build_mesh(mesh_config: MeshConfig, initial_density: float) -> MeshState:
    """Initial mesh from its recipe, with uniform protein density."""
    if mesh_config.kind == "icosphere":
        return icosphere(mesh_config.subdivisions, mesh_config.radius, protein_density=initial_density)
    return hexagon_patch(mesh_config.subdivisions, mesh_config.radius, protein_density=initial_density)


class SimulationRunner:
    """
    Main simulation runner for one membrane.
    """

    def __init__(self, config: SimulationConfig, mesh: Optional[MeshState] = None,
                 sink: Optional[TrajectorySink] = None):
        """
        Initialize runner with configuration.

        Args:
            config: Complete simulation configuration.
            mesh: Initial mesh; built from config.mesh when omitted.
            sink: Frame receiver; frames are kept in memory when omitted.
        """
        self.config = config
        self.mesh = mesh if mesh is not None else build_mesh(
            config.mesh, config.parameters.protein.initial_density
        )
        self.engine = ForceEngine(self.mesh, config.parameters)
        self.sink = sink if sink is not None else MemoryTrajectory()
        self.integrator: Integrator = create_integrator(
            config.integration.method, self.engine, config.integration,
            output=config.output, sink=self.sink,
        )

    def run(self) -> SimulationResult:
        """
        Run complete simulation.

        Returns:
            SimulationResult with run summary and recorded frames.
        """
        self.engine.log_summary()
        try:
            run = self.integrator.run()
            self.integrator.finalize()
        finally:
            self.sink.close()
        return SimulationResult(
            config=self.config,
            run=run,
            mesh=self.mesh,
            trajectory=self.sink,
        )


def run_simulation(config: SimulationConfig, mesh: Optional[MeshState] = None) -> SimulationResult:
    """
    Convenience function to run simulation from config.

    Args:
        config: Simulation configuration.
        mesh: Optional initial mesh.

    Returns:
        Simulation results.
    """
    return SimulationRunner(config, mesh=mesh).run()
