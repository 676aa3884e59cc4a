"""
Trajectory sinks: where integrators send periodic frames.

A sink is append-only. Integrators call append_frame at step 0, every
``frame_every_steps`` steps, and once more on the terminal step.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .mesh import MeshState
from .terms import EnergyBreakdown


@dataclass(frozen=True)
class Frame:
    """One recorded instant of a run."""
    step_index: int
    time: float
    positions: np.ndarray
    velocities: np.ndarray
    protein_density: np.ndarray
    energy: EnergyBreakdown


class TrajectorySink(ABC):
    """Receives frames from an integrator."""

    @abstractmethod
    def append_frame(self, step_index: int, time: float, mesh_state: MeshState,
                     energy: EnergyBreakdown) -> None:
        pass

    def close(self) -> None:
        """Flush and release resources. Default: nothing to do."""


class NullTrajectory(TrajectorySink):
    """Discards every frame."""

    def append_frame(self, step_index, time, mesh_state, energy):
        return None


class MemoryTrajectory(TrajectorySink):
    """
    Keeps frames in memory.

    Rejects frames whose step index does not increase, since a trajectory
    is append-only.
    """

    def __init__(self, max_frames: Optional[int] = None):
        self.frames: List[Frame] = []
        self.max_frames = max_frames

    def append_frame(self, step_index, time, mesh_state, energy):
        if self.frames and step_index <= self.frames[-1].step_index:
            raise ValueError(
                f"Frame step index {step_index} does not follow {self.frames[-1].step_index}"
            )
        if self.max_frames is not None and len(self.frames) >= self.max_frames:
            raise OverflowError(f"Trajectory is full ({self.max_frames} frames)")
        snap = mesh_state.snapshot()
        self.frames.append(Frame(
            step_index=step_index,
            time=float(time),
            positions=snap.positions,
            velocities=snap.velocities,
            protein_density=snap.protein_density,
            energy=energy,
        ))

    @property
    def step_indices(self) -> List[int]:
        return [f.step_index for f in self.frames]

    def __len__(self):
        return len(self.frames)
