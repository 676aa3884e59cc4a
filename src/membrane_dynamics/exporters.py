"""
Export simulation results to CSV, NPZ and JSON.

CSV columns (exact schema), one row per trajectory frame:
    step, time, bending, surface, pressure, adsorption, aggregation,
    dirichlet, regularization, external, entropy, kinetic, potential,
    free_energy, total, area, volume, mean_density

Vertex arrays (positions, velocities, protein density) of every frame go
to a compressed NPZ archive next to the CSV.
"""

import csv
import json
import subprocess
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TYPE_CHECKING

import numpy as np

from .config import config_to_dict
from .geometry import compute_geometry
from .mesh import MeshState
from .terms import EnergyBreakdown, POTENTIAL_TERMS
from .trajectory import TrajectorySink, MemoryTrajectory

if TYPE_CHECKING:
    from .runner import SimulationResult


ENERGY_COLUMNS = list(POTENTIAL_TERMS) + ["entropy", "kinetic", "potential", "free_energy", "total"]

CSV_COLUMNS = ["step", "time"] + ENERGY_COLUMNS + ["area", "volume", "mean_density"]


def _row(step_index, time, energy: EnergyBreakdown, area, volume, mean_density) -> list:
    values = energy.as_dict()
    return [step_index, time] + [values[c] for c in ENERGY_COLUMNS] + [area, volume, mean_density]


class CsvTrajectorySink(TrajectorySink):
    """
    Streams one CSV row per frame; vertex arrays are written to NPZ on close().

    Args:
        csv_path: Scalar output path.
        npz_path: Array output path (default: csv_path with .npz suffix).
    """

    def __init__(self, csv_path: Path, npz_path: Optional[Path] = None):
        self.csv_path = Path(csv_path)
        self.npz_path = Path(npz_path) if npz_path else self.csv_path.with_suffix(".npz")
        self.csv_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.csv_path, 'w', newline='')
        self._writer = csv.writer(self._file)
        self._writer.writerow(CSV_COLUMNS)
        self._steps: List[int] = []
        self._times: List[float] = []
        self._positions: List[np.ndarray] = []
        self._velocities: List[np.ndarray] = []
        self._densities: List[np.ndarray] = []
        self.closed = False

    def append_frame(self, step_index, time, mesh_state, energy):
        if self.closed:
            raise ValueError("append_frame() on a closed sink")
        if self._steps and step_index <= self._steps[-1]:
            raise ValueError(f"Frame step index {step_index} does not follow {self._steps[-1]}")
        geometry = compute_geometry(mesh_state)
        phi = np.asarray(mesh_state.protein_density)
        self._writer.writerow(_row(step_index, time, energy, geometry.total_area,
                                   geometry.volume, float(phi.mean())))
        self._file.flush()
        self._steps.append(step_index)
        self._times.append(float(time))
        self._positions.append(np.array(mesh_state.positions))
        self._velocities.append(np.array(mesh_state.velocities))
        self._densities.append(phi.copy())

    def close(self):
        if self.closed:
            return
        self._file.close()
        if self._steps:
            np.savez_compressed(
                self.npz_path,
                step=np.asarray(self._steps),
                time=np.asarray(self._times),
                positions=np.stack(self._positions),
                velocities=np.stack(self._velocities),
                protein_density=np.stack(self._densities),
            )
        self.closed = True


def export_csv(trajectory: MemoryTrajectory, mesh: MeshState, path: Path) -> None:
    """Write the scalar rows of an in-memory trajectory recorded on ``mesh``."""
    template = mesh.copy()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(CSV_COLUMNS)
        for frame in trajectory.frames:
            template.set_positions(frame.positions)
            geometry = compute_geometry(template)
            writer.writerow(_row(frame.step_index, frame.time, frame.energy, geometry.total_area,
                                 geometry.volume, float(frame.protein_density.mean())))


def export_arrays(trajectory: MemoryTrajectory, faces: np.ndarray, path: Path) -> None:
    """Write vertex arrays of every frame plus the face list to NPZ."""
    path.parent.mkdir(parents=True, exist_ok=True)
    frames = trajectory.frames
    np.savez_compressed(
        path,
        faces=np.asarray(faces),
        step=np.asarray([f.step_index for f in frames]),
        time=np.asarray([f.time for f in frames]),
        positions=np.stack([f.positions for f in frames]) if frames else np.empty((0, 0, 3)),
        velocities=np.stack([f.velocities for f in frames]) if frames else np.empty((0, 0, 3)),
        protein_density=np.stack([f.protein_density for f in frames]) if frames else np.empty((0, 0)),
    )


def get_git_commit() -> Optional[str]:
    """Get current git commit hash if available."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode == 0:
        return result.stdout.strip()[:12]
    return None


def summary_dict(result: "SimulationResult") -> dict:
    run = result.run
    return {
        "outcome": run.outcome.value,
        "n_steps": run.steps,
        "time": run.time,
        "initial_energy": run.initial_energy.as_dict(),
        "final_energy": run.energy.as_dict(),
        "mech_error_norm": run.mech_error_norm,
        "chem_error_norm": run.chem_error_norm,
        "chemical_failures": run.chemical_failures,
        "line_search_shrinks": run.line_search_shrinks,
        "frames_written": run.frames_written,
        "sink_failures": run.sink_failures,
        "wall_time_s": run.wall_time_s,
        "message": run.message,
    }


def export_metadata(result: "SimulationResult", path: Path) -> None:
    """
    Export metadata JSON with config and summary.

    Args:
        result: Simulation result.
        path: Output JSON path.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    metadata = {
        "timestamp": datetime.now().isoformat(),
        "git_commit": get_git_commit(),
        "config": config_to_dict(result.config),
        "mesh": {
            "n_vertices": result.mesh.n_vertices,
            "n_faces": result.mesh.n_faces,
            "closed": result.mesh.is_closed,
        },
        "summary": summary_dict(result),
    }

    with open(path, 'w') as f:
        json.dump(metadata, f, indent=2)


def export_results(result: "SimulationResult", out_dir: Path, run_name: str) -> dict:
    """
    Export all results to output directory.

    Frames are written only when the run recorded them in memory; a
    streaming CsvTrajectorySink has already written its own files.

    Returns:
        Dict with paths to exported files.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    if isinstance(result.trajectory, MemoryTrajectory):
        csv_path = out_dir / f"{run_name}.csv"
        npz_path = out_dir / f"{run_name}.npz"
        export_csv(result.trajectory, result.mesh, csv_path)
        export_arrays(result.trajectory, result.mesh.faces, npz_path)
        paths["csv"] = str(csv_path)
        paths["arrays"] = str(npz_path)
    elif isinstance(result.trajectory, CsvTrajectorySink):
        paths["csv"] = str(result.trajectory.csv_path)
        paths["arrays"] = str(result.trajectory.npz_path)

    json_path = out_dir / f"{run_name}_metadata.json"
    export_metadata(result, json_path)
    paths["metadata"] = str(json_path)
    return paths
