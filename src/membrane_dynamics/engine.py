"""
Force/energy engine: assembles the enabled energy terms on one mesh.

The engine owns no integration logic. Integrators ask it for forces,
chemical potentials, DPD forces and energies of the current or of a trial
state, and commit accepted states through the MeshState setters.

Boundary conditions (open meshes only):
    shape "pin":     boundary vertices receive zero force
    shape "roller":  boundary vertices move along z only
    protein "pin":   boundary densities receive zero chemical potential
"""

from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .config import Parameters
from .exceptions import GeometryError
from .geometry import GeometrySnapshot, compute_geometry
from .mesh import MeshState
from .terms import (
    EnergyBreakdown, ForceBreakdown, ReferenceGeometry, TermContext, TermResult,
    compute_adsorption, compute_aggregation, compute_bending, compute_dirichlet,
    compute_dpd, compute_entropy, compute_external, compute_pressure,
    compute_regularization, compute_surface,
)
from .utils.logger import Logger

TermFn = Callable[[GeometrySnapshot, MeshState, Parameters, TermContext], TermResult]


def capture_reference(mesh: MeshState) -> ReferenceGeometry:
    """Reference configuration from the mesh's current geometry."""
    geometry = compute_geometry(mesh)
    return ReferenceGeometry(
        positions=np.array(mesh.positions),
        edge_lengths=geometry.edge_lengths.copy(),
        face_areas=geometry.face_areas.copy(),
        vertex_areas=geometry.vertex_areas.copy(),
    )


class ForceEngine:
    """
    Evaluates energies and forces of the enabled terms.

    Attributes:
        mesh: The MeshState being simulated.
        parameters: Current (immutable) Parameters; replaced, never mutated.
        reference: Reference geometry for regularization/external forcing.
        time: Simulation time seen by time-dependent terms.
    """

    # name, parameter group gating the term, compute function
    TERMS: Tuple[Tuple[str, str, TermFn], ...] = (
        ("bending", "bending", compute_bending),
        ("surface", "tension", compute_surface),
        ("pressure", "osmotic", compute_pressure),
        ("adsorption", "adsorption", compute_adsorption),
        ("aggregation", "aggregation", compute_aggregation),
        ("dirichlet", "dirichlet", compute_dirichlet),
        ("regularization", "regularization", compute_regularization),
        ("external", "external", compute_external),
        ("entropy", "entropy", compute_entropy),
    )

    def __init__(self, mesh: MeshState, parameters: Parameters,
                 reference: Optional[ReferenceGeometry] = None):
        self.mesh = mesh
        self.parameters = parameters
        self.reference = reference if reference is not None else capture_reference(mesh)
        self.time = 0.0
        self.rng = np.random.default_rng(parameters.dpd.seed)
        self._geometry: Optional[GeometrySnapshot] = None
        self._terms: Optional[Dict[str, TermResult]] = None
        self._terms_key: Optional[Tuple[int, float, Parameters]] = None

    # --- geometry ---

    def geometry(self) -> GeometrySnapshot:
        """Geometry of the current mesh, recomputed only when the revision changes."""
        if self._geometry is None or self._geometry.revision != self.mesh.revision:
            self._geometry = compute_geometry(self.mesh)
        return self._geometry

    def context(self, time: Optional[float] = None) -> TermContext:
        return TermContext(time=self.time if time is None else time, reference=self.reference)

    def enabled_terms(self) -> List[str]:
        return [name for name, group, _ in self.TERMS if self.parameters.is_enabled(group)]

    def set_parameters(self, parameters: Parameters) -> None:
        self.parameters = parameters

    def check_mesh_compatibility(self) -> List[str]:
        """Parameter/mesh combinations that cannot be evaluated."""
        errors = []
        p = self.parameters
        if p.is_enabled("osmotic") and not self.mesh.is_closed:
            errors.append("osmotic: enclosed volume requires a closed mesh")
        if p.is_enabled("entropy"):
            phi = np.asarray(self.mesh.protein_density)
            if np.any((phi <= 0.0) | (phi >= 1.0)):
                errors.append("protein: initial density must lie in (0, 1) with entropy penalty on")
        return errors

    # --- masks ---

    def mask_force(self, force: np.ndarray) -> np.ndarray:
        boundary = self.mesh.connectivity.boundary_vertices
        condition = self.parameters.boundary.shape_boundary_condition
        if not boundary.any() or condition == "none":
            return force
        masked = force.copy()
        if condition == "pin":
            masked[boundary] = 0.0
        elif condition == "roller":
            masked[boundary, :2] = 0.0
        return masked

    def mask_protein(self, potential: np.ndarray) -> np.ndarray:
        boundary = self.mesh.connectivity.boundary_vertices
        if not boundary.any() or self.parameters.boundary.protein_boundary_condition == "none":
            return potential
        masked = potential.copy()
        masked[boundary] = 0.0
        return masked

    # --- evaluation ---

    def _evaluate_terms(self, mesh: MeshState, geometry: GeometrySnapshot,
                        context: TermContext) -> Dict[str, TermResult]:
        results = {}
        for name, group, compute in self.TERMS:
            if not self.parameters.is_enabled(group):
                continue
            result = compute(geometry, mesh, self.parameters, context)
            if not np.isfinite(result.energy):
                raise GeometryError(f"Non-finite {name} energy: {result.energy}")
            if result.force is not None and not np.all(np.isfinite(result.force)):
                raise GeometryError(f"Non-finite {name} force")
            if result.potential is not None and not np.all(np.isfinite(result.potential)):
                raise GeometryError(f"Non-finite {name} chemical potential")
            results[name] = result
        return results

    def current_terms(self, time: Optional[float] = None) -> Dict[str, TermResult]:
        """Term results of the current state, reused until the mesh, time or parameters change."""
        context = self.context(time)
        key = (self.mesh.revision, context.time, self.parameters)
        cached = self._terms_key
        if (self._terms is None or cached[0] != key[0] or cached[1] != key[1]
                or cached[2] is not key[2]):
            self._terms = self._evaluate_terms(self.mesh, self.geometry(), context)
            self._terms_key = key
        return self._terms

    def compute_physical_forces(self) -> ForceBreakdown:
        """Masked per-term forces/potentials and their sums for the current state."""
        results = self.current_terms()
        n = self.mesh.n_vertices
        vectors = {name: self.mask_force(r.force) for name, r in results.items() if r.force is not None}
        potentials = {name: self.mask_protein(r.potential)
                      for name, r in results.items() if r.potential is not None}

        mechanical = np.zeros((n, 3))
        if self.parameters.is_enabled("shape"):
            for force in vectors.values():
                mechanical += force

        chemical = np.zeros(n)
        if self.parameters.is_enabled("protein"):
            for potential in potentials.values():
                chemical += potential

        return ForceBreakdown(
            mechanical=mechanical,
            chemical_potential=chemical,
            vectors=vectors,
            potentials=potentials,
        )

    def compute_chemical_potential(self) -> np.ndarray:
        return self.compute_physical_forces().chemical_potential

    def compute_dpd_forces(self, dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """Masked (damping, stochastic) DPD forces; zero when DPD is off."""
        if not self.parameters.is_enabled("dpd"):
            zeros = np.zeros((self.mesh.n_vertices, 3))
            return zeros, zeros.copy()
        damping, stochastic = compute_dpd(self.mesh, self.parameters.dpd, dt, self.rng)
        return self.mask_force(damping), self.mask_force(stochastic)

    def kinetic_energy(self, velocities: Optional[np.ndarray] = None) -> float:
        v = np.asarray(self.mesh.velocities if velocities is None else velocities)
        return 0.5 * float(np.sum(v * v))

    def compute_free_energy(self, time: Optional[float] = None) -> EnergyBreakdown:
        results = self.current_terms(time)
        return EnergyBreakdown.from_terms(
            {name: r.energy for name, r in results.items()},
            kinetic=self.kinetic_energy(),
        )

    def evaluate_trial(self, positions: Optional[np.ndarray] = None,
                       density: Optional[np.ndarray] = None,
                       time: Optional[float] = None) -> EnergyBreakdown:
        """
        Energy of a candidate state; the engine's mesh is not touched.

        Raises:
            GeometryError: If the trial is degenerate or the density leaves
                (0, 1) with the entropy penalty on.
        """
        trial = self.mesh.copy()
        trial.update(positions=positions, protein_density=density)
        results = self._evaluate_terms(trial, compute_geometry(trial), self.context(time))
        return EnergyBreakdown.from_terms(
            {name: r.energy for name, r in results.items()},
            kinetic=self.kinetic_energy(trial.velocities),
        )

    def log_summary(self) -> None:
        g = self.geometry()
        Logger.log(
            f"Engine terms={self.enabled_terms()} area={g.total_area:.6g} "
            f"volume={g.volume:.6g} min_edge={g.min_edge_length:.3e}",
            Logger.LogPriority.INFO, "engine",
        )
