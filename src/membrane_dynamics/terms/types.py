"""
Result and context types shared by the energy terms.

Sign conventions:
    - force = -dE/dx, shape (N, 3), or None when the term has no shape
      dependence.
    - potential = -dE/dphi, shape (N,), or None when the term has no
      protein dependence.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np


@dataclass(frozen=True)
class TermResult:
    """
    Output of one energy term evaluated on one mesh state.

    Attributes:
        energy: Scalar energy contribution.
        force: Vertex forces (-dE/dx), or None.
        potential: Chemical potential contribution (-dE/dphi), or None.
    """
    energy: float
    force: Optional[np.ndarray] = None
    potential: Optional[np.ndarray] = None


@dataclass(frozen=True)
class ReferenceGeometry:
    """
    Reference configuration used by regularization and external forcing.

    Captured once, normally from the initial mesh.
    """
    positions: np.ndarray
    edge_lengths: np.ndarray
    face_areas: np.ndarray
    vertex_areas: np.ndarray


@dataclass(frozen=True)
class TermContext:
    """Non-geometric inputs a term may need."""
    time: float = 0.0
    reference: Optional[ReferenceGeometry] = None


# Mechanical terms summed into the potential energy, in reporting order
POTENTIAL_TERMS = (
    "bending", "surface", "pressure", "adsorption", "aggregation",
    "dirichlet", "regularization", "external",
)


@dataclass(frozen=True)
class EnergyBreakdown:
    """
    Energy of one mesh state.

    potential: sum of POTENTIAL_TERMS.
    free_energy: potential plus the entropy interior penalty.
    total: free_energy + kinetic.
    """
    bending: float = 0.0
    surface: float = 0.0
    pressure: float = 0.0
    adsorption: float = 0.0
    aggregation: float = 0.0
    dirichlet: float = 0.0
    regularization: float = 0.0
    external: float = 0.0
    entropy: float = 0.0
    kinetic: float = 0.0
    potential: float = 0.0
    free_energy: float = 0.0
    total: float = 0.0

    @classmethod
    def from_terms(cls, energies: Dict[str, float], kinetic: float = 0.0) -> "EnergyBreakdown":
        values = {name: float(energies.get(name, 0.0)) for name in POTENTIAL_TERMS}
        potential = sum(values.values())
        entropy = float(energies.get("entropy", 0.0))
        free_energy = potential + entropy
        return cls(
            **values,
            entropy=entropy,
            kinetic=float(kinetic),
            potential=potential,
            free_energy=free_energy,
            total=free_energy + kinetic,
        )

    def as_dict(self) -> Dict[str, float]:
        return dict(self.__dict__)


@dataclass(frozen=True)
class ForceBreakdown:
    """
    Forces and chemical potentials of one mesh state, after boundary masks.

    Attributes:
        vectors: Per-term (N, 3) forces.
        potentials: Per-term (N,) chemical potentials.
        mechanical: Summed force, zero when shape variation is off.
        chemical_potential: Summed potential, zero when protein variation is off.
        mech_error_norm: L1 norm of the mechanical force.
        chem_error_norm: L1 norm of the chemical potential.
    """
    mechanical: np.ndarray
    chemical_potential: np.ndarray
    vectors: Dict[str, np.ndarray] = field(default_factory=dict)
    potentials: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def mech_error_norm(self) -> float:
        return float(np.abs(self.mechanical).sum())

    @property
    def chem_error_norm(self) -> float:
        return float(np.abs(self.chemical_potential).sum())

    @property
    def max_force(self) -> float:
        if len(self.mechanical) == 0:
            return 0.0
        return float(np.linalg.norm(self.mechanical, axis=1).max())

    @property
    def max_chemical_potential(self) -> float:
        if len(self.chemical_potential) == 0:
            return 0.0
        return float(np.abs(self.chemical_potential).max())
