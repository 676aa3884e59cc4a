"""
Energy terms of the membrane free energy.

Each compute_<term>(geometry, mesh, params, context) returns a TermResult
with the energy, the force -dE/dx and the chemical potential -dE/dphi.
The DPD thermostat is separate: it is velocity dependent and carries no
energy.

Usage:
    from membrane_dynamics.terms import compute_bending, TermContext
"""

from .types import (
    TermResult, TermContext, ReferenceGeometry, EnergyBreakdown, ForceBreakdown,
    POTENTIAL_TERMS,
)
from .constants import K_BOLTZMANN, gaussian
from .bending import compute_bending, bending_coefficients
from .surface import compute_surface, surface_tension
from .pressure import compute_pressure, osmotic_pressure
from .adsorption import compute_adsorption, compute_aggregation
from .dirichlet import compute_dirichlet, dirichlet_energy_from_laplacian
from .entropy import compute_entropy, check_density_range
from .external import compute_external, external_force_field
from .regularization import compute_regularization
from .dpd import compute_dpd, dpd_sigma

__all__ = [
    # Types
    'TermResult',
    'TermContext',
    'ReferenceGeometry',
    'EnergyBreakdown',
    'ForceBreakdown',
    'POTENTIAL_TERMS',
    # Constants
    'K_BOLTZMANN',
    'gaussian',
    # Conservative terms
    'compute_bending',
    'bending_coefficients',
    'compute_surface',
    'surface_tension',
    'compute_pressure',
    'osmotic_pressure',
    'compute_adsorption',
    'compute_aggregation',
    'compute_dirichlet',
    'dirichlet_energy_from_laplacian',
    'compute_entropy',
    'check_density_range',
    'compute_external',
    'external_force_field',
    'compute_regularization',
    # Thermostat
    'compute_dpd',
    'dpd_sigma',
]
