"""
Membrane Dynamics

Mechanochemical simulation of triangulated lipid membranes: Helfrich
bending with protein-dependent rigidity, tension, osmotic pressure,
protein adsorption/aggregation/line tension, and the integrators that
evolve shape and protein density together.

Units:
    - Reduced (dimensionless), k_B = 1
"""

__version__ = "0.3.0"

from .exceptions import (
    ConfigurationError,
    GeometryError,
    ConvergenceError,
    StateTransitionError,
)
from .mesh import MeshState, MeshSnapshot, Connectivity, icosphere, hexagon_patch, from_arrays
from .geometry import GeometrySnapshot, compute_geometry, MIN_FACE_AREA, MIN_EDGE_LENGTH
from .engine import ForceEngine, capture_reference
from .integrators import (
    Integrator,
    IntegratorStatus,
    RunOutcome,
    RunResult,
    Euler,
    VelocityVerlet,
    ConjugateGradient,
    BFGS,
    create_integrator,
)
from .trajectory import TrajectorySink, MemoryTrajectory, NullTrajectory, Frame
from .runner import SimulationRunner, SimulationResult, run_simulation

# Config exports
from .config import (
    SimulationConfig,
    Parameters,
    BendingConfig,
    TensionConfig,
    OsmoticConfig,
    AdsorptionConfig,
    AggregationConfig,
    DirichletConfig,
    ProteinConfig,
    DPDConfig,
    ExternalConfig,
    RegularizationConfig,
    VariationConfig,
    BoundaryConfig,
    IntegrationConfig,
    OutputConfig,
    MeshConfig,
    load_config,
    config_from_dict,
)
