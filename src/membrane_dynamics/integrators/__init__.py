"""
Integrators: time steppers and energy minimizers sharing one step protocol.

Usage:
    from membrane_dynamics.integrators import create_integrator
    integrator = create_integrator("velocity_verlet", engine, integration)
    result = integrator.run()
"""

from typing import Optional

from ..config import IntegrationConfig, OutputConfig
from ..engine import ForceEngine
from ..exceptions import ConfigurationError
from ..trajectory import TrajectorySink
from .base import (
    Integrator, IntegratorStatus, RunOutcome, RunState, RunResult, TERMINAL_STATUSES,
)
from .euler import Euler
from .velocity_verlet import VelocityVerlet
from .conjugate_gradient import ConjugateGradient
from .bfgs import BFGS

INTEGRATORS = {
    Euler.METHOD: Euler,
    VelocityVerlet.METHOD: VelocityVerlet,
    ConjugateGradient.METHOD: ConjugateGradient,
    BFGS.METHOD: BFGS,
}


def create_integrator(method: str, engine: ForceEngine, integration: IntegrationConfig,
                      output: Optional[OutputConfig] = None,
                      sink: Optional[TrajectorySink] = None) -> Integrator:
    """
    Factory function to create an integrator by method name.

    Raises:
        ConfigurationError: If the method is unknown.
    """
    cls = INTEGRATORS.get(method)
    if cls is None:
        raise ConfigurationError([f"Unknown integration method: {method}"])
    return cls(engine, integration, output=output, sink=sink)


__all__ = [
    'Integrator',
    'IntegratorStatus',
    'RunOutcome',
    'RunState',
    'RunResult',
    'TERMINAL_STATUSES',
    'Euler',
    'VelocityVerlet',
    'ConjugateGradient',
    'BFGS',
    'INTEGRATORS',
    'create_integrator',
]
