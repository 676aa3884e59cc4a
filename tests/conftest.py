"""
Pytest configuration for membrane_dynamics tests.

Puts src/ on sys.path so the tests run from a plain checkout, and routes
Logger output to memory for every test.
"""

import os
import sys

import numpy as np
import pytest

_src = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if _src not in sys.path:
    sys.path.insert(0, _src)

from membrane_dynamics.mesh import icosphere, hexagon_patch  # noqa: E402
from membrane_dynamics.utils.logger import Logger, MemoryLogStrategy  # noqa: E402


@pytest.fixture(autouse=True)
def log_records():
    """In-memory log strategy installed for the duration of a test."""
    strategy = MemoryLogStrategy()
    previous = Logger.set_log_storage_strategy(strategy)
    Logger.enable_logging()
    Logger.set_min_priority(Logger.LogPriority.DEBUG)
    yield strategy
    Logger.set_log_storage_strategy(previous)


def make_perturbed_sphere(subdivisions=1, amplitude=0.03, seed=7, density=None):
    """Unit icosphere with random vertex jitter and (optionally random) protein density."""
    rng = np.random.default_rng(seed)
    mesh = icosphere(subdivisions, 1.0)
    mesh.set_positions(np.asarray(mesh.positions) + amplitude * rng.normal(size=(mesh.n_vertices, 3)))
    if density == "random":
        mesh.set_protein_density(rng.uniform(0.2, 0.8, size=mesh.n_vertices))
    elif density is not None:
        mesh.set_protein_density(density)
    return mesh


@pytest.fixture
def sphere():
    return icosphere(2, 1.0)


@pytest.fixture
def perturbed_sphere():
    return make_perturbed_sphere(density="random")


@pytest.fixture
def patch():
    return hexagon_patch(3, 1.0, protein_density=0.5)
