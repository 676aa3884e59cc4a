"""
Dissipative particle dynamics (DPD) thermostat on mesh edges.

Physics, for edge (i, j) with unit vector e_ij = (x_i - x_j) / |x_i - x_j|:
    damping:    f_i = -gamma ((v_i - v_j) . e_ij) e_ij,  f_j = -f_i
    stochastic: f_i = xi e_ij,                           f_j = -f_i
                xi ~ N(0, sigma^2),  sigma = sqrt(2 gamma k_B T / dt)

Pairwise and antisymmetric, so total momentum is conserved. Dissipative:
contributes no energy.
"""

import numpy as np

from .constants import K_BOLTZMANN


def dpd_sigma(gamma: float, temperature: float, dt: float) -> float:
    return float(np.sqrt(2.0 * gamma * K_BOLTZMANN * temperature / dt))


def compute_dpd(mesh, dpd, dt: float, rng: np.random.Generator):
    """
    Damping and stochastic forces.

    Returns:
        (damping, stochastic), each (N, 3).
    """
    x = np.asarray(mesh.positions)
    v = np.asarray(mesh.velocities)
    edges = mesh.connectivity.edges
    i, j = edges[:, 0], edges[:, 1]

    d = x[i] - x[j]
    e_hat = d / np.linalg.norm(d, axis=1)[:, None]
    n = mesh.n_vertices

    damping = np.zeros((n, 3))
    if dpd.gamma != 0:
        dv = v[i] - v[j]
        df = dpd.gamma * np.einsum("ij,ij->i", dv, e_hat)[:, None] * e_hat
        np.add.at(damping, i, -df)
        np.add.at(damping, j, df)

    stochastic = np.zeros((n, 3))
    sigma = dpd_sigma(dpd.gamma, dpd.temperature, dt)
    if sigma != 0:
        noise = rng.normal(0.0, sigma, size=len(edges))[:, None] * e_hat
        np.add.at(stochastic, i, noise)
        np.add.at(stochastic, j, -noise)

    return damping, stochastic
