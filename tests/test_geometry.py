"""
Tests for discrete geometry on known shapes and gradient consistency.
"""

import numpy as np
import pytest

from membrane_dynamics.exceptions import GeometryError
from membrane_dynamics.geometry import compute_geometry, scatter_face_vectors
from membrane_dynamics.mesh import icosphere, hexagon_patch, from_arrays

from conftest import make_perturbed_sphere


class TestSphere:
    """Unit icosphere converges to the smooth sphere."""

    def test_area_and_volume(self):
        g = compute_geometry(icosphere(4))
        assert g.total_area == pytest.approx(4 * np.pi, rel=5e-3)
        assert g.volume == pytest.approx(4 * np.pi / 3, rel=5e-3)

    def test_mean_curvature_close_to_one(self):
        mesh = icosphere(3)
        g = compute_geometry(mesh)
        total = g.integrated_mean_curvature.sum() / g.vertex_areas.sum()
        assert total == pytest.approx(1.0, rel=0.01)
        np.testing.assert_allclose(g.integrated_mean_curvature / g.mixed_voronoi_areas, 1.0, rtol=0.05)
        # barycentric areas overshoot at the 12 valence-5 vertices
        valence = np.bincount(np.asarray(mesh.faces).ravel(), minlength=mesh.n_vertices)
        regular = valence == 6
        assert regular.sum() == mesh.n_vertices - 12
        np.testing.assert_allclose(g.mean_curvature[regular], 1.0, rtol=0.1)
        np.testing.assert_allclose(g.mean_curvature[~regular], 1.0, rtol=0.2)

    def test_gauss_bonnet(self):
        g = compute_geometry(make_perturbed_sphere(2))
        assert g.gaussian_curvature.sum() == pytest.approx(4 * np.pi, abs=1e-9)

    def test_dual_areas_partition_surface(self):
        g = compute_geometry(make_perturbed_sphere(2))
        assert g.vertex_areas.sum() == pytest.approx(g.total_area)
        assert g.mixed_voronoi_areas.sum() == pytest.approx(g.total_area)

    def test_convex_dihedrals_positive(self):
        g = compute_geometry(icosphere(2))
        assert np.all(g.dihedral_angles > 0)

    def test_vertex_normals_point_outward(self):
        mesh = icosphere(2)
        g = compute_geometry(mesh)
        radial = np.asarray(mesh.positions)
        assert np.all(np.einsum("ij,ij->i", g.vertex_normals, radial) > 0.99)

    def test_volume_scales_cubically(self):
        g1 = compute_geometry(icosphere(2, 1.0))
        g2 = compute_geometry(icosphere(2, 2.0))
        assert g2.volume == pytest.approx(8 * g1.volume)


class TestFlatPatch:

    def test_flat_patch_has_no_curvature(self):
        g = compute_geometry(hexagon_patch(3))
        np.testing.assert_allclose(g.dihedral_angles, 0.0, atol=1e-14)
        np.testing.assert_allclose(g.mean_curvature, 0.0, atol=1e-14)

    def test_boundary_edges_zero_dihedral(self):
        mesh = hexagon_patch(2)
        x = np.array(mesh.positions)
        x[:, 2] = 0.1 * x[:, 0] ** 2
        mesh.set_positions(x)
        g = compute_geometry(mesh)
        boundary = mesh.connectivity.boundary_edges
        assert np.all(g.dihedral_angles[boundary] == 0.0)
        assert np.any(g.dihedral_angles[~boundary] != 0.0)

    def test_interior_gaussian_curvature_zero(self):
        mesh = hexagon_patch(3)
        g = compute_geometry(mesh)
        interior = ~mesh.connectivity.boundary_vertices
        np.testing.assert_allclose(g.gaussian_curvature[interior], 0.0, atol=1e-12)

    def test_cotan_laplacian_annihilates_linear_fields(self):
        mesh = hexagon_patch(3)
        g = compute_geometry(mesh)
        x = np.asarray(mesh.positions)
        phi = 2.0 * x[:, 0] - x[:, 1] + 0.3
        Lphi = g.cotan_laplacian @ phi
        interior = ~mesh.connectivity.boundary_vertices
        np.testing.assert_allclose(Lphi[interior], 0.0, atol=1e-12)


class TestDegeneracy:

    def test_collapsed_face_raises(self):
        mesh = icosphere(1)
        x = np.array(mesh.positions)
        a, b, c = mesh.faces[0]
        x[c] = 0.5 * (x[a] + x[b])
        mesh.set_positions(x)
        with pytest.raises(GeometryError):
            compute_geometry(mesh)

    def test_zero_edge_raises(self):
        vertices = [[0, 0, 0], [1e-13, 0, 0], [0, 1, 0]]
        with pytest.raises(GeometryError):
            compute_geometry(from_arrays(vertices, [[0, 1, 2]]))


class TestGradients:
    """Analytic gradients against central differences."""

    H = 1e-6

    def fd(self, mesh, quantity, vertex, axis):
        x0 = np.array(mesh.positions)
        values = []
        for sign in (1.0, -1.0):
            x = x0.copy()
            x[vertex, axis] += sign * self.H
            mesh.set_positions(x)
            values.append(quantity(compute_geometry(mesh)))
        mesh.set_positions(x0)
        return (values[0] - values[1]) / (2 * self.H)

    def test_dihedral_gradient(self):
        mesh = make_perturbed_sphere(1, amplitude=0.05)
        g = compute_geometry(mesh)
        conn = mesh.connectivity
        for e in (0, 7, 33, 71):
            stencil = [conn.edges[e, 0], conn.edges[e, 1], conn.edge_opposite[e, 0], conn.edge_opposite[e, 1]]
            for slot, v in enumerate(stencil):
                for axis in range(3):
                    numeric = self.fd(mesh, lambda geo: geo.dihedral_angles[e], v, axis)
                    assert g.dihedral_gradients[e, slot, axis] == pytest.approx(numeric, abs=1e-6)

    def test_area_gradient(self):
        mesh = make_perturbed_sphere(1)
        g = compute_geometry(mesh)
        grad = scatter_face_vectors(mesh.n_vertices, mesh.faces, g.face_area_gradients)
        for v in (0, 5, 20):
            for axis in range(3):
                numeric = self.fd(mesh, lambda geo: geo.total_area, v, axis)
                assert grad[v, axis] == pytest.approx(numeric, abs=1e-6)

    def test_volume_gradient(self):
        mesh = make_perturbed_sphere(1)
        g = compute_geometry(mesh)
        for v in (1, 11, 40):
            for axis in range(3):
                numeric = self.fd(mesh, lambda geo: geo.volume, v, axis)
                assert g.volume_gradient[v, axis] == pytest.approx(numeric, abs=1e-6)
