"""
Discrete differential geometry of a triangle mesh.

compute_geometry() is a pure function of vertex positions and connectivity.
Every quantity that energy terms differentiate (face areas, edge lengths,
dihedral angles, enclosed volume) is returned together with its exact
gradient, so forces assembled from these pieces are the true negative
gradient of the discrete energy.

Conventions:
    - Faces are counter-clockwise seen from outside; normals point outward.
    - Dihedral angle of an interior edge is positive on convex ridges and 0
      on boundary edges.
    - Integrated mean curvature M_i = sum over edges at i of l_e theta_e / 4,
      pointwise H_i = M_i / A_i with A_i the barycentric dual area.
"""

from dataclasses import dataclass

import numpy as np
from scipy import sparse

from .exceptions import GeometryError
from .mesh import MeshState, Connectivity

MIN_FACE_AREA = 1e-14
MIN_EDGE_LENGTH = 1e-12


@dataclass(frozen=True)
class GeometrySnapshot:
    """Derived geometry for one mesh revision."""
    revision: int
    n_vertices: int

    # faces
    face_normals: np.ndarray        # (F, 3) unit outward
    face_areas: np.ndarray          # (F,)
    face_area_gradients: np.ndarray  # (F, 3, 3): d A_f / d x_corner
    corner_angles: np.ndarray       # (F, 3)

    # edges
    edge_vectors: np.ndarray        # (E, 3) x_j - x_i
    edge_lengths: np.ndarray        # (E,)
    dihedral_angles: np.ndarray     # (E,)
    dihedral_gradients: np.ndarray  # (E, 4, 3): d theta / d [x_i, x_j, x_k, x_l]
    cotan_weights: np.ndarray       # (E,)

    # vertices
    vertex_areas: np.ndarray        # (N,) barycentric dual area
    mixed_voronoi_areas: np.ndarray  # (N,)
    integrated_mean_curvature: np.ndarray  # (N,)
    mean_curvature: np.ndarray      # (N,)
    gaussian_curvature: np.ndarray  # (N,) integrated angle defect
    vertex_normals: np.ndarray      # (N, 3) angle weighted

    # global
    total_area: float
    volume: float
    volume_gradient: np.ndarray     # (N, 3)
    cotan_laplacian: sparse.csr_matrix

    @property
    def min_edge_length(self) -> float:
        return float(self.edge_lengths.min())


def scatter_face_vectors(n_vertices: int, faces: np.ndarray, per_corner: np.ndarray) -> np.ndarray:
    """Sum (F, 3, 3) per-corner vectors onto an (N, 3) vertex field."""
    out = np.zeros((n_vertices, 3))
    for k in range(3):
        np.add.at(out, faces[:, k], per_corner[:, k, :])
    return out


def scatter_edge_vectors(n_vertices: int, connectivity: Connectivity, per_vertex: np.ndarray) -> np.ndarray:
    """
    Sum (E, 4, 3) per-edge stencil vectors onto an (N, 3) vertex field.

    Stencil order is [i, j, k, l]; entries for a missing l (boundary) are
    ignored.
    """
    out = np.zeros((n_vertices, 3))
    edges = connectivity.edges
    opposite = connectivity.edge_opposite
    np.add.at(out, edges[:, 0], per_vertex[:, 0, :])
    np.add.at(out, edges[:, 1], per_vertex[:, 1, :])
    np.add.at(out, opposite[:, 0], per_vertex[:, 2, :])
    interior = opposite[:, 1] >= 0
    np.add.at(out, opposite[interior, 1], per_vertex[interior, 3, :])
    return out


def scatter_face_scalars(n_vertices: int, faces: np.ndarray, per_face: np.ndarray) -> np.ndarray:
    """Add a per-face scalar to each of its three corners."""
    out = np.zeros(n_vertices)
    for k in range(3):
        np.add.at(out, faces[:, k], per_face)
    return out


def _cot(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.einsum("ij,ij->i", u, v) / np.linalg.norm(np.cross(u, v), axis=1)


def _angle(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    return np.arctan2(np.linalg.norm(np.cross(u, v), axis=1), np.einsum("ij,ij->i", u, v))


def _dihedral(x: np.ndarray, conn: Connectivity, face_normals, face_areas):
    """Signed dihedral angles and their gradients over the 4-vertex stencil."""
    n_edges = conn.n_edges
    theta = np.zeros(n_edges)
    grad = np.zeros((n_edges, 4, 3))

    interior = ~conn.boundary_edges
    if not interior.any():
        return theta, grad

    i, j = conn.edges[interior, 0], conn.edges[interior, 1]
    k, l = conn.edge_opposite[interior, 0], conn.edge_opposite[interior, 1]
    f1, f2 = conn.edge_faces[interior, 0], conn.edge_faces[interior, 1]
    n1, n2 = face_normals[f1], face_normals[f2]

    e = x[j] - x[i]
    e_len2 = np.einsum("ij,ij->i", e, e)
    e_len = np.sqrt(e_len2)
    e_hat = e / e_len[:, None]

    theta[interior] = np.arctan2(
        np.einsum("ij,ij->i", e_hat, np.cross(n1, n2)),
        np.einsum("ij,ij->i", n1, n2),
    )

    c1 = (e_len / (2.0 * face_areas[f1]))[:, None] * n1
    c2 = (e_len / (2.0 * face_areas[f2]))[:, None] * n2
    s1 = (np.einsum("ij,ij->i", x[k] - x[i], e) / e_len2)[:, None]
    s2 = (np.einsum("ij,ij->i", x[l] - x[i], e) / e_len2)[:, None]

    g = np.empty((interior.sum(), 4, 3))
    g[:, 0] = (1.0 - s1) * c1 + (1.0 - s2) * c2
    g[:, 1] = s1 * c1 + s2 * c2
    g[:, 2] = -c1
    g[:, 3] = -c2
    grad[interior] = g
    return theta, grad


def compute_geometry(mesh: MeshState) -> GeometrySnapshot:
    """
    Derive all geometric quantities for the current mesh revision.

    Raises:
        GeometryError: On non-finite positions, a face area below
            MIN_FACE_AREA or an edge shorter than MIN_EDGE_LENGTH.
    """
    x = np.asarray(mesh.positions)
    conn = mesh.connectivity
    faces = conn.faces
    n = mesh.n_vertices

    if not np.all(np.isfinite(x)):
        raise GeometryError("Non-finite vertex positions")

    xa, xb, xc = x[faces[:, 0]], x[faces[:, 1]], x[faces[:, 2]]

    # Faces
    cross = np.cross(xb - xa, xc - xa)
    double_area = np.linalg.norm(cross, axis=1)
    face_areas = 0.5 * double_area
    if face_areas.min() < MIN_FACE_AREA:
        bad = int(np.argmin(face_areas))
        raise GeometryError(f"Degenerate face {bad}: area {face_areas[bad]:.3e} < {MIN_FACE_AREA}")
    face_normals = cross / double_area[:, None]

    area_grad = np.empty((len(faces), 3, 3))
    area_grad[:, 0] = 0.5 * np.cross(face_normals, xc - xb)
    area_grad[:, 1] = 0.5 * np.cross(face_normals, xa - xc)
    area_grad[:, 2] = 0.5 * np.cross(face_normals, xb - xa)

    corner_angles = np.stack([
        _angle(xb - xa, xc - xa),
        _angle(xc - xb, xa - xb),
        _angle(xa - xc, xb - xc),
    ], axis=1)

    # Edges
    edge_vectors = x[conn.edges[:, 1]] - x[conn.edges[:, 0]]
    edge_lengths = np.linalg.norm(edge_vectors, axis=1)
    if edge_lengths.min() < MIN_EDGE_LENGTH:
        bad = int(np.argmin(edge_lengths))
        raise GeometryError(f"Degenerate edge {bad}: length {edge_lengths[bad]:.3e} < {MIN_EDGE_LENGTH}")

    theta, theta_grad = _dihedral(x, conn, face_normals, face_areas)

    # cot of the angle opposite each edge, per side
    cot_sides = np.zeros((conn.n_edges, 2))
    for side in range(2):
        present = conn.edge_opposite[:, side] >= 0
        o = conn.edge_opposite[present, side]
        ei, ej = conn.edges[present, 0], conn.edges[present, 1]
        cot_sides[present, side] = _cot(x[ei] - x[o], x[ej] - x[o])
    cotan_weights = 0.5 * cot_sides.sum(axis=1)

    i, j = conn.edges[:, 0], conn.edges[:, 1]
    rows = np.concatenate([i, j, i, j])
    cols = np.concatenate([j, i, i, j])
    vals = np.concatenate([-cotan_weights, -cotan_weights, cotan_weights, cotan_weights])
    laplacian = sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    # Vertices
    vertex_areas = scatter_face_scalars(n, faces, face_areas / 3.0)
    mixed_areas = _mixed_voronoi_areas(n, faces, xa, xb, xc, face_areas, corner_angles)

    integrated_H = np.zeros(n)
    l_theta = 0.25 * edge_lengths * theta
    np.add.at(integrated_H, i, l_theta)
    np.add.at(integrated_H, j, l_theta)

    angle_sum = np.zeros(n)
    for k in range(3):
        np.add.at(angle_sum, faces[:, k], corner_angles[:, k])
    gaussian = np.where(conn.boundary_vertices, np.pi, 2.0 * np.pi) - angle_sum

    weighted = np.zeros((n, 3))
    for k in range(3):
        np.add.at(weighted, faces[:, k], corner_angles[:, k, None] * face_normals)
    vertex_normals = weighted / np.linalg.norm(weighted, axis=1)[:, None]

    # Volume, signed: positive for outward oriented closed surfaces
    volume = float(np.einsum("ij,ij->i", xa, np.cross(xb, xc)).sum() / 6.0)
    vol_corner = np.stack([np.cross(xb, xc), np.cross(xc, xa), np.cross(xa, xb)], axis=1) / 6.0
    volume_gradient = scatter_face_vectors(n, faces, vol_corner)

    return GeometrySnapshot(
        revision=mesh.revision,
        n_vertices=n,
        face_normals=face_normals,
        face_areas=face_areas,
        face_area_gradients=area_grad,
        corner_angles=corner_angles,
        edge_vectors=edge_vectors,
        edge_lengths=edge_lengths,
        dihedral_angles=theta,
        dihedral_gradients=theta_grad,
        cotan_weights=cotan_weights,
        vertex_areas=vertex_areas,
        mixed_voronoi_areas=mixed_areas,
        integrated_mean_curvature=integrated_H,
        mean_curvature=integrated_H / vertex_areas,
        gaussian_curvature=gaussian,
        vertex_normals=vertex_normals,
        total_area=float(face_areas.sum()),
        volume=volume,
        volume_gradient=volume_gradient,
        cotan_laplacian=laplacian,
    )


def _mixed_voronoi_areas(n, faces, xa, xb, xc, face_areas, corner_angles):
    """Meyer et al. mixed areas: Voronoi for non-obtuse faces, area split otherwise."""
    cot = 1.0 / np.tan(corner_angles)
    lab2 = np.einsum("ij,ij->i", xb - xa, xb - xa)
    lbc2 = np.einsum("ij,ij->i", xc - xb, xc - xb)
    lca2 = np.einsum("ij,ij->i", xa - xc, xa - xc)

    voronoi = np.stack([
        (lab2 * cot[:, 2] + lca2 * cot[:, 1]) / 8.0,
        (lbc2 * cot[:, 0] + lab2 * cot[:, 2]) / 8.0,
        (lca2 * cot[:, 1] + lbc2 * cot[:, 0]) / 8.0,
    ], axis=1)

    obtuse = corner_angles > np.pi / 2
    any_obtuse = obtuse.any(axis=1)
    split = np.where(obtuse, 0.5, 0.25) * face_areas[:, None]
    per_corner = np.where(any_obtuse[:, None], split, voronoi)

    out = np.zeros(n)
    for k in range(3):
        np.add.at(out, faces[:, k], per_corner[:, k])
    return out
