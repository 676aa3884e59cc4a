"""
Triangulated membrane state.

A MeshState owns the per-vertex fields (positions, velocities, protein
density) of a fixed-connectivity triangle mesh. Connectivity is derived once
at construction and never changes afterwards.

Faces are stored counter-clockwise when seen from outside, so face normals
computed as (x_b - x_a) x (x_c - x_a) point outward on closed surfaces.
"""

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .exceptions import GeometryError


@dataclass(frozen=True)
class Connectivity:
    """
    Immutable edge/face incidence of a manifold triangle mesh.

    Each undirected edge e = (i, j) is oriented along its first face, so
    face ``edge_faces[e, 0]`` traverses i -> j and face ``edge_faces[e, 1]``
    (or -1 on the boundary) traverses j -> i.
    """
    faces: np.ndarray           # (F, 3) int
    edges: np.ndarray           # (E, 2) int
    edge_faces: np.ndarray      # (E, 2) int, -1 for missing second face
    edge_opposite: np.ndarray   # (E, 2) int, opposite vertex in each face
    face_edges: np.ndarray      # (F, 3) int, edge opposite corner k
    vertex_faces: List[np.ndarray]
    vertex_neighbors: List[np.ndarray]
    boundary_vertices: np.ndarray  # (N,) bool
    boundary_edges: np.ndarray     # (E,) bool

    @property
    def n_vertices(self) -> int:
        return len(self.vertex_faces)

    @property
    def n_edges(self) -> int:
        return len(self.edges)

    @property
    def n_faces(self) -> int:
        return len(self.faces)

    @property
    def is_closed(self) -> bool:
        return not bool(self.boundary_edges.any())

    @classmethod
    def from_faces(cls, faces: np.ndarray, n_vertices: int) -> "Connectivity":
        """
        Build connectivity, checking that the mesh is an oriented manifold.

        Raises:
            GeometryError: On out-of-range indices, repeated corners,
                non-manifold edges or inconsistent face orientation.
        """
        faces = np.array(faces, dtype=np.int64)
        if faces.ndim != 2 or faces.shape[1] != 3 or len(faces) == 0:
            raise GeometryError(f"Faces must be a non-empty (F, 3) array, got shape {faces.shape}")
        if faces.min() < 0 or faces.max() >= n_vertices:
            raise GeometryError("Face references a vertex index out of range")

        edge_index = {}
        directed = set()
        edges, edge_faces, edge_opposite = [], [], []
        face_edges = np.empty_like(faces)

        for f, (a, b, c) in enumerate(faces):
            if a == b or b == c or c == a:
                raise GeometryError(f"Face {f} has repeated vertices")
            for k, (i, j, opp) in enumerate(((b, c, a), (c, a, b), (a, b, c))):
                if (i, j) in directed:
                    raise GeometryError(
                        f"Half-edge ({i}, {j}) used twice; mesh is non-manifold or inconsistently oriented"
                    )
                directed.add((i, j))
                key = (min(i, j), max(i, j))
                e = edge_index.get(key)
                if e is None:
                    e = len(edges)
                    edge_index[key] = e
                    edges.append((i, j))
                    edge_faces.append([f, -1])
                    edge_opposite.append([opp, -1])
                else:
                    if edge_faces[e][1] != -1:
                        raise GeometryError(f"Edge {key} is shared by more than two faces")
                    edge_faces[e][1] = f
                    edge_opposite[e][1] = opp
                face_edges[f, k] = e

        edges = np.asarray(edges, dtype=np.int64)
        edge_faces = np.asarray(edge_faces, dtype=np.int64)
        edge_opposite = np.asarray(edge_opposite, dtype=np.int64)
        boundary_edges = edge_faces[:, 1] < 0

        boundary_vertices = np.zeros(n_vertices, dtype=bool)
        boundary_vertices[edges[boundary_edges].ravel()] = True

        vf = [[] for _ in range(n_vertices)]
        for f, tri in enumerate(faces):
            for v in tri:
                vf[v].append(f)
        nbrs = [[] for _ in range(n_vertices)]
        for i, j in edges:
            nbrs[i].append(j)
            nbrs[j].append(i)

        isolated = [v for v in range(n_vertices) if not vf[v]]
        if isolated:
            raise GeometryError(f"Vertices {isolated[:5]} are not referenced by any face")

        for arr in (faces, edges, edge_faces, edge_opposite, face_edges, boundary_edges, boundary_vertices):
            arr.flags.writeable = False

        return cls(
            faces=faces,
            edges=edges,
            edge_faces=edge_faces,
            edge_opposite=edge_opposite,
            face_edges=face_edges,
            vertex_faces=[np.asarray(x, dtype=np.int64) for x in vf],
            vertex_neighbors=[np.asarray(x, dtype=np.int64) for x in nbrs],
            boundary_vertices=boundary_vertices,
            boundary_edges=boundary_edges,
        )


@dataclass(frozen=True)
class MeshSnapshot:
    """Copy of the mutable fields at one instant, used for trajectory frames."""
    positions: np.ndarray
    velocities: np.ndarray
    protein_density: np.ndarray
    revision: int


def _readonly(arr: np.ndarray) -> np.ndarray:
    view = arr.view()
    view.flags.writeable = False
    return view


class MeshState:
    """
    Mutable per-vertex fields over fixed connectivity.

    Arrays are exposed as read-only views. Mutation goes through the setters,
    each of which bumps ``revision`` so cached geometry can be invalidated.
    """

    def __init__(self, positions, faces, velocities=None, protein_density=None,
                 connectivity: Optional[Connectivity] = None):
        positions = np.array(positions, dtype=np.float64)
        if positions.ndim != 2 or positions.shape[1] != 3:
            raise GeometryError(f"Positions must be (N, 3), got shape {positions.shape}")
        n = len(positions)
        self._n = n
        self.connectivity = connectivity or Connectivity.from_faces(faces, n)
        self._positions = self._checked_vectors(positions, "positions")
        self._velocities = self._checked_vectors(
            np.zeros((n, 3)) if velocities is None else velocities, "velocities"
        )
        self._protein_density = self._checked_scalars(
            np.ones(n) if protein_density is None else protein_density, "protein_density"
        )
        self.revision = 0

    # --- read access ---

    @property
    def positions(self) -> np.ndarray:
        return _readonly(self._positions)

    @property
    def velocities(self) -> np.ndarray:
        return _readonly(self._velocities)

    @property
    def protein_density(self) -> np.ndarray:
        return _readonly(self._protein_density)

    @property
    def faces(self) -> np.ndarray:
        return self.connectivity.faces

    @property
    def n_vertices(self) -> int:
        return len(self._positions)

    @property
    def n_faces(self) -> int:
        return self.connectivity.n_faces

    @property
    def n_edges(self) -> int:
        return self.connectivity.n_edges

    @property
    def is_closed(self) -> bool:
        return self.connectivity.is_closed

    # --- mutation ---

    def _checked_vectors(self, values, name) -> np.ndarray:
        arr = np.array(values, dtype=np.float64)
        if arr.shape != (self._n, 3):
            raise GeometryError(f"{name} must have shape (N, 3), got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise GeometryError(f"Non-finite values in {name}")
        return arr

    def _checked_scalars(self, values, name) -> np.ndarray:
        arr = np.array(values, dtype=np.float64)
        if arr.ndim == 0:
            arr = np.full(self._n, float(arr))
        if arr.shape != (self._n,):
            raise GeometryError(f"{name} must have shape (N,), got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise GeometryError(f"Non-finite values in {name}")
        return arr

    def set_positions(self, positions) -> None:
        self._positions = self._checked_vectors(positions, "positions")
        self.revision += 1

    def set_velocities(self, velocities) -> None:
        self._velocities = self._checked_vectors(velocities, "velocities")

    def set_protein_density(self, density) -> None:
        self._protein_density = self._checked_scalars(density, "protein_density")
        self.revision += 1

    def update(self, positions=None, velocities=None, protein_density=None) -> None:
        """Replace any subset of fields; all inputs are validated before any is committed."""
        new_x = None if positions is None else self._checked_vectors(positions, "positions")
        new_v = None if velocities is None else self._checked_vectors(velocities, "velocities")
        new_phi = None if protein_density is None else self._checked_scalars(protein_density, "protein_density")
        if new_x is not None:
            self._positions = new_x
        if new_v is not None:
            self._velocities = new_v
        if new_phi is not None:
            self._protein_density = new_phi
        if new_x is not None or new_phi is not None:
            self.revision += 1

    def snapshot(self) -> MeshSnapshot:
        return MeshSnapshot(
            positions=self._positions.copy(),
            velocities=self._velocities.copy(),
            protein_density=self._protein_density.copy(),
            revision=self.revision,
        )

    def restore(self, snapshot: MeshSnapshot) -> None:
        """Roll fields back to a snapshot taken from this mesh."""
        self.update(snapshot.positions, snapshot.velocities, snapshot.protein_density)

    def copy(self) -> "MeshState":
        clone = MeshState(
            self._positions, self.faces, self._velocities, self._protein_density,
            connectivity=self.connectivity,
        )
        clone.revision = self.revision
        return clone

    def __repr__(self):
        return (f"MeshState(n_vertices={self.n_vertices}, n_faces={self.n_faces}, "
                f"closed={self.is_closed}, revision={self.revision})")


# --- factories ---

def from_arrays(vertices, faces, velocities=None, protein_density=None) -> MeshState:
    """Mesh from explicit vertex and face arrays."""
    return MeshState(vertices, faces, velocities=velocities, protein_density=protein_density)


_T = (1.0 + np.sqrt(5.0)) / 2.0

_ICOSAHEDRON_VERTICES = np.array([
    [-1, _T, 0], [1, _T, 0], [-1, -_T, 0], [1, -_T, 0],
    [0, -1, _T], [0, 1, _T], [0, -1, -_T], [0, 1, -_T],
    [_T, 0, -1], [_T, 0, 1], [-_T, 0, -1], [-_T, 0, 1],
], dtype=np.float64)

_ICOSAHEDRON_FACES = np.array([
    [0, 11, 5], [0, 5, 1], [0, 1, 7], [0, 7, 10], [0, 10, 11],
    [1, 5, 9], [5, 11, 4], [11, 10, 2], [10, 7, 6], [7, 1, 8],
    [3, 9, 4], [3, 4, 2], [3, 2, 6], [3, 6, 8], [3, 8, 9],
    [4, 9, 5], [2, 4, 11], [6, 2, 10], [8, 6, 7], [9, 8, 1],
], dtype=np.int64)


def icosphere(subdivisions: int = 2, radius: float = 1.0, protein_density=None) -> MeshState:
    """
    Closed sphere from a loop-subdivided icosahedron.

    Each subdivision splits every triangle into four; new vertices are
    projected back onto the sphere.
    """
    if subdivisions < 0:
        raise ValueError("subdivisions must be non-negative")
    vertices = [v / np.linalg.norm(v) for v in _ICOSAHEDRON_VERTICES]
    faces = _ICOSAHEDRON_FACES.tolist()

    for _ in range(subdivisions):
        midpoint_cache = {}

        def midpoint(i, j):
            key = (min(i, j), max(i, j))
            if key not in midpoint_cache:
                m = vertices[i] + vertices[j]
                vertices.append(m / np.linalg.norm(m))
                midpoint_cache[key] = len(vertices) - 1
            return midpoint_cache[key]

        refined = []
        for a, b, c in faces:
            ab, bc, ca = midpoint(a, b), midpoint(b, c), midpoint(c, a)
            refined.extend([[a, ab, ca], [b, bc, ab], [c, ca, bc], [ab, bc, ca]])
        faces = refined

    return MeshState(radius * np.asarray(vertices), np.asarray(faces), protein_density=protein_density)


def hexagon_patch(n_rings: int = 4, radius: float = 1.0, protein_density=None) -> MeshState:
    """
    Flat hexagonal disk in the xy-plane, normals along +z.

    Built on a triangular lattice with ``n_rings`` vertex rings around the
    center; the outer ring forms the boundary.
    """
    if n_rings < 1:
        raise ValueError("n_rings must be >= 1")
    spacing = radius / n_rings
    index = {}
    vertices = []
    for r in range(-n_rings, n_rings + 1):
        for q in range(-n_rings, n_rings + 1):
            if abs(q + r) <= n_rings:
                index[(q, r)] = len(vertices)
                vertices.append([spacing * (q + 0.5 * r), spacing * r * np.sqrt(3.0) / 2.0, 0.0])

    faces = []
    for (q, r), v in index.items():
        right, up, up_right = (q + 1, r), (q, r + 1), (q + 1, r - 1)
        if right in index and up in index:
            faces.append([v, index[right], index[up]])
        if right in index and up_right in index:
            faces.append([v, index[up_right], index[right]])

    return MeshState(np.asarray(vertices), np.asarray(faces), protein_density=protein_density)
