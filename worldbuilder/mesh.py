"""In-memory triangle mesh shared by the decoder, synthesizers and scene graph.

A ``Mesh`` is render-API agnostic: flat arrays of positions and normals,
a flat triangle index buffer (CCW winding, Y-up), and optional UVs.
Index buffers are 16-bit unless the vertex count needs 32 bits, or the
caller asks for wide indices explicitly.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import trimesh

from .constants import MAX_NARROW_VERTICES

logger = logging.getLogger(__name__)

INDEX_FORMATS = {"uint16": np.uint16, "uint32": np.uint32}


def pick_index_format(vertex_count: int, wide: bool = False) -> str:
    """Return the narrowest index format able to address *vertex_count*."""
    if wide or vertex_count > MAX_NARROW_VERTICES:
        return "uint32"
    return "uint16"


def compute_vertex_normals(positions, triangles) -> np.ndarray:
    """Vertex normals derived from face geometry (angle-weighted)."""
    positions = np.asarray(positions, dtype=np.float64)
    triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
    if len(triangles) == 0:
        normals = np.zeros_like(positions)
        normals[:, 1] = 1.0
        return normals
    tm = trimesh.Trimesh(vertices=positions, faces=triangles, process=False)
    return np.asarray(tm.vertex_normals, dtype=np.float64)


@dataclass
class Mesh:
    positions: np.ndarray
    normals: np.ndarray
    indices: np.ndarray
    uvs: Optional[np.ndarray] = None
    index_format: str = "uint16"

    def __post_init__(self):
        if self.index_format not in INDEX_FORMATS:
            raise ValueError(f"Unknown index format: {self.index_format}")
        self.positions = np.asarray(self.positions, dtype=np.float32).reshape(-1, 3)
        self.normals = np.asarray(self.normals, dtype=np.float32).reshape(-1, 3)
        if len(self.positions) != len(self.normals):
            raise ValueError(f"{len(self.positions)} positions but "
                             f"{len(self.normals)} normals")
        if len(self.positions) > MAX_NARROW_VERTICES and self.index_format == "uint16":
            raise ValueError(f"{len(self.positions)} vertices need uint32 indices")
        indices = np.asarray(self.indices).ravel()
        if len(indices) % 3 != 0:
            raise ValueError(f"Index count {len(indices)} is not a multiple of 3")
        if len(indices) and int(indices.max()) >= len(self.positions):
            raise ValueError("Triangle index out of range")
        self.indices = indices.astype(INDEX_FORMATS[self.index_format])
        if self.uvs is not None:
            self.uvs = np.asarray(self.uvs, dtype=np.float32).reshape(-1, 2)

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, positions, triangles, normals=None, uvs=None,
              wide: bool = False) -> "Mesh":
        """Build a mesh, deriving normals from the surface when not given."""
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        if normals is None:
            normals = compute_vertex_normals(positions, triangles)
        return cls(positions=positions, normals=normals,
                   indices=triangles.ravel(), uvs=uvs,
                   index_format=pick_index_format(len(positions), wide))

    @classmethod
    def from_trimesh(cls, tm: trimesh.Trimesh, wide: bool = False) -> "Mesh":
        return cls.build(tm.vertices, tm.faces,
                         normals=np.asarray(tm.vertex_normals), wide=wide)

    @classmethod
    def merge(cls, meshes) -> "Mesh":
        """Concatenate meshes into one, offsetting indices."""
        meshes = [m for m in meshes if m is not None and m.vertex_count]
        if not meshes:
            return cls.build(np.zeros((0, 3)), np.zeros((0, 3)))
        positions, normals, triangles = [], [], []
        offset = 0
        for m in meshes:
            positions.append(m.positions)
            normals.append(m.normals)
            triangles.append(m.triangles.astype(np.int64) + offset)
            offset += m.vertex_count
        return cls.build(np.vstack(positions), np.vstack(triangles),
                         normals=np.vstack(normals))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    @property
    def triangles(self) -> np.ndarray:
        return self.indices.reshape(-1, 3)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        """Axis-aligned (min, max) corners; zeros for an empty mesh."""
        if not self.vertex_count:
            return np.zeros(3), np.zeros(3)
        pos = self.positions.astype(np.float64)
        return pos.min(axis=0), pos.max(axis=0)

    # ------------------------------------------------------------------
    # Derived meshes (never mutate self)
    # ------------------------------------------------------------------

    def copy(self) -> "Mesh":
        return Mesh(positions=self.positions.copy(), normals=self.normals.copy(),
                    indices=self.indices.copy(),
                    uvs=None if self.uvs is None else self.uvs.copy(),
                    index_format=self.index_format)

    def with_recomputed_normals(self) -> "Mesh":
        out = self.copy()
        out.normals = compute_vertex_normals(self.positions, self.triangles).astype(np.float32)
        return out

    def transformed(self, matrix) -> "Mesh":
        """Apply a 4x4 affine transform to positions and normals."""
        matrix = np.asarray(matrix, dtype=np.float64)
        pos = self.positions.astype(np.float64)
        pos = pos @ matrix[:3, :3].T + matrix[:3, 3]

        linear = matrix[:3, :3]
        normal_matrix = np.linalg.inv(linear).T if abs(np.linalg.det(linear)) > 1e-12 else linear
        nrm = self.normals.astype(np.float64) @ normal_matrix.T
        lengths = np.linalg.norm(nrm, axis=1, keepdims=True)
        nrm = np.divide(nrm, lengths, out=np.zeros_like(nrm), where=lengths > 1e-12)

        tris = self.triangles
        # Mirroring flips handedness; reverse winding
        if np.linalg.det(linear) < 0:
            tris = tris[:, ::-1]
        return Mesh(positions=pos, normals=nrm, indices=tris.ravel(),
                    uvs=None if self.uvs is None else self.uvs.copy(),
                    index_format=self.index_format)

    def to_trimesh(self) -> trimesh.Trimesh:
        return trimesh.Trimesh(vertices=self.positions.astype(np.float64),
                               faces=self.triangles.astype(np.int64),
                               vertex_normals=self.normals.astype(np.float64),
                               process=False)
