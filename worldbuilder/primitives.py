"""Parametric primitive meshes.

All primitives are centred on the origin, Y-up, with Unity-like unit
sizes so part transforms from avatar specs read the same way:

    cube      1 x 1 x 1
    sphere    diameter 1
    cylinder  diameter 1, height 2
    capsule   diameter 1, height 2
    cone      base diameter 1 at y=-0.5, apex at y=+0.5
    torus     ring in the XZ plane (axis = +Y)
    quad      1 x 1 in the XZ plane, facing +Y

Segment counts are clamped silently; every function is a pure function
of its arguments.
"""

import math
from functools import lru_cache

import numpy as np
import trimesh

from .constants import CONE_SIDES_RANGE, TORUS_MAJOR_RANGE, TORUS_MINOR_RANGE
from .mesh import Mesh

# trimesh builds cylinders/capsules along +Z; rotate them onto +Y
_Z_TO_Y = trimesh.transformations.rotation_matrix(-math.pi / 2, [1, 0, 0])


def _clamp(value, bounds):
    lo, hi = bounds
    return max(lo, min(int(value), hi))


# ── Spec'd primitives ─────────────────────────────────────────────

@lru_cache(maxsize=32)
def _cone(sides: int) -> Mesh:
    angles = np.arange(sides) * (2 * math.pi / sides)
    positions = np.empty((sides + 2, 3), dtype=np.float64)
    positions[0] = (0.0, 0.5, 0.0)    # apex
    positions[1] = (0.0, -0.5, 0.0)   # base centre
    positions[2:, 0] = 0.5 * np.cos(angles)
    positions[2:, 1] = -0.5
    positions[2:, 2] = 0.5 * np.sin(angles)

    ring = np.arange(sides) + 2
    ring_next = np.roll(ring, -1)
    apex = np.zeros(sides, dtype=np.int64)
    centre = np.ones(sides, dtype=np.int64)
    side_fan = np.column_stack([apex, ring_next, ring])
    base_fan = np.column_stack([centre, ring, ring_next])
    return Mesh.build(positions, np.vstack([side_fan, base_fan]))


def cone(sides: int = 24) -> Mesh:
    """Cone with one apex, one base centre and *sides* ring vertices.

    Normals are recomputed from the face geometry.
    """
    return _cone(_clamp(sides, CONE_SIDES_RANGE)).copy()


@lru_cache(maxsize=32)
def _torus(major_radius: float, minor_radius: float,
           major_segments: int, minor_segments: int) -> Mesh:
    u = np.arange(major_segments + 1) * (2 * math.pi / major_segments)
    v = np.arange(minor_segments + 1) * (2 * math.pi / minor_segments)
    uu, vv = np.meshgrid(u, v, indexing="ij")

    # Per major segment: radial axis, tangent along the ring, and the
    # bitangent (tangent x radial) spanning the tube cross-section.
    radial = np.stack([np.cos(uu), np.zeros_like(uu), np.sin(uu)], axis=-1)
    tangent = np.stack([-np.sin(uu), np.zeros_like(uu), np.cos(uu)], axis=-1)
    bitangent = np.cross(tangent, radial)

    centre = radial * major_radius
    normal = np.cos(vv)[..., None] * radial + np.sin(vv)[..., None] * bitangent
    positions = centre + normal * minor_radius

    ii, jj = np.meshgrid(np.arange(major_segments + 1),
                         np.arange(minor_segments + 1), indexing="ij")
    uvs = np.stack([ii / major_segments, jj / minor_segments], axis=-1)

    stride = minor_segments + 1
    ci, cj = np.meshgrid(np.arange(major_segments),
                         np.arange(minor_segments), indexing="ij")
    a = (ci * stride + cj).ravel()
    b = ((ci + 1) * stride + cj).ravel()
    c = ((ci + 1) * stride + cj + 1).ravel()
    d = (ci * stride + cj + 1).ravel()
    triangles = np.vstack([np.column_stack([a, d, b]),
                           np.column_stack([b, d, c])])

    return Mesh.build(positions.reshape(-1, 3), triangles,
                      normals=normal.reshape(-1, 3), uvs=uvs.reshape(-1, 2))


def torus(major_radius: float = 0.5, minor_radius: float = 0.1,
          major_segments: int = 48, minor_segments: int = 16) -> Mesh:
    """Torus lying in the XZ plane with UVs ``(i/major, j/minor)``."""
    return _torus(float(major_radius), float(minor_radius),
                  _clamp(major_segments, TORUS_MAJOR_RANGE),
                  _clamp(minor_segments, TORUS_MINOR_RANGE)).copy()


def quad() -> Mesh:
    """Unit quad in the XZ plane facing +Y."""
    positions = [(-0.5, 0.0, -0.5), (0.5, 0.0, -0.5),
                 (0.5, 0.0, 0.5), (-0.5, 0.0, 0.5)]
    normals = [(0.0, 1.0, 0.0)] * 4
    uvs = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]
    return Mesh.build(positions, [(0, 2, 1), (0, 3, 2)], normals=normals, uvs=uvs)


# ── Builder helpers (trimesh.creation) ────────────────────────────

@lru_cache(maxsize=8)
def _box() -> Mesh:
    return Mesh.from_trimesh(trimesh.creation.box(extents=(1.0, 1.0, 1.0)))


@lru_cache(maxsize=8)
def _sphere(subdivisions: int) -> Mesh:
    return Mesh.from_trimesh(trimesh.creation.icosphere(subdivisions=subdivisions, radius=0.5))


@lru_cache(maxsize=8)
def _cylinder(sections: int) -> Mesh:
    tm = trimesh.creation.cylinder(radius=0.5, height=2.0, sections=sections)
    tm.apply_transform(_Z_TO_Y)
    return Mesh.from_trimesh(tm)


@lru_cache(maxsize=8)
def _capsule(count: int) -> Mesh:
    tm = trimesh.creation.capsule(height=1.0, radius=0.5, count=[count, count])
    tm.apply_transform(_Z_TO_Y)
    return Mesh.from_trimesh(tm)


def box() -> Mesh:
    return _box().copy()


def sphere(subdivisions: int = 2) -> Mesh:
    return _sphere(max(0, min(int(subdivisions), 4))).copy()


def cylinder(sections: int = 24) -> Mesh:
    return _cylinder(_clamp(sections, CONE_SIDES_RANGE)).copy()


def capsule(count: int = 16) -> Mesh:
    return _capsule(_clamp(count, CONE_SIDES_RANGE)).copy()


PRIMITIVE_BUILDERS = {
    "cube": box,
    "box": box,
    "sphere": sphere,
    "cylinder": cylinder,
    "capsule": capsule,
    "cone": cone,
    "torus": torus,
    "quad": quad,
    "plane": quad,
}


def build_primitive(kind: str):
    """Return a fresh mesh for a named primitive kind, or None."""
    builder = PRIMITIVE_BUILDERS.get((kind or "").strip().lower())
    return builder() if builder else None
