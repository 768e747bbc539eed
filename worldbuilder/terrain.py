"""Seeded procedural terrain: gradient noise heights and a ground grid mesh.

Provides functions for:
1. Sampling 2-D gradient (Perlin) noise from a fixed permutation table
2. Querying terrain height at arbitrary world X/Z for object placement
3. Building a regular (grid+1) x (grid+1) ground lattice mesh

``build_ground`` evaluates exactly the same vectorised height function as
``height_at``, so an object placed by sampling ``height_at`` at a lattice
point sits on the rendered surface bit-for-bit.
"""

import logging

import numpy as np

from .constants import NOISE_PERMUTATION_SEED, SEED_OFFSET_X, SEED_OFFSET_Z
from .mesh import Mesh, compute_vertex_normals

logger = logging.getLogger(__name__)


# ── Gradient noise ────────────────────────────────────────────────

def _build_permutation() -> np.ndarray:
    perm = np.random.RandomState(NOISE_PERMUTATION_SEED).permutation(256)
    return np.concatenate([perm, perm]).astype(np.int64)


_PERM = _build_permutation()
_GRADIENTS = np.array([
    (1.0, 1.0), (-1.0, 1.0), (1.0, -1.0), (-1.0, -1.0),
    (1.0, 0.0), (-1.0, 0.0), (0.0, 1.0), (0.0, -1.0),
])


def _fade(t):
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def _grad(h, x, y):
    g = _GRADIENTS[h & 7]
    return g[..., 0] * x + g[..., 1] * y


def perlin(x, y):
    """2-D Perlin noise remapped to [0, 1]; accepts scalars or arrays."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)

    x0 = np.floor(x)
    y0 = np.floor(y)
    xf = x - x0
    yf = y - y0
    xi = x0.astype(np.int64) & 255
    yi = y0.astype(np.int64) & 255

    u = _fade(xf)
    v = _fade(yf)

    aa = _PERM[_PERM[xi] + yi]
    ab = _PERM[_PERM[xi] + yi + 1]
    ba = _PERM[_PERM[xi + 1] + yi]
    bb = _PERM[_PERM[xi + 1] + yi + 1]

    x1 = _grad(aa, xf, yf) + u * (_grad(ba, xf - 1.0, yf) - _grad(aa, xf, yf))
    x2 = _grad(ab, xf, yf - 1.0) + u * (_grad(bb, xf - 1.0, yf - 1.0) - _grad(ab, xf, yf - 1.0))
    n = x1 + v * (x2 - x1)
    return np.clip((n + 1.0) * 0.5, 0.0, 1.0)


# ── Height queries ────────────────────────────────────────────────

def seed_offsets(seed: int) -> tuple[float, float]:
    """Noise-space offsets that decorrelate terrains of different seeds."""
    return seed * SEED_OFFSET_X, seed * SEED_OFFSET_Z


def _height_field(ground, seed, xs, zs):
    ox, oz = seed_offsets(int(seed))
    xs = np.asarray(xs, dtype=np.float64)
    zs = np.asarray(zs, dtype=np.float64)
    n = perlin(xs / ground.noise_scale + ox, zs / ground.noise_scale + oz)
    return (n * 2.0 - 1.0) * ground.height_scale


def height_at(ground, seed: int, x, z):
    """Terrain elevation at world (x, z).

    Returns a float for scalar inputs and an array for array inputs; both
    go through the same arithmetic, so results match ``build_ground``.
    """
    h = _height_field(ground, seed, x, z)
    if np.ndim(h) == 0:
        return float(h)
    return h


def ground_lattice(ground) -> np.ndarray:
    """1-D world coordinates of the lattice lines along either axis."""
    half = ground.size / 2.0
    step = ground.size / ground.grid
    return -half + np.arange(ground.grid + 1, dtype=np.float64) * step


def build_ground(ground, seed: int, wide: bool = False) -> Mesh:
    """Build the ground grid mesh for *ground* and *seed*.

    Vertex (ix, iz) lives at index ``iz * (grid + 1) + ix``; every cell is
    split into two triangles wound for +Y facing normals.
    """
    coords = ground_lattice(ground)
    n = len(coords)
    xx, zz = np.meshgrid(coords, coords)          # both (n, n), row = z

    heights = _height_field(ground, seed, xx, zz)

    verts = np.empty((n * n, 3), dtype=np.float64)
    verts[:, 0] = xx.ravel()
    verts[:, 1] = heights.ravel()
    verts[:, 2] = zz.ravel()

    # ── Face indices: 2 triangles per grid cell ─────────────────
    iz_g, ix_g = np.meshgrid(np.arange(n - 1), np.arange(n - 1), indexing='ij')
    iz_f = iz_g.ravel()
    ix_f = ix_g.ravel()

    v00 = iz_f * n + ix_f                  # (iz,   ix)
    v10 = iz_f * n + (ix_f + 1)            # (iz,   ix+1)
    v01 = (iz_f + 1) * n + ix_f            # (iz+1, ix)
    v11 = (iz_f + 1) * n + (ix_f + 1)      # (iz+1, ix+1)

    # Wound for +Y normals: v00->v01->v10  and  v10->v01->v11
    tri1 = np.column_stack([v00, v01, v10])
    tri2 = np.column_stack([v10, v01, v11])
    faces = np.vstack([tri1, tri2])

    uvs = np.column_stack([(xx.ravel() - coords[0]) / ground.size,
                           (zz.ravel() - coords[0]) / ground.size])

    normals = compute_vertex_normals(verts, faces)
    logger.info(f"Ground mesh: {n}x{n} verts, {len(faces)} faces, "
                f"height range {heights.min():.2f}..{heights.max():.2f}")

    return Mesh.build(verts, faces, normals=normals, uvs=uvs, wide=wide)
