"""Procedural prop builders used by the catalog.

Each builder returns a list of ``PropPart`` pieces in prop-local space
(Y-up, base at y=0, roughly metre-sized). Parts carry a material role:

    primary  palette color tinted by the placed object's color
    accent   fixed palette color
    glow     emissive
"""

import math
from dataclasses import dataclass

import numpy as np

from . import constants as C
from .mesh import Mesh
from .primitives import box, cone, cylinder, sphere, torus
from .scene import compose_matrix

ROLES = ("primary", "accent", "glow")


@dataclass
class PropPart:
    name: str
    mesh: Mesh
    role: str = "primary"
    color: tuple = C.WHITE

    def copy(self) -> "PropPart":
        return PropPart(self.name, self.mesh.copy(), self.role, self.color)


def placed(mesh: Mesh, translation=(0.0, 0.0, 0.0), rotation=(0.0, 0.0, 0.0),
           scale=(1.0, 1.0, 1.0)) -> Mesh:
    return mesh.transformed(compose_matrix(translation, rotation, scale))


def tapered_prism(y_bot, y_top, r_bot, r_top, nsides=8, rotation=0.0) -> Mesh:
    """Capped frustum with *nsides* sides, outward facing.

    *rotation* offsets the starting angle in radians (pi/4 aligns a
    square prism's flat faces with the axes).
    """
    verts = []
    faces = []

    # Bottom ring then top ring: 2*nsides vertices
    for r, y in ((r_bot, y_bot), (r_top, y_top)):
        for i in range(nsides):
            angle = 2.0 * math.pi * i / nsides + rotation
            verts.append([r * math.cos(angle), y, r * math.sin(angle)])

    for i in range(nsides):
        j = (i + 1) % nsides
        b0, b1 = i, j
        t0, t1 = nsides + i, nsides + j
        faces.append([b0, t1, b1])
        faces.append([b0, t0, t1])

    cbot = len(verts)
    verts.append([0.0, y_bot, 0.0])
    for i in range(nsides):
        faces.append([cbot, i, (i + 1) % nsides])

    ctop = len(verts)
    verts.append([0.0, y_top, 0.0])
    for i in range(nsides):
        faces.append([ctop, nsides + (i + 1) % nsides, nsides + i])

    return Mesh.build(verts, faces)


def _dome(radius_xz, radius_y, base_y, n_lon=8, n_lat=3) -> Mesh:
    """Oblate hemisphere with a flat bottom disc."""
    verts = []
    faces = []

    # Equator ring, then latitude rings toward the pole
    for i in range(n_lat + 1):
        phi = (math.pi / 2) * i / (n_lat + 1)
        for j in range(n_lon):
            theta = 2 * math.pi * j / n_lon
            verts.append([radius_xz * math.cos(phi) * math.cos(theta),
                          base_y + radius_y * math.sin(phi),
                          radius_xz * math.cos(phi) * math.sin(theta)])
    pole = len(verts)
    verts.append([0.0, base_y + radius_y, 0.0])

    for i in range(n_lat):
        for j in range(n_lon):
            j_next = (j + 1) % n_lon
            r0 = n_lon * i + j
            r1 = n_lon * i + j_next
            r2 = n_lon * (i + 1) + j
            r3 = n_lon * (i + 1) + j_next
            faces.append([r0, r3, r1])
            faces.append([r0, r2, r3])

    last = n_lon * n_lat
    for j in range(n_lon):
        faces.append([last + j, pole, last + (j + 1) % n_lon])

    for i in range(1, n_lon - 1):
        faces.append([0, i, i + 1])

    return Mesh.build(verts, faces)


def _gable_roof(width, depth, eave_y, ridge_h, overhang=0.3) -> Mesh:
    """Triangular prism roof with its ridge along Z."""
    hw = width / 2.0 + overhang
    hd = depth / 2.0 + overhang
    top = eave_y + ridge_h
    verts = [
        [-hw, eave_y, -hd], [hw, eave_y, -hd], [0.0, top, -hd],
        [-hw, eave_y, hd], [hw, eave_y, hd], [0.0, top, hd],
    ]
    faces = [
        [0, 2, 1], [3, 4, 5],            # gable ends
        [0, 3, 5], [0, 5, 2],            # -X slope
        [1, 2, 5], [1, 5, 4],            # +X slope
        [0, 1, 4], [0, 4, 3],            # underside
    ]
    return Mesh.build(verts, faces)


# ── Buildings ─────────────────────────────────────────────────────

def build_tower() -> list[PropPart]:
    shaft = placed(cylinder(16), (0.0, 4.0, 0.0), scale=(3.2, 4.0, 3.2))
    merlons = [
        placed(box(), (1.55 * math.cos(a), 8.3, 1.55 * math.sin(a)),
               (0.0, -math.degrees(a), 0.0), (0.5, 0.6, 0.5))
        for a in np.arange(8) * (2 * math.pi / 8)
    ]
    roof = placed(cone(16), (0.0, 9.85, 0.0), scale=(4.0, 2.5, 4.0))
    window = placed(box(), (0.0, 6.0, -1.6), scale=(0.5, 0.9, 0.12))
    return [
        PropPart("shaft", Mesh.merge([shaft] + merlons), "primary", C.STONE),
        PropPart("roof", roof, "accent", C.ROOF_SLATE),
        PropPart("window", window, "glow", C.WINDOW_GLOW),
    ]


def build_house() -> list[PropPart]:
    walls = placed(box(), (0.0, 1.5, 0.0), scale=(4.0, 3.0, 5.0))
    door = placed(box(), (0.0, 0.9, -2.52), scale=(0.9, 1.8, 0.08))
    windows = [placed(box(), (x, 1.9, -2.52), scale=(0.7, 0.7, 0.06))
               for x in (-1.3, 1.3)]
    return [
        PropPart("walls", walls, "primary", C.STONE),
        PropPart("roof", _gable_roof(4.0, 5.0, 3.0, 1.8), "accent", C.ROOF_RED),
        PropPart("door", door, "accent", C.WOOD),
        PropPart("windows", Mesh.merge(windows), "glow", C.WINDOW_GLOW),
    ]


def build_ruins() -> list[PropPart]:
    base = placed(box(), (0.0, 0.15, 0.0), scale=(7.0, 0.3, 5.0))
    columns = []
    # Broken colonnade: fixed heights so every instance reads the same
    for i, height in enumerate((3.2, 1.4, 2.5, 0.8, 2.9, 1.9)):
        x = -2.6 + (i % 3) * 2.6
        z = -1.6 if i < 3 else 1.6
        columns.append(placed(cylinder(10), (x, 0.3 + height / 2, z),
                              scale=(0.7, height / 2, 0.7)))
    fallen = placed(cylinder(10), (0.8, 0.65, 0.2), (0.0, 25.0, 90.0), (0.7, 1.2, 0.7))
    lintel = placed(box(), (-1.3, 3.65, -1.6), (0.0, 0.0, -6.0), (3.4, 0.5, 0.9))
    return [
        PropPart("base", base, "primary", C.STONE_DARK),
        PropPart("columns", Mesh.merge(columns + [fallen, lintel]), "primary", C.STONE),
    ]


def build_camp() -> list[PropPart]:
    tent = placed(tapered_prism(0.0, 2.2, 1.8, 0.05, nsides=4, rotation=math.pi / 4),
                  (-2.0, 0.0, 0.5))
    logs = [placed(cylinder(8), (1.2, 0.12, 0.0), (0.0, yaw, 90.0), (0.18, 0.45, 0.18))
            for yaw in (30.0, 150.0, 270.0)]
    stones = [placed(sphere(1), (1.2 + 0.75 * math.cos(a), 0.08, 0.75 * math.sin(a)),
                     scale=(0.3, 0.22, 0.3))
              for a in np.arange(7) * (2 * math.pi / 7)]
    flame = placed(cone(10), (1.2, 0.55, 0.0), scale=(0.5, 0.8, 0.5))
    return [
        PropPart("tent", tent, "primary", C.CANVAS),
        PropPart("logs", Mesh.merge(logs), "accent", C.WOOD),
        PropPart("stones", Mesh.merge(stones), "accent", C.STONE_DARK),
        PropPart("fire", flame, "glow", C.FIRE),
    ]


def build_portal() -> list[PropPart]:
    # Torus lies in XZ; stand it up as a vertical ring
    ring = placed(torus(2.0, 0.25, 48, 12), (0.0, 2.55, 0.0), (90.0, 0.0, 0.0))
    plinth = placed(box(), (0.0, 0.15, 0.0), scale=(5.0, 0.3, 1.6))
    return [
        PropPart("plinth", plinth, "accent", C.STONE_DARK),
        PropPart("ring", ring, "glow", C.WHITE),
    ]


# ── Vegetation ────────────────────────────────────────────────────

def build_deciduous_tree() -> list[PropPart]:
    """Hexagonal trunk with an oblate dome canopy, about 5.5 m tall."""
    trunk = tapered_prism(-0.5, 2.2, 0.35, 0.28, nsides=6)
    canopy = _dome(2.8, 3.2, 2.0, n_lon=10, n_lat=3)
    return [
        PropPart("trunk", trunk, "accent", C.BARK),
        PropPart("canopy", canopy, "primary", C.CANOPY),
    ]


def build_conifer_tree() -> list[PropPart]:
    """Thin trunk with stacked cones, about 7 m tall."""
    trunk = tapered_prism(-0.5, 1.4, 0.25, 0.2, nsides=6)
    tiers = [tapered_prism(1.0 + i * 1.6, 3.6 + i * 1.6, 2.0 - i * 0.5, 0.05, nsides=8)
             for i in range(3)]
    return [
        PropPart("trunk", trunk, "accent", C.BARK),
        PropPart("canopy", Mesh.merge(tiers), "primary", C.CONIFER),
    ]


# ── Rocks & minerals ──────────────────────────────────────────────

def build_boulder() -> list[PropPart]:
    base = sphere(2)
    rng = np.random.RandomState(7)
    # Radial jitter per vertex; coincident seam vertices stay coincident
    directions = base.positions.astype(np.float64)
    keys = np.round(directions, 4)
    _, inverse = np.unique(keys, axis=0, return_inverse=True)
    factors = rng.uniform(0.82, 1.15, size=inverse.max() + 1)[inverse.ravel()]
    jittered = directions * factors[:, None]
    mesh = Mesh.build(jittered, base.triangles)
    return [PropPart("rock", placed(mesh, (0.0, 0.45, 0.0), scale=(1.8, 1.2, 1.5)),
                     "primary", C.STONE)]


def build_slab() -> list[PropPart]:
    slab = placed(box(), (0.0, 0.25, 0.0), (4.0, 20.0, -3.0), (2.4, 0.6, 1.6))
    chip = placed(box(), (1.3, 0.15, 0.6), (0.0, 40.0, 8.0), (0.6, 0.3, 0.5))
    return [PropPart("rock", Mesh.merge([slab, chip]), "primary", C.STONE_DARK)]


def build_spire() -> list[PropPart]:
    spire = tapered_prism(-0.3, 3.0, 0.8, 0.15, nsides=5)
    return [PropPart("rock", placed(spire, rotation=(4.0, 0.0, -6.0)), "primary", C.STONE)]


def build_crystal() -> list[PropPart]:
    shards = []
    for i, (height, tilt, yaw) in enumerate(((2.4, 0.0, 0.0), (1.6, 22.0, 40.0),
                                             (1.3, 28.0, 160.0), (1.1, 25.0, 260.0),
                                             (0.8, 35.0, 320.0))):
        width = 0.28 if i == 0 else 0.2
        shard = Mesh.merge([
            tapered_prism(0.0, height * 0.75, width, width, nsides=6),
            tapered_prism(height * 0.75, height, width, 0.01, nsides=6),
        ])
        shards.append(placed(shard, rotation=(tilt, yaw, 0.0)))
    return [PropPart("crystal", Mesh.merge(shards), "glow", (0.55, 0.85, 1.0, 1.0))]


# ── Lamps ─────────────────────────────────────────────────────────

def build_lamp_post() -> list[PropPart]:
    post = placed(cylinder(8), (0.0, 1.6, 0.0), scale=(0.12, 1.6, 0.12))
    arm = placed(box(), (0.3, 3.1, 0.0), scale=(0.6, 0.06, 0.06))
    bulb = placed(sphere(1), (0.55, 2.95, 0.0), scale=(0.3, 0.3, 0.3))
    return [
        PropPart("post", Mesh.merge([post, arm]), "accent", C.METAL),
        PropPart("bulb", bulb, "glow", C.WINDOW_GLOW),
    ]


def build_lantern() -> list[PropPart]:
    post = placed(cylinder(8), (0.0, 0.5, 0.0), scale=(0.08, 0.5, 0.08))
    cage = placed(box(), (0.0, 1.2, 0.0), scale=(0.4, 0.02, 0.4))
    cap = placed(cone(8), (0.0, 1.55, 0.0), scale=(0.5, 0.25, 0.5))
    flame = placed(sphere(1), (0.0, 1.28, 0.0), scale=(0.22, 0.3, 0.22))
    return [
        PropPart("frame", Mesh.merge([post, cage, cap]), "accent", C.METAL),
        PropPart("flame", flame, "glow", C.FIRE),
    ]


# ── Fallback ──────────────────────────────────────────────────────

def build_fallback() -> list[PropPart]:
    """Marker shape for unknown catalog ids: a cube topped by a cone."""
    block = placed(box(), (0.0, 0.5, 0.0))
    tip = placed(cone(12), (0.0, 1.35, 0.0), scale=(0.8, 0.7, 0.8))
    return [PropPart("fallback", Mesh.merge([block, tip]), "primary", C.FALLBACK_MAGENTA)]


PROP_BUILDERS = {
    "tower": build_tower,
    "house": build_house,
    "ruins": build_ruins,
    "camp": build_camp,
    "portal": build_portal,
    "tree_deciduous": build_deciduous_tree,
    "tree_conifer": build_conifer_tree,
    "rock_boulder": build_boulder,
    "rock_slab": build_slab,
    "rock_spire": build_spire,
    "crystal": build_crystal,
    "lamp_post": build_lamp_post,
    "lamp_lantern": build_lantern,
    "fallback": build_fallback,
}
