"""Avatar assembly: archetype base, look, attached parts, and mesh override.

The avatar tree the host draws::

    Avatar_<name>            uniform scale = spec height
      procedural             placeholder, hidden once a mesh override lands
        body  (anchor)       base meshes + body parts
        head  (anchor)       base meshes + head parts
      mesh                   decoded STL parts, hidden until applied

Archetypes come from a fixed, ordered rule table. Base primitives are
only rebuilt when the archetype changes; parts are rebuilt every call.
"""

import asyncio
import logging
import math
import random
from dataclasses import dataclass
from typing import Optional

from . import config
from . import constants as C
from .catalog import CatalogResolver
from .fetch import FetchError, MeshFetcher
from .mesh import Mesh
from .models import AvatarMesh, AvatarPart, AvatarSpec, parse_hex_color
from .primitives import box, build_primitive, cylinder, sphere, torus
from .props import PropPart, placed
from .scene import Material, SceneNode
from .state import AssemblyRequest, AssemblyState
from .stl import DecodeError, DecodeErrorKind, decode_stl

logger = logging.getLogger(__name__)

BODY_ANCHOR = (0.0, 1.0, 0.0)
HEAD_ANCHOR = (0.0, 2.05, 0.0)
# Height of the procedural body in root space; mesh overrides are fitted to it
AVATAR_BASE_HEIGHT = 2.0
DEFAULT_GLOW_STRENGTH = 1.5
GLOW_WORDS = ("glow", "biolum", "neon")


# ── Archetypes ────────────────────────────────────────────────────

ARCHETYPE_RULES = (
    (("robot", "android", "cyborg"), "robot"),
    (("dragon",), "dragon"),
    (("angel",), "angel"),
    (("wizard", "mage"), "wizard"),
    (("navi", "na'vi"), "navi"),
)
DEFAULT_ARCHETYPE = "humanoid"


def _match_rules(words) -> Optional[str]:
    for keywords, archetype in ARCHETYPE_RULES:
        if any(k in w for w in words for k in keywords):
            return archetype
    return None


def infer_archetype(spec: AvatarSpec) -> str:
    """Archetype from tags when there are any, else from part-id substrings."""
    tags = [t.lower() for t in spec.tags]
    if tags:
        found = _match_rules(tags)
    else:
        found = _match_rules([p.id.lower() for p in spec.parts])
    return found or DEFAULT_ARCHETYPE


# (anchor, name, primitive, translation, rotation, scale, color role)
BASE_SHAPES = {
    "humanoid": (
        ("body", "torso", "capsule", (0, 0, 0), (0, 0, 0), (0.9, 1.0, 0.9), "primary"),
        ("head", "skull", "sphere", (0, 0, 0), (0, 0, 0), (0.55, 0.55, 0.55), "secondary"),
    ),
    "robot": (
        ("body", "chassis", "cube", (0, 0, 0), (0, 0, 0), (0.9, 1.9, 0.7), "primary"),
        ("head", "skull", "cube", (0, 0, 0), (0, 0, 0), (0.5, 0.45, 0.5), "secondary"),
    ),
    "dragon": (
        ("body", "torso", "capsule", (0, 0, 0), (0, 0, 0), (1.1, 0.95, 1.2), "primary"),
        ("head", "skull", "sphere", (0, 0, 0), (0, 0, 0), (0.55, 0.5, 0.7), "primary"),
        ("head", "snout", "cone", (0, -0.05, -0.38), (-90, 0, 0), (0.25, 0.3, 0.25), "secondary"),
    ),
    "angel": (
        ("body", "torso", "capsule", (0, 0, 0), (0, 0, 0), (0.8, 1.0, 0.8), "primary"),
        ("head", "skull", "sphere", (0, 0, 0), (0, 0, 0), (0.5, 0.5, 0.5), "secondary"),
    ),
    "wizard": (
        ("body", "robe", "cone", (0, -0.35, 0), (0, 0, 0), (1.2, 1.3, 1.2), "primary"),
        ("body", "torso", "capsule", (0, 0.25, 0), (0, 0, 0), (0.7, 0.7, 0.7), "primary"),
        ("head", "skull", "sphere", (0, 0, 0), (0, 0, 0), (0.52, 0.52, 0.52), "secondary"),
    ),
    "navi": (
        ("body", "torso", "capsule", (0, 0, 0), (0, 0, 0), (0.7, 1.05, 0.7), "primary"),
        ("head", "skull", "sphere", (0, 0, 0), (0, 0, 0), (0.48, 0.58, 0.48), "primary"),
    ),
}


@dataclass(frozen=True)
class Look:
    metallic: float = 0.0
    smoothness: float = 0.35
    texture: Optional[str] = None
    tiling: tuple = (1.0, 1.0)
    glow: float = 0.0


LOOKS = {
    "humanoid": Look(),
    "robot": Look(metallic=0.85, smoothness=0.7, texture="textures/panel_lines.png",
                  tiling=(2.0, 2.0), glow=0.6),
    "dragon": Look(metallic=0.1, smoothness=0.55, texture="textures/scales.png",
                   tiling=(4.0, 4.0)),
    "angel": Look(smoothness=0.6, glow=0.4),
    "wizard": Look(smoothness=0.2, texture="textures/cloth.png", tiling=(3.0, 3.0)),
    "navi": Look(smoothness=0.45, texture="textures/stripes.png", tiling=(2.0, 6.0),
                 glow=0.3),
}


def is_glowing(spec: AvatarSpec) -> bool:
    return any(w in t.lower() for t in spec.tags for w in GLOW_WORDS)


def look_material(name: str, look: Look, color, glowing: bool) -> Material:
    strength = max(look.glow, DEFAULT_GLOW_STRENGTH) if glowing else look.glow
    return Material(name, base_color=color, metallic=look.metallic,
                    smoothness=look.smoothness,
                    emission_color=color if strength > 0 else C.BLACK,
                    emission_strength=strength, texture=look.texture,
                    texture_tiling=look.tiling)


# ── Fallback part kit ─────────────────────────────────────────────

def _part(id, attach, primitive, position, rotation, scale, color,
          emission_color=None, emission_strength=None) -> AvatarPart:
    return AvatarPart(id=id, attach=attach, primitive=primitive, position=position,
                      rotation=rotation, scale=scale, color=color,
                      emission_color=emission_color, emission_strength=emission_strength)


def fallback_parts(spec: AvatarSpec) -> list[AvatarPart]:
    """Deterministic part set chosen from tags, for specs with no parts.

    Returns an empty list when no tag selects anything.
    """
    blob = " ".join(t.lower() for t in spec.tags)

    def has(*words):
        return any(w in blob for w in words)

    primary, secondary = spec.primary_color, spec.secondary_color
    navi = has("navi", "na'vi")
    robot = has("robot", "android", "cyborg")
    animal = has("animal")
    dragon = has("dragon")
    angel = has("angel")

    parts = []
    if navi:
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"ear_{side}", "head", "capsule", (0.32 * sx, 0.02, 0.02),
                               (0, 0, -55 * sx), (0.08, 0.25, 0.08), secondary))
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"eye_{side}", "head", "sphere", (0.12 * sx, 0.02, -0.24),
                               (0, 0, 0), (0.06, 0.06, 0.06), "#FFD36A", "#FFD36A", 1.6))
    elif animal:
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"ear_{side}", "head", "capsule", (0.26 * sx, 0.22, 0.02),
                               (0, 0, -35 * sx), (0.09, 0.22, 0.09), secondary))

    if robot:
        parts.append(_part("visor", "head", "cube", (0, 0.02, -0.26), (0, 0, 0),
                           (0.34, 0.1, 0.04), "#0C1B2A", primary, 1.8))
        parts.append(_part("antenna", "head", "cylinder", (0, 0.32, 0), (0, 0, 0),
                           (0.03, 0.22, 0.03), secondary, primary, 1.2))

    if angel:
        parts.append(_part("halo", "head", "cylinder", (0, 0.42, 0), (0, 0, 0),
                           (0.55, 0.04, 0.55), "#FFD36A", "#FFD36A", 2.0))

    if has("wizard", "mage"):
        parts.append(_part("staff", "body", "cylinder", (0.65, 0.55, -0.15), (0, 0, 15),
                           (0.6, 0.9, 0.6), secondary, primary, 0.8))
        parts.append(_part("hat_brim", "head", "cylinder", (0, 0.18, 0), (0, 0, 0),
                           (0.52, 0.05, 0.52), secondary))
        parts.append(_part("hat_top", "head", "cone", (0, 0.5, 0), (0, 0, 0),
                           (0.4, 0.6, 0.4), secondary))

    if has("horn", "antler", "demon") or dragon:
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"horn_{side}", "head", "capsule", (0.25 * sx, 0.24, 0.06),
                               (25, 0, -20 * sx), (0.12, 0.45, 0.12), secondary))

    if navi or has("braid", "dread", "hair"):
        for i in range(4):
            parts.append(_part(f"braid_{i}", "head", "cylinder", (-0.15 + i * 0.1, -0.05, -0.12),
                               (0, 0, 90), (0.04, 0.25, 0.04), secondary))

    if navi or animal or dragon or has("tail"):
        parts.append(_part("tail", "body", "cylinder", (0, 0.2, -0.35), (15, 0, 0),
                           (0.06, 0.6, 0.06), primary))

    if dragon or angel or has("wing"):
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"wing_{side}", "body", "cube", (0.35 * sx, 0.9, -0.1),
                               (0, 0, -20 * sx), (0.9, 0.55, 1.0), secondary))

    if robot or has("armor", "shoulder", "knight"):
        for side, sx in (("left", -1), ("right", 1)):
            parts.append(_part(f"shoulder_{side}", "body", "cube", (0.22 * sx, 1.0, 0),
                               (0, 0, -15 * sx), (0.25, 0.08, 0.18), secondary))

    if navi or robot or has("stripe", "pattern", *GLOW_WORDS):
        for i in range(5):
            parts.append(_part(f"stripe_{i}", "body", "cube", (-0.15 + i * 0.075, 0.85, -0.56),
                               (0, 0, 0), (0.02, 0.4, 0.02), primary, primary, 2.5))

    return parts


# ── Summary ───────────────────────────────────────────────────────

_STYLE_WORDS = (
    (("robot", "cyborg", "android"), "robot"),
    (("navi", "na'vi"), "na'vi"),
    (("dragon",), "dragon"),
    (("angel",), "angel"),
    (("wizard", "mage"), "wizard"),
    (("knight",), "knight"),
    (("animal",), "animal"),
    (GLOW_WORDS, "glow"),
)

_PART_GROUPS = (
    (("horn",), "{n} horns"),
    (("stripe",), "{n} glow stripes"),
    (("wing",), "{n} wings"),
    (("tail",), "tail"),
    (("shoulder", "armor"), "shoulder armor"),
    (("braid",), "{n} braids"),
)


def describe_avatar(spec: AvatarSpec) -> str:
    """Short human-readable summary, e.g. ``"robot, glow; 5 glow stripes"``."""
    blob = " ".join(t.lower() for t in spec.tags)
    style = [label for words, label in _STYLE_WORDS if any(w in blob for w in words)]

    parts = spec.parts or fallback_parts(spec)
    groups = []
    for words, template in _PART_GROUPS:
        n = sum(1 for p in parts if any(w in p.id.lower() for w in words))
        if n:
            groups.append(template.format(n=n))
    if parts and not groups:
        groups.append(f"{len(parts)} parts")

    if style and groups:
        return f"{', '.join(style)}; {', '.join(groups)}"
    if style or groups:
        return ", ".join(style or groups)
    return "base body only"


# ── Part builders ─────────────────────────────────────────────────

def staff_pieces() -> list[PropPart]:
    shaft = placed(cylinder(10), scale=(0.08, 0.8, 0.08))
    orb = placed(sphere(2), (0.0, 0.9, 0.0), scale=(0.22, 0.22, 0.22))
    return [PropPart("shaft", shaft, "primary"), PropPart("orb", orb, "glow")]


def halo_pieces() -> list[PropPart]:
    return [PropPart("ring", torus(0.5, 0.06, 48, 12), "glow")]


def wing_pieces() -> list[PropPart]:
    feathers = [placed(box(), (x, 0.1 - abs(x) * 0.4, 0.0), (0.0, 0.0, -tilt),
                       (0.22, 0.9, 0.05))
                for x, tilt in ((-0.3, -25.0), (0.0, 0.0), (0.3, 25.0))]
    return [PropPart("feathers", Mesh.merge(feathers), "primary")]


COMPOSITE_BUILDERS = (
    ("staff", staff_pieces),
    ("halo", halo_pieces),
    ("wing", wing_pieces),
)


def composite_for(part_id: str):
    name = part_id.lower()
    for word, builder in COMPOSITE_BUILDERS:
        if word in name:
            return builder
    return None


def part_material(piece: PropPart, part: AvatarPart, spec: AvatarSpec) -> Material:
    color = parse_hex_color(part.color, parse_hex_color(spec.primary_color, C.WHITE))
    strength = part.emission_strength or 0.0
    emission = parse_hex_color(part.emission_color, color) if part.emission_color else color
    name = f"{part.id}_{piece.name}"

    if piece.role == "glow":
        return Material(name, base_color=emission, emission_color=emission,
                        emission_strength=strength or DEFAULT_GLOW_STRENGTH)
    if piece.role == "accent":
        base = piece.color
    else:
        base = tuple(p * c for p, c in zip(piece.color[:3], color[:3])) + (color[3],)
    return Material(name, base_color=base, smoothness=0.4,
                    emission_color=emission if strength > 0 else C.BLACK,
                    emission_strength=strength)


@dataclass
class MeshRef:
    id: str
    uri: Optional[str]
    sha256: Optional[str]
    material: Optional[str]


def mesh_cache_key(override: AvatarMesh) -> str:
    """Content hash of the override plus ``id:hash`` of every part."""
    key = override.sha256 or override.uri or ""
    for p in override.parts:
        key += f"|{p.id}:{p.sha256 or p.uri}"
    return key


def split_mesh_parts(override: AvatarMesh):
    """Return ``(body_ref, other_refs)``; body is resolved before the rest.

    Parts whose hash equals the body hash are dropped: some exporters
    ignore the part selector and return the full mesh again.
    """
    refs = [MeshRef(p.id, p.uri, p.sha256, p.material) for p in override.parts]
    body = next((r for r in refs if r.id.lower() == "body"), None)
    if body is None and override.uri:
        body = MeshRef("body", override.uri, override.sha256, "primary")
    if body is None and refs:
        body = refs[0]
    if body is None:
        return None, []

    body_hashes = {h.lower() for h in (body.sha256, override.sha256) if h}
    others = []
    for ref in refs:
        if ref is body:
            continue
        if ref.sha256 and ref.sha256.lower() in body_hashes:
            logger.debug(f"Skipping mesh part '{ref.id}': same content as body")
            continue
        others.append(ref)
    return body, others


@dataclass
class AssembledAvatar:
    name: str
    archetype: str
    root: SceneNode
    part_count: int
    mesh_applied: bool
    summary: str


# ── Assembler ─────────────────────────────────────────────────────

class AvatarAssembler:
    """Owns one avatar tree and updates it from successive specs."""

    def __init__(self, fetcher: Optional[MeshFetcher] = None,
                 resolver: Optional[CatalogResolver] = None,
                 z_up: Optional[bool] = None):
        self.fetcher = fetcher or MeshFetcher()
        self.resolver = resolver or CatalogResolver("avatar")
        self.z_up = config.STL_Z_UP if z_up is None else z_up

        self.root = SceneNode("Avatar")
        self.procedural = self.root.add(SceneNode("procedural"))
        self.anchors = {
            "body": self.procedural.add(SceneNode("body", translation=BODY_ANCHOR)),
            "head": self.procedural.add(SceneNode("head", translation=HEAD_ANCHOR)),
        }
        self.bases = {name: anchor.add(SceneNode("base")) for name, anchor in self.anchors.items()}
        self.part_slots = {name: anchor.add(SceneNode("parts"))
                           for name, anchor in self.anchors.items()}
        self.mesh_node = self.root.add(SceneNode("mesh", visible=False))

        self.archetype: Optional[str] = None
        self.mesh_key: Optional[str] = None
        self.base_builds = 0
        self._base_roles: list[tuple[SceneNode, str]] = []
        self._version = 0

    @property
    def showing_mesh(self) -> bool:
        return self.mesh_node.visible and not self.procedural.visible

    async def assemble(self, spec: AvatarSpec,
                       request: Optional[AssemblyRequest] = None) -> AssembledAvatar:
        self._version += 1
        version = self._version
        request = request or AssemblyRequest("avatar")
        request.version = version
        request.advance(AssemblyState.resolving)

        archetype = infer_archetype(spec)
        if archetype != self.archetype:
            self._build_base(archetype)
        self.root.name = f"Avatar_{spec.name}"
        self.root.scale = (spec.height, spec.height, spec.height)
        self._apply_look(spec)

        parts = spec.parts or fallback_parts(spec)
        built = await self._build_parts(spec, parts, request)

        request.advance(AssemblyState.placing)
        if version != self._version:
            return self._stale(spec, request, version)
        for anchor, nodes in built.items():
            self.part_slots[anchor].children = nodes

        override = spec.mesh_override
        if override is None:
            if spec.mesh is not None:
                skipped = DecodeError(DecodeErrorKind.unsupported_format,
                                      f"Unsupported mesh format '{spec.mesh.format}'.")
                request.warn(f"Ignoring mesh override: {skipped}")
            self._show_placeholder()
        elif mesh_cache_key(override) == self.mesh_key:
            logger.debug(f"Mesh override unchanged for '{spec.name}'; skipping fetch")
        else:
            applied = await self._apply_override(spec, override, version, request)
            if version != self._version:
                return self._stale(spec, request, version)
            if not applied and not self.showing_mesh:
                self._show_placeholder()

        return AssembledAvatar(spec.name, archetype, self.root,
                               sum(len(n) for n in built.values()),
                               self.showing_mesh, describe_avatar(spec))

    def _stale(self, spec, request, version) -> AssembledAvatar:
        request.stale = True
        request.warn(f"Discarding stale avatar result for '{spec.name}' (request #{version})")
        return AssembledAvatar(spec.name, self.archetype, self.root, 0,
                               self.showing_mesh, describe_avatar(spec))

    def _show_placeholder(self):
        self.procedural.visible = True
        self.mesh_node.visible = False
        self.mesh_key = None

    # ── Base & look ──────────────────────────────────────────────

    def _build_base(self, archetype: str):
        self._base_roles = []
        for base in self.bases.values():
            base.clear()
        for anchor, name, kind, translation, rotation, scale, role in BASE_SHAPES[archetype]:
            node = SceneNode(name, mesh=build_primitive(kind), translation=translation,
                             rotation=rotation, scale=scale)
            self.bases[anchor].add(node)
            self._base_roles.append((node, role))
        self.archetype = archetype
        self.base_builds += 1
        logger.info(f"Avatar base rebuilt for archetype '{archetype}'")

    def _apply_look(self, spec: AvatarSpec):
        look = LOOKS[self.archetype]
        glowing = is_glowing(spec)
        primary = parse_hex_color(spec.primary_color, parse_hex_color(C.DEFAULT_PRIMARY))
        secondary = parse_hex_color(spec.secondary_color, C.WHITE)
        for node, role in self._base_roles:
            if role == "primary":
                node.material = look_material(f"{node.name}_{self.archetype}", look,
                                              primary, glowing)
            else:
                node.material = Material(f"{node.name}_secondary", base_color=secondary,
                                         smoothness=look.smoothness)

    # ── Parts ────────────────────────────────────────────────────

    async def _build_parts(self, spec: AvatarSpec, parts, request) -> dict:
        rng = random.Random(spec.name)
        built = {"body": [], "head": []}
        waiting = []
        for part in parts:
            try:
                node = SceneNode(part.id, translation=part.position, rotation=part.rotation,
                                 scale=part.scale)
                pieces, handle = self._part_pieces(part, rng)
            except MemoryError:
                raise
            except Exception as e:
                request.error(f"Failed to build avatar part '{part.id}': {e}")
                continue
            built[part.attach].append(node)
            if handle is not None and handle.pending:
                waiting.append((node, part, handle))
            else:
                if handle is not None:
                    pieces = handle.instantiate()
                self._fill(node, part, pieces, spec, request)

        if waiting:
            results = await asyncio.gather(*(h.wait() for _, _, h in waiting),
                                           return_exceptions=True)
            for (node, part, _), pieces in zip(waiting, results):
                if isinstance(pieces, MemoryError):
                    raise pieces
                if isinstance(pieces, BaseException):
                    request.warn(f"Asset for avatar part '{part.id}' failed to load: "
                                 f"{pieces!r}")
                    pieces = None
                self._fill(node, part, pieces, spec, request)
        return built

    def _part_pieces(self, part: AvatarPart, rng):
        builder = composite_for(part.id)
        if builder is not None:
            return builder(), None
        mesh = build_primitive(part.primitive)
        if mesh is not None:
            return [PropPart("mesh", mesh, "primary")], None
        return None, self.resolver.resolve(part.primitive, rng)

    def _fill(self, node, part, pieces, spec, request):
        if pieces is None:
            request.warn(f"Avatar part '{part.id}' left empty: '{part.primitive}' unavailable")
            return
        for piece in pieces:
            node.add(SceneNode(piece.name, mesh=piece.mesh,
                               material=part_material(piece, part, spec)))

    # ── Mesh override ────────────────────────────────────────────

    async def _fetch_mesh(self, ref: MeshRef, request) -> Optional[Mesh]:
        data = await self.fetcher.fetch(ref.uri, ref.sha256)
        if isinstance(data, FetchError):
            request.warn(f"Mesh part '{ref.id}' fetch failed: {data}")
            request.errors.append(str(data))
            return None
        mesh = decode_stl(data, swap_yz=self.z_up)
        if isinstance(mesh, DecodeError):
            request.warn(f"Mesh part '{ref.id}' decode failed: {mesh}")
            request.errors.append(str(mesh))
            return None
        return mesh

    def _override_material(self, ref: MeshRef, spec: AvatarSpec) -> Material:
        primary = parse_hex_color(spec.primary_color, parse_hex_color(C.DEFAULT_PRIMARY))
        secondary = parse_hex_color(spec.secondary_color, C.WHITE)
        hint = (ref.material or ("primary" if ref.id.lower() == "body" else "secondary")).lower()
        look = LOOKS[self.archetype]
        if hint == "emissive":
            return Material(f"{ref.id}_emissive", base_color=primary, emission_color=primary,
                            emission_strength=max(look.glow, DEFAULT_GLOW_STRENGTH))
        if hint == "secondary":
            return Material(f"{ref.id}_secondary", base_color=secondary,
                            smoothness=look.smoothness)
        return look_material(f"{ref.id}_primary", look, primary, is_glowing(spec))

    async def _apply_override(self, spec: AvatarSpec, override: AvatarMesh,
                              version: int, request) -> bool:
        body_ref, others = split_mesh_parts(override)
        if body_ref is None:
            request.warn("Mesh override has no uri and no parts")
            request.errors.append("mesh override has nothing to fetch")
            return False

        body = await self._fetch_mesh(body_ref, request)
        if body is None:
            return False
        lo, hi = body.bounds()
        extent = float(hi[1] - lo[1])
        if not math.isfinite(extent) or extent <= 1e-6:
            request.warn(f"Mesh override body for '{spec.name}' has no usable height; "
                         f"keeping placeholder")
            request.errors.append("mesh override body has no height")
            return False
        scale = AVATAR_BASE_HEIGHT / extent
        offset = (-(lo[0] + hi[0]) / 2 * scale, -lo[1] * scale, -(lo[2] + hi[2]) / 2 * scale)

        meshes = await asyncio.gather(*(self._fetch_mesh(ref, request) for ref in others))
        if any(m is None for m in meshes):
            return False
        if version != self._version:
            return False

        container = SceneNode("mesh", translation=offset, scale=(scale, scale, scale))
        for ref, mesh in zip([body_ref] + others, [body] + list(meshes)):
            container.add(SceneNode(ref.id, mesh=mesh,
                                    material=self._override_material(ref, spec)))

        self.root.children[self.root.children.index(self.mesh_node)] = container
        self.mesh_node = container
        self.procedural.visible = False
        self.mesh_key = mesh_cache_key(override)
        logger.info(f"Mesh override applied for '{spec.name}': {len(container.children)} "
                    f"parts, scale {scale:.3f}")
        return True
