"""World plan assembly: ground, render settings, and placed catalog objects."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

from . import constants as C
from .catalog import CatalogResolver
from .models import WorldObjectSpec, WorldPlan, parse_hex_color
from .props import PropPart
from .scene import CameraFraming, Material, RenderSettings, SceneNode
from .state import AssemblyRequest, AssemblyState
from .terrain import build_ground, height_at

logger = logging.getLogger(__name__)

DEFAULT_GLOW_STRENGTH = 1.5


@dataclass
class AssembledWorld:
    name: str
    seed: int
    root: SceneNode
    ground: SceneNode
    objects: SceneNode
    render: RenderSettings
    camera: Optional[CameraFraming] = None


# ── Render state & framing ────────────────────────────────────────

def _mix(a, b, t=0.5):
    return tuple(x + (y - x) * t for x, y in zip(a, b))


def render_settings(plan: WorldPlan) -> RenderSettings:
    sky = parse_hex_color(plan.sky.sky_tint, RenderSettings.sky_tint)
    ground = parse_hex_color(plan.sky.ground_color, RenderSettings.sky_ground_color)
    return RenderSettings(
        sky_tint=sky,
        sky_ground_color=ground,
        atmosphere_thickness=plan.sky.atmosphere_thickness,
        sun_size=plan.sky.sun_size,
        fog_enabled=plan.fog.enabled,
        fog_color=parse_hex_color(plan.fog.color, RenderSettings.fog_color),
        fog_density=plan.fog.density if plan.fog.enabled else 0.0,
        ambient_sky=sky,
        ambient_equator=_mix(sky, ground),
        ambient_ground=ground,
    )


def frame_camera(ground_size: float) -> CameraFraming:
    """Pull the view back in proportion to the ground size, within limits."""
    lo, hi = C.CAMERA_DISTANCE_RANGE
    distance = max(lo, min(ground_size * C.CAMERA_DISTANCE_FACTOR, hi))
    return CameraFraming(distance=distance,
                         position=(0.0, distance * C.CAMERA_ELEVATION_RATIO, -distance))


# ── Materials ─────────────────────────────────────────────────────

def part_material(part: PropPart, spec: WorldObjectSpec) -> Material:
    """Material for one prop part placed as *spec*."""
    tint = parse_hex_color(spec.color, C.WHITE)
    emission = parse_hex_color(spec.emission_color, C.BLACK)
    name = f"{spec.id}_{part.name}"

    if part.role == "glow":
        if spec.emission_strength > 0:
            return Material(name, base_color=emission, emission_color=emission,
                            emission_strength=spec.emission_strength)
        return Material(name, base_color=part.color, emission_color=part.color,
                        emission_strength=DEFAULT_GLOW_STRENGTH)

    if part.role == "accent":
        base = part.color
    else:
        base = tuple(p * t for p, t in zip(part.color[:3], tint[:3])) + (tint[3],)
    return Material(name, base_color=base, smoothness=0.2,
                    emission_color=emission, emission_strength=spec.emission_strength)


def attach_parts(node: SceneNode, parts: list[PropPart], spec: WorldObjectSpec):
    for part in parts:
        node.add(SceneNode(part.name, mesh=part.mesh, material=part_material(part, spec)))


# ── Assembler ─────────────────────────────────────────────────────

class WorldAssembler:
    """Builds scene trees for world plans.

    Each call builds into fresh nodes; ``current`` is swapped only when
    the call is still the newest one once its pending loads settle.
    """

    def __init__(self, resolver: Optional[CatalogResolver] = None,
                 wide_indices: bool = False):
        self.resolver = resolver or CatalogResolver("world")
        self.wide_indices = wide_indices
        self.current: Optional[AssembledWorld] = None
        self._version = 0

    async def assemble(self, plan: WorldPlan,
                       request: Optional[AssemblyRequest] = None) -> AssembledWorld:
        self._version += 1
        version = self._version
        request = request or AssemblyRequest("world")
        request.version = version
        request.advance(AssemblyState.resolving)

        self.current = None
        root = SceneNode(plan.name)
        world = AssembledWorld(plan.name, plan.seed, root, SceneNode("ground"),
                               SceneNode("objects"), render_settings(plan))
        request.partial = world

        ground_mesh = build_ground(plan.ground, plan.seed, wide=self.wide_indices)
        ground_color = parse_hex_color(plan.ground.color, C.CANOPY)
        world.ground.mesh = ground_mesh
        world.ground.material = Material("ground", base_color=ground_color, smoothness=0.1)
        root.add(world.ground)
        root.add(world.objects)

        rng = random.Random(plan.seed)
        placed = []
        for spec in plan.objects:
            try:
                handle = self.resolver.resolve(spec.catalog_id, rng)
                placed.append((self._place(world, plan, spec), spec, handle))
            except MemoryError:
                raise
            except Exception as e:
                request.error(f"Failed to place object '{spec.id}' ({spec.prefab}): {e}")
                continue

        request.advance(AssemblyState.placing)
        pending = [(node, spec, handle) for node, spec, handle in placed if handle.pending]
        for node, spec, handle in placed:
            if not handle.pending:
                self._fill(node, spec, handle.instantiate(), request)

        if pending:
            logger.info(f"Waiting on {len(pending)} external asset placements")
            results = await asyncio.gather(*(h.wait() for _, _, h in pending),
                                           return_exceptions=True)
            for (node, spec, _), parts in zip(pending, results):
                if isinstance(parts, MemoryError):
                    raise parts
                if isinstance(parts, BaseException):
                    request.warn(f"Asset for '{spec.id}' failed to load: {parts!r}")
                    continue
                self._fill(node, spec, parts, request)

        world.camera = frame_camera(plan.ground.size)
        if version != self._version:
            request.stale = True
            request.warn(f"Discarding stale world '{plan.name}' (request #{version})")
        else:
            self.current = world
            logger.info(f"World '{plan.name}' assembled: {len(world.objects.children)} "
                        f"objects on {plan.ground.size:.0f} m ground")
        return world

    def _place(self, world: AssembledWorld, plan: WorldPlan,
               spec: WorldObjectSpec) -> SceneNode:
        x, local_y, z = spec.position
        y = height_at(plan.ground, plan.seed, x, z) + local_y
        node = SceneNode(spec.id, translation=(x, y, z), rotation=spec.rotation,
                         scale=spec.scale)
        world.objects.add(node)
        return node

    def _fill(self, node: SceneNode, spec: WorldObjectSpec, parts, request: AssemblyRequest):
        if parts is None:
            request.warn(f"Object '{spec.id}' left empty: asset '{spec.prefab}' unavailable")
            return
        attach_parts(node, parts, spec)
