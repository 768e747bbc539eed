"""Input documents (world plans, avatar specs) and small value helpers.

Documents are validated with pydantic. Out-of-range numbers are clamped
rather than rejected; only structurally wrong documents raise
``pydantic.ValidationError``.
"""

import json
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .constants import (
    ATMOSPHERE_RANGE, AVATAR_HEIGHT_RANGE, DEFAULT_AVATAR_NAME, DEFAULT_PRIMARY,
    DEFAULT_SECONDARY, EMISSION_RANGE, FOG_DENSITY_RANGE, GROUND_GRID_RANGE,
    GROUND_SIZE_RANGE, HEIGHT_SCALE_RANGE, MAX_TAGS, MAX_WORLD_OBJECTS,
    NOISE_SCALE_RANGE, SEED_RANGE, SUN_SIZE_RANGE,
)

logger = logging.getLogger(__name__)

Vec3 = tuple[float, float, float]


def _clamp(value, bounds):
    lo, hi = bounds
    return max(lo, min(value, hi))


def _vec3(value, default: Vec3) -> Vec3:
    """Coerce a list-ish value to three floats, padding from *default*."""
    if value is None:
        return default
    items = list(value)[:3]
    items += list(default[len(items):])
    return tuple(float(v) for v in items)


def parse_hex_color(value: Optional[str], fallback=(1.0, 1.0, 1.0, 1.0)):
    """Parse ``#RGB``, ``#RRGGBB`` or ``#RRGGBBAA`` into an RGBA tuple (0-1)."""
    if not value:
        return tuple(fallback)
    text = value.strip().lstrip("#")
    if len(text) == 3:
        text = "".join(c * 2 for c in text)
    if len(text) == 6:
        text += "ff"
    if len(text) != 8:
        return tuple(fallback)
    try:
        channels = [int(text[i:i + 2], 16) / 255.0 for i in range(0, 8, 2)]
    except ValueError:
        return tuple(fallback)
    return tuple(channels)


def extract_json_object(text: str) -> str:
    """Return the first balanced top-level ``{...}`` object found in *text*.

    String literals and escapes are honoured so braces inside strings do
    not affect nesting. Raises ``ValueError`` when no object is found.
    """
    start = text.find("{")
    if start < 0:
        raise ValueError("no '{' found in text")

    depth = 0
    in_string = False
    escape = False
    for i, ch in enumerate(text[start:]):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:start + i + 1]
    raise ValueError("unterminated json object")


# ── World plan ────────────────────────────────────────────────────

class GroundSpec(BaseModel):
    size: float = 120.0
    grid: int = 64
    height_scale: float = 6.0
    noise_scale: float = 24.0
    color: str = "#4A6B3A"

    @field_validator("size")
    @classmethod
    def _clamp_size(cls, v):
        return _clamp(v, GROUND_SIZE_RANGE)

    @field_validator("grid")
    @classmethod
    def _clamp_grid(cls, v):
        return _clamp(v, GROUND_GRID_RANGE)

    @field_validator("height_scale")
    @classmethod
    def _clamp_height(cls, v):
        return _clamp(v, HEIGHT_SCALE_RANGE)

    @field_validator("noise_scale")
    @classmethod
    def _clamp_noise(cls, v):
        return _clamp(v, NOISE_SCALE_RANGE)


class SkySpec(BaseModel):
    sky_tint: str = "#7FA8D8"
    ground_color: str = "#5A5048"
    atmosphere_thickness: float = 1.0
    sun_size: float = 0.04

    @field_validator("atmosphere_thickness")
    @classmethod
    def _clamp_atmosphere(cls, v):
        return _clamp(v, ATMOSPHERE_RANGE)

    @field_validator("sun_size")
    @classmethod
    def _clamp_sun(cls, v):
        return _clamp(v, SUN_SIZE_RANGE)


class FogSpec(BaseModel):
    enabled: bool = False
    color: str = "#9AA8B8"
    density: float = 0.01

    @field_validator("density")
    @classmethod
    def _clamp_density(cls, v):
        return _clamp(v, FOG_DENSITY_RANGE)


class WorldObjectSpec(BaseModel):
    id: str
    prefab: str
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    color: str = "#FFFFFF"
    emission_color: str = "#000000"
    emission_strength: float = 0.0

    @field_validator("position", "rotation", mode="before")
    @classmethod
    def _pad_zero(cls, v):
        return _vec3(v, (0.0, 0.0, 0.0))

    @field_validator("scale", mode="before")
    @classmethod
    def _pad_one(cls, v):
        return _vec3(v, (1.0, 1.0, 1.0))

    @field_validator("emission_strength")
    @classmethod
    def _clamp_emission(cls, v):
        return _clamp(v, EMISSION_RANGE)

    @property
    def catalog_id(self) -> str:
        return self.prefab.strip().lower()


class WorldPlan(BaseModel):
    version: str = "v1"
    name: str = "World"
    seed: int = 0
    biome_tags: list[str] = Field(default_factory=list)
    ground: GroundSpec = Field(default_factory=GroundSpec)
    sky: SkySpec = Field(default_factory=SkySpec)
    fog: FogSpec = Field(default_factory=FogSpec)
    objects: list[WorldObjectSpec] = Field(default_factory=list)

    @field_validator("seed")
    @classmethod
    def _clamp_seed(cls, v):
        return _clamp(v, SEED_RANGE)

    @field_validator("biome_tags")
    @classmethod
    def _cap_tags(cls, v):
        return v[:MAX_TAGS]

    @field_validator("objects")
    @classmethod
    def _cap_objects(cls, v):
        if len(v) > MAX_WORLD_OBJECTS:
            logger.warning(f"World plan has {len(v)} objects; keeping the first "
                           f"{MAX_WORLD_OBJECTS}")
        return v[:MAX_WORLD_OBJECTS]


# ── Avatar spec ───────────────────────────────────────────────────

class AvatarPart(BaseModel):
    id: str
    attach: str = "body"
    primitive: str = "cube"
    position: Vec3 = (0.0, 0.0, 0.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    color: str = "#FFFFFF"
    emission_color: Optional[str] = None
    emission_strength: Optional[float] = None

    @field_validator("attach")
    @classmethod
    def _normalise_attach(cls, v):
        return "head" if v.strip().lower() == "head" else "body"

    @field_validator("position", "rotation", mode="before")
    @classmethod
    def _pad_zero(cls, v):
        return _vec3(v, (0.0, 0.0, 0.0))

    @field_validator("scale", mode="before")
    @classmethod
    def _pad_one(cls, v):
        return _vec3(v, (1.0, 1.0, 1.0))

    @field_validator("emission_strength")
    @classmethod
    def _clamp_emission(cls, v):
        return None if v is None else _clamp(v, EMISSION_RANGE)


class AvatarMeshPart(BaseModel):
    id: str
    uri: str
    sha256: Optional[str] = None
    material: Optional[str] = None


class AvatarMesh(BaseModel):
    format: str = "stl"
    uri: Optional[str] = None
    sha256: Optional[str] = None
    parts: list[AvatarMeshPart] = Field(default_factory=list)

    @property
    def supported(self) -> bool:
        return self.format.strip().lower() == "stl"


class AvatarSpec(BaseModel):
    version: str = "v1"
    name: str = DEFAULT_AVATAR_NAME
    primary_color: str = DEFAULT_PRIMARY
    secondary_color: str = DEFAULT_SECONDARY
    height: float = 1.0
    tags: list[str] = Field(default_factory=list)
    parts: list[AvatarPart] = Field(default_factory=list)
    mesh: Optional[AvatarMesh] = None

    @field_validator("name")
    @classmethod
    def _default_name(cls, v):
        return v if v.strip() else DEFAULT_AVATAR_NAME

    @field_validator("primary_color")
    @classmethod
    def _default_primary(cls, v):
        return v or DEFAULT_PRIMARY

    @field_validator("secondary_color")
    @classmethod
    def _default_secondary(cls, v):
        return v or DEFAULT_SECONDARY

    @field_validator("height")
    @classmethod
    def _clamp_height(cls, v):
        return _clamp(v, AVATAR_HEIGHT_RANGE)

    @field_validator("tags")
    @classmethod
    def _cap_tags(cls, v):
        return v[:MAX_TAGS]

    @property
    def mesh_override(self) -> Optional[AvatarMesh]:
        """The mesh override if it is one we can decode, else None."""
        if self.mesh is None or not self.mesh.supported:
            return None
        return self.mesh


# ── Loading ───────────────────────────────────────────────────────

def _load_document(text: str) -> dict:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return json.loads(extract_json_object(text))


def load_world_plan(text: str) -> WorldPlan:
    """Parse a world plan from JSON, tolerating surrounding prose."""
    return WorldPlan.model_validate(_load_document(text))


def load_avatar_spec(text: str) -> AvatarSpec:
    """Parse an avatar spec from JSON, tolerating surrounding prose."""
    return AvatarSpec.model_validate(_load_document(text))
