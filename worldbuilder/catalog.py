"""Catalog resolution: abstract ids to procedural builders or external assets.

Procedural templates are built once per variant name. External templates
are loaded once per asset name in a background task started by the first
``await handle.wait()``; until then the ``AssetHandle`` is pending. A
failed load is cached as ``None`` so it is not retried; a cancelled load
is started again on the next wait.
Nothing is ever evicted.
"""

import asyncio
import logging
import pathlib
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

import numpy as np
import trimesh

from . import config
from .constants import WHITE
from .mesh import Mesh
from .props import PROP_BUILDERS, PropPart

logger = logging.getLogger(__name__)

ASSET_EXTENSIONS = (".glb", ".gltf", ".obj", ".stl")

# ── Catalog tables ────────────────────────────────────────────────

WORLD_PROCEDURAL = {
    "tower": ("tower",),
    "house": ("house",),
    "ruins": ("ruins",),
    "camp": ("camp",),
    "portal": ("portal",),
    "tree": ("tree_deciduous", "tree_conifer"),
    "rock": ("rock_boulder", "rock_slab", "rock_spire"),
    "crystal": ("crystal",),
    "lamp": ("lamp_post", "lamp_lantern"),
}

WORLD_EXTERNAL = {
    "alien": ("Alien",),
    "astronaut": ("Astronaut",),
    "barrel": ("Barrel", "Barrel_Stack"),
    "van": ("Van",),
    "ambulance": ("Ambulance",),
}

# Avatar parts may name a prop instead of a primitive
AVATAR_PROCEDURAL = {
    "rock": ("rock_boulder", "rock_slab", "rock_spire"),
    "rock_boulder": ("rock_boulder",),
    "rock_slab": ("rock_slab",),
    "rock_spire": ("rock_spire",),
    "crystal": ("crystal",),
    "lamp": ("lamp_post", "lamp_lantern"),
    "lamp_post": ("lamp_post",),
    "lantern": ("lamp_lantern",),
}

AVATAR_EXTERNAL = {
    "alien": ("Alien",),
    "astronaut": ("Astronaut",),
    "vehicle": ("Van", "Ambulance"),
    "van": ("Van",),
    "ambulance": ("Ambulance",),
}

CATALOGS = {
    "world": (WORLD_PROCEDURAL, WORLD_EXTERNAL),
    "avatar": (AVATAR_PROCEDURAL, AVATAR_EXTERNAL),
}


class AssetKind(str, Enum):
    procedural = "procedural"
    external = "external"
    fallback = "fallback"


@dataclass
class AssetHandle:
    """Result of a catalog lookup; parts may arrive later for external assets."""

    catalog_id: str
    kind: AssetKind
    variant: str
    parts: Optional[list[PropPart]] = None
    source: Optional["CatalogResolver"] = field(default=None, repr=False)

    @property
    def pending(self) -> bool:
        return self.source is not None

    async def wait(self) -> Optional[list[PropPart]]:
        """Cloned parts for this placement, or None if the asset failed."""
        if self.source is not None:
            template = await self.source.external_template(self.variant)
            self.parts = None if template is None else _external_parts(template)
            self.source = None
        return self.instantiate()

    def instantiate(self) -> Optional[list[PropPart]]:
        if self.parts is None:
            return None
        return [part.copy() for part in self.parts]


def _external_parts(template: Mesh) -> list[PropPart]:
    return [PropPart("asset", template, "primary", WHITE)]


# ── External asset loading ────────────────────────────────────────

def flatten_scene(loaded) -> Optional[Mesh]:
    """Collapse a loaded trimesh Scene/Trimesh into a single Mesh."""
    if isinstance(loaded, trimesh.Trimesh):
        return Mesh.from_trimesh(loaded)
    if not isinstance(loaded, trimesh.Scene):
        return None

    meshes = []
    for node_name in loaded.graph.nodes_geometry:
        transform, geom_name = loaded.graph[node_name]
        geom = loaded.geometry.get(geom_name)
        if not isinstance(geom, trimesh.Trimesh) or len(geom.faces) == 0:
            continue
        meshes.append(Mesh.from_trimesh(geom).transformed(np.asarray(transform)))
    if not meshes:
        return None
    return Mesh.merge(meshes)


def find_asset_file(name: str, asset_dir) -> Optional[pathlib.Path]:
    asset_dir = pathlib.Path(asset_dir)
    for ext in ASSET_EXTENSIONS:
        candidate = asset_dir / f"{name}{ext}"
        if candidate.exists():
            return candidate
    return None


async def load_asset_template(name: str, asset_dir=None) -> Optional[Mesh]:
    """Load ``<asset_dir>/<name>.{glb,gltf,obj,stl}`` off the event loop."""
    path = find_asset_file(name, asset_dir or config.ASSET_DIR)
    if path is None:
        logger.warning(f"No asset file for '{name}' in {asset_dir or config.ASSET_DIR}")
        return None
    loaded = await asyncio.to_thread(trimesh.load, str(path))
    mesh = flatten_scene(loaded)
    if mesh is not None:
        logger.info(f"Loaded asset template '{name}' from {path.name}: "
                    f"{mesh.vertex_count} verts")
    return mesh


Loader = Callable[[str], Awaitable[Optional[Mesh]]]


class CatalogResolver:
    """Resolves catalog ids for one catalog table ("world" or "avatar")."""

    def __init__(self, table: str = "world", loader: Optional[Loader] = None,
                 asset_dir=None):
        if table not in CATALOGS:
            raise ValueError(f"Unknown catalog table: {table}")
        self.table = table
        self.procedural, self.external = CATALOGS[table]
        self._asset_dir = asset_dir
        self._loader = loader or self._default_loader
        self._templates: dict[str, list[PropPart]] = {}
        self._external: dict[str, Optional[Mesh]] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self.load_count = 0

    async def _default_loader(self, name: str) -> Optional[Mesh]:
        return await load_asset_template(name, self._asset_dir)

    def knows(self, catalog_id: str) -> bool:
        key = (catalog_id or "").strip().lower()
        return key in self.procedural or key in self.external

    def resolve(self, catalog_id: str, rng: random.Random) -> AssetHandle:
        """Map *catalog_id* to a handle, choosing a variant with *rng*.

        The rng is only consumed when an id has more than one variant.
        Unknown ids resolve to the fallback shape.
        """
        key = (catalog_id or "").strip().lower()

        if key in self.procedural:
            variant = _choose(self.procedural[key], rng)
            return AssetHandle(key, AssetKind.procedural, variant,
                               parts=self._template(variant))

        if key in self.external:
            name = _choose(self.external[key], rng)
            return self._external_handle(key, name)

        logger.warning(f"Unknown catalog id '{catalog_id}'; using fallback shape")
        return AssetHandle(key, AssetKind.fallback, "fallback",
                           parts=self._template("fallback"))

    def _template(self, variant: str) -> list[PropPart]:
        if variant not in self._templates:
            self._templates[variant] = PROP_BUILDERS[variant]()
            logger.debug(f"Built procedural template '{variant}'")
        return self._templates[variant]

    def _external_handle(self, key: str, name: str) -> AssetHandle:
        if name in self._external:
            template = self._external[name]
            logger.debug(f"Asset template cache hit: {name}")
            return AssetHandle(key, AssetKind.external, name,
                               parts=None if template is None else _external_parts(template))
        return AssetHandle(key, AssetKind.external, name, source=self)

    async def external_template(self, name: str) -> Optional[Mesh]:
        """Template for asset *name*, shared by every waiter and loaded once.

        The load runs in its own task; cancelling one waiter leaves it
        running for the others.
        """
        if name in self._external:
            return self._external[name]
        loop = asyncio.get_running_loop()
        task = self._pending.get(name)
        if task is None or task.cancelled() or task.get_loop() is not loop:
            task = loop.create_task(self._load(name))
            self._pending[name] = task
        return await asyncio.shield(task)

    async def _load(self, name: str) -> Optional[Mesh]:
        self.load_count += 1
        try:
            template = await self._loader(name)
        except MemoryError:
            raise
        except Exception as e:
            logger.warning(f"Failed to load asset template '{name}': {e}")
            template = None
        finally:
            if self._pending.get(name) is asyncio.current_task():
                del self._pending[name]
        if template is None:
            logger.warning(f"Asset template '{name}' unavailable; placements stay empty")
        self._external[name] = template
        return template


def _choose(variants, rng: random.Random) -> str:
    if len(variants) == 1:
        return variants[0]
    return rng.choice(variants)
