"""Render-API agnostic scene graph, materials, and GLB export.

The host application walks ``SceneNode`` trees to draw them; the CLI
exports them as binary glTF through trimesh.
"""

import logging
import pathlib
from dataclasses import dataclass, field
from typing import Iterator, Optional

import numpy as np
import trimesh
from trimesh.visual.material import PBRMaterial

from .mesh import Mesh

logger = logging.getLogger(__name__)

RGBA = tuple[float, float, float, float]


@dataclass
class Material:
    """Unity-style surface description (metallic / smoothness workflow)."""

    name: str = "default"
    base_color: RGBA = (1.0, 1.0, 1.0, 1.0)
    metallic: float = 0.0
    smoothness: float = 0.5
    emission_color: RGBA = (0.0, 0.0, 0.0, 1.0)
    emission_strength: float = 0.0
    texture: Optional[str] = None
    texture_tiling: tuple[float, float] = (1.0, 1.0)

    @property
    def emissive(self) -> bool:
        return self.emission_strength > 0.0 and any(c > 0.0 for c in self.emission_color[:3])

    def to_pbr(self) -> PBRMaterial:
        emissive = None
        if self.emissive:
            emissive = [min(1.0, c * self.emission_strength) for c in self.emission_color[:3]]
        return PBRMaterial(
            name=self.name,
            baseColorFactor=list(self.base_color),
            metallicFactor=self.metallic,
            roughnessFactor=1.0 - self.smoothness,
            emissiveFactor=emissive,
            doubleSided=True,
        )


@dataclass
class RenderSettings:
    """Sky, fog, and ambient state; consumed by the host, no geometry."""

    sky_tint: RGBA = (0.5, 0.66, 0.85, 1.0)
    sky_ground_color: RGBA = (0.35, 0.31, 0.28, 1.0)
    atmosphere_thickness: float = 1.0
    sun_size: float = 0.04
    fog_enabled: bool = False
    fog_color: RGBA = (0.6, 0.66, 0.72, 1.0)
    fog_density: float = 0.0
    ambient_sky: RGBA = (0.5, 0.66, 0.85, 1.0)
    ambient_equator: RGBA = (0.43, 0.48, 0.56, 1.0)
    ambient_ground: RGBA = (0.35, 0.31, 0.28, 1.0)


@dataclass
class CameraFraming:
    distance: float
    position: tuple[float, float, float]
    target: tuple[float, float, float] = (0.0, 0.0, 0.0)


def compose_matrix(translation, rotation_deg, scale) -> np.ndarray:
    """T @ R @ S with Euler angles in degrees about static X, Y, Z."""
    rx, ry, rz = np.radians(np.asarray(rotation_deg, dtype=np.float64))
    matrix = trimesh.transformations.euler_matrix(rx, ry, rz, 'sxyz')
    matrix[:3, :3] = matrix[:3, :3] @ np.diag(np.asarray(scale, dtype=np.float64))
    matrix[:3, 3] = np.asarray(translation, dtype=np.float64)
    return matrix


@dataclass
class SceneNode:
    name: str
    mesh: Optional[Mesh] = None
    material: Optional[Material] = None
    translation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    rotation: tuple[float, float, float] = (0.0, 0.0, 0.0)
    scale: tuple[float, float, float] = (1.0, 1.0, 1.0)
    visible: bool = True
    children: list["SceneNode"] = field(default_factory=list)

    def add(self, child: "SceneNode") -> "SceneNode":
        self.children.append(child)
        return child

    def clear(self):
        self.children.clear()

    def walk(self) -> Iterator["SceneNode"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, name: str) -> Optional["SceneNode"]:
        for node in self.walk():
            if node.name == name:
                return node
        return None

    def local_matrix(self) -> np.ndarray:
        return compose_matrix(self.translation, self.rotation, self.scale)

    def visible_meshes(self, parent=None):
        """Yield ``(path, node, world_matrix)`` for every drawable node.

        Hidden nodes prune their whole subtree.
        """
        if not self.visible:
            return
        world = self.local_matrix() if parent is None else parent[1] @ self.local_matrix()
        path = self.name if parent is None else f"{parent[0]}/{self.name}"
        if self.mesh is not None and self.mesh.vertex_count:
            yield path, self, world
        for child in self.children:
            yield from child.visible_meshes((path, world))

    def world_bounds(self) -> Optional[tuple[np.ndarray, np.ndarray]]:
        """World-space AABB of all visible geometry, or None if empty."""
        lo = hi = None
        for _path, node, world in self.visible_meshes():
            pos = node.mesh.positions.astype(np.float64) @ world[:3, :3].T + world[:3, 3]
            mn, mx = pos.min(axis=0), pos.max(axis=0)
            lo = mn if lo is None else np.minimum(lo, mn)
            hi = mx if hi is None else np.maximum(hi, mx)
        if lo is None:
            return None
        return lo, hi


def to_trimesh_scene(root: SceneNode) -> trimesh.Scene:
    scene = trimesh.Scene()
    for i, (path, node, world) in enumerate(root.visible_meshes()):
        tm = node.mesh.to_trimesh()
        material = node.material or Material()
        tm.visual = trimesh.visual.TextureVisuals(material=material.to_pbr())
        scene.add_geometry(tm, node_name=f"{path}#{i}", geom_name=f"{node.name}_{i}",
                           transform=world)
    return scene


def export_glb(root: SceneNode, output_path) -> str:
    """Write the visible part of *root* to a GLB file and return its path."""
    output_path = pathlib.Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    scene = to_trimesh_scene(root)
    if not scene.geometry:
        raise ValueError(f"Nothing visible to export under '{root.name}'")
    scene.export(str(output_path), file_type='glb')
    logger.info(f"GLB file generated: {output_path} ({len(scene.geometry)} meshes)")
    return str(output_path)
