"""Shared fixtures: STL payloads, fake collaborators, the reference plan."""

import asyncio

import pytest

from worldbuilder.fetch import FetchError, FetchErrorKind
from worldbuilder.mesh import Mesh
from worldbuilder.models import WorldPlan
from worldbuilder.primitives import box
from worldbuilder.stl import encode_binary_stl


class FakeFetcher:
    """In-memory stand-in for MeshFetcher; records every uri requested."""

    def __init__(self, blobs=None, delay=0.0):
        self.blobs = dict(blobs or {})
        self.delay = delay
        self.calls = []

    async def fetch(self, uri, sha256=None):
        self.calls.append(uri)
        if self.delay:
            await asyncio.sleep(self.delay)
        data = self.blobs.get(uri)
        if data is None:
            return FetchError(FetchErrorKind.status, f"HTTP 404 for {uri}", status_code=404)
        return data


class FakeLoader:
    """Async asset loader returning canned meshes (None = missing)."""

    def __init__(self, meshes=None, fail=False, delay=0.0):
        self.meshes = dict(meshes or {})
        self.fail = fail
        self.delay = delay
        self.calls = []

    async def __call__(self, name):
        self.calls.append(name)
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"cannot read {name}")
        return self.meshes.get(name)


@pytest.fixture
def box_mesh() -> Mesh:
    return box()


@pytest.fixture
def box_stl(box_mesh) -> bytes:
    return encode_binary_stl(box_mesh)


@pytest.fixture
def scenario_plan() -> WorldPlan:
    return WorldPlan.model_validate({
        "seed": 42,
        "ground": {"size": 100, "grid": 64, "height_scale": 8, "noise_scale": 20,
                   "color": "#334"},
        "objects": [{"id": "r1", "prefab": "rock", "position": [10, 0, 5],
                     "rotation": [0, 0, 0], "scale": [1, 1, 1], "color": "#888"}],
    })


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def make_loader():
    return FakeLoader
