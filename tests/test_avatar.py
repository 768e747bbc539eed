"""Avatar assembly: archetypes, fallback kit, parts, and mesh overrides."""

import asyncio

import numpy as np
import pytest

from worldbuilder.avatar import (
    AvatarAssembler, describe_avatar, fallback_parts, infer_archetype, mesh_cache_key,
    split_mesh_parts,
)
from worldbuilder.mesh import Mesh
from worldbuilder.models import AvatarSpec
from worldbuilder.pipeline import AssemblyPipeline
from worldbuilder.primitives import quad
from worldbuilder.state import AssemblyRequest, AssemblyState
from worldbuilder.stl import encode_binary_stl


def _spec(**fields) -> AvatarSpec:
    return AvatarSpec.model_validate(fields)


def _mesh_spec(mesh, **fields) -> AvatarSpec:
    return _spec(mesh=mesh, **fields)


def _assemble(assembler, spec):
    request = AssemblyRequest("avatar")
    avatar = asyncio.run(assembler.assemble(spec, request))
    return avatar, request


def _names(node):
    return [c.name for c in node.children]


# ---------------------------------------------------------------------------
# Archetypes & fallback kit
# ---------------------------------------------------------------------------


class TestArchetype:
    @pytest.mark.parametrize("tags,expected", [
        (["Cyborg"], "robot"),
        (["android", "dragon"], "robot"),
        (["dragon", "angel"], "dragon"),
        (["mage"], "wizard"),
        (["Na'vi"], "navi"),
        (["pirate"], "humanoid"),
        ([], "humanoid"),
    ])
    def test_from_tags(self, tags, expected):
        assert infer_archetype(_spec(tags=tags)) == expected

    def test_part_ids_used_without_tags(self):
        spec = _spec(parts=[{"id": "dragon_tail"}])
        assert infer_archetype(spec) == "dragon"

    def test_unmatched_tags_ignore_part_ids(self):
        spec = _spec(tags=["tall"], parts=[{"id": "dragon_tail"}])
        assert infer_archetype(spec) == "humanoid"


class TestFallbackParts:
    def test_no_matching_tags(self):
        assert fallback_parts(_spec(tags=["pirate"])) == []
        assert fallback_parts(_spec()) == []

    def test_navi_kit(self):
        ids = [p.id for p in fallback_parts(_spec(tags=["navi"]))]
        assert ids[:4] == ["ear_left", "ear_right", "eye_left", "eye_right"]
        assert sum(i.startswith("braid_") for i in ids) == 4
        assert sum(i.startswith("stripe_") for i in ids) == 5
        assert "tail" in ids

    def test_wizard_hat(self):
        parts = {p.id: p for p in fallback_parts(_spec(tags=["wizard"]))}
        assert set(parts) == {"staff", "hat_brim", "hat_top"}
        assert parts["hat_top"].primitive == "cone"
        assert parts["hat_top"].attach == "head"

    def test_uses_spec_colors(self):
        parts = fallback_parts(_spec(tags=["tail"], primary_color="#112233"))
        assert [p.id for p in parts] == ["tail"]
        assert parts[0].color == "#112233"

    def test_deterministic(self):
        spec = _spec(tags=["dragon", "glow"])
        assert fallback_parts(spec) == fallback_parts(spec)


class TestDescribe:
    def test_robot_glow(self):
        assert describe_avatar(_spec(tags=["robot", "glow"])) == \
            "robot, glow; 5 glow stripes, shoulder armor"

    def test_empty(self):
        assert describe_avatar(_spec()) == "base body only"

    def test_explicit_parts_counted(self):
        spec = _spec(parts=[{"id": "belt"}, {"id": "boots"}])
        assert describe_avatar(spec) == "2 parts"


# ---------------------------------------------------------------------------
# Procedural assembly
# ---------------------------------------------------------------------------


class TestProcedural:
    def test_tree_layout(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        avatar, request = _assemble(assembler, _spec(name="Kai", height=1.5, tags=["robot"]))
        assert request.state == AssemblyState.placing
        assert avatar.archetype == "robot"
        assert assembler.root.name == "Avatar_Kai"
        assert assembler.root.scale == (1.5, 1.5, 1.5)
        assert _names(assembler.bases["body"]) == ["chassis"]
        assert "visor" in _names(assembler.part_slots["head"])
        assert not avatar.mesh_applied

    def test_archetype_change_rebuilds_base(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        _assemble(assembler, _spec(tags=["robot"]))
        _assemble(assembler, _spec(tags=["robot", "glow"]))
        assert assembler.base_builds == 1
        _assemble(assembler, _spec(tags=["dragon"]))
        assert assembler.base_builds == 2
        assert "snout" in _names(assembler.bases["head"])

    def test_parts_rebuilt_each_call(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        _assemble(assembler, _spec(parts=[{"id": "visor", "attach": "head"}]))
        _assemble(assembler, _spec(parts=[{"id": "belt"}]))
        assert _names(assembler.part_slots["head"]) == []
        assert _names(assembler.part_slots["body"]) == ["belt"]

    def test_part_transform_and_color(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        spec = _spec(parts=[{"id": "pack", "primitive": "cube", "position": [0, 0.2, 0.4],
                             "scale": [0.5, 0.6], "color": "#FF0000"}])
        _assemble(assembler, spec)
        node = assembler.part_slots["body"].children[0]
        assert node.translation == (0.0, 0.2, 0.4)
        assert node.scale == (0.5, 0.6, 1.0)
        assert node.children[0].material.base_color[:3] == pytest.approx((1.0, 0.0, 0.0))

    def test_composite_staff(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        _assemble(assembler, _spec(parts=[{"id": "staff", "primitive": "cylinder"}]))
        staff = assembler.part_slots["body"].children[0]
        assert _names(staff) == ["shaft", "orb"]
        assert staff.children[1].material.emissive

    def test_catalog_primitive(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        avatar, request = _assemble(assembler, _spec(parts=[
            {"id": "gem", "primitive": "crystal"},
            {"id": "mystery", "primitive": "banana"},
        ]))
        gem, mystery = assembler.part_slots["body"].children
        assert _names(gem) == ["crystal"]
        assert _names(mystery) == ["fallback"]
        assert avatar.part_count == 2
        assert not request.errors


# ---------------------------------------------------------------------------
# Mesh override
# ---------------------------------------------------------------------------


class TestMeshOverride:
    def test_png_ignored(self, make_fetcher):
        fetcher = make_fetcher()
        assembler = AvatarAssembler(fetcher, z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"format": "png", "uri": "a.png"}))
        assert fetcher.calls == []
        assert not avatar.mesh_applied
        assert assembler.procedural.visible
        assert request.warnings

    def test_applied_and_fitted(self, make_fetcher, box_stl):
        fetcher = make_fetcher({"avatar.stl": box_stl})
        assembler = AvatarAssembler(fetcher, z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "avatar.stl"}))
        assert avatar.mesh_applied
        assert assembler.showing_mesh
        assert not assembler.procedural.visible
        lo, hi = assembler.root.world_bounds()
        assert lo[1] == pytest.approx(0.0, abs=1e-5)
        assert hi[1] == pytest.approx(2.0, abs=1e-5)
        assert lo[0] == pytest.approx(-hi[0], abs=1e-5)
        assert not request.errors

    def test_scaled_by_height(self, make_fetcher, box_stl):
        assembler = AvatarAssembler(make_fetcher({"avatar.stl": box_stl}), z_up=False)
        _assemble(assembler, _mesh_spec({"uri": "avatar.stl"}, height=0.5))
        lo, hi = assembler.root.world_bounds()
        assert hi[1] - lo[1] == pytest.approx(1.0, abs=1e-5)

    def test_idempotent(self, make_fetcher, box_stl):
        fetcher = make_fetcher({"avatar.stl": box_stl})
        assembler = AvatarAssembler(fetcher, z_up=False)
        spec = _mesh_spec({"uri": "avatar.stl", "sha256": "abc"})
        _assemble(assembler, spec)
        avatar, _ = _assemble(assembler, spec)
        assert fetcher.calls == ["avatar.stl"]
        assert assembler.base_builds == 1
        assert avatar.mesh_applied

    def test_fetch_failure_keeps_placeholder(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher(), z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "missing.stl"}))
        assert not avatar.mesh_applied
        assert assembler.procedural.visible
        assert any("404" in e for e in request.errors)

    def test_decode_failure_keeps_placeholder(self, make_fetcher):
        assembler = AvatarAssembler(make_fetcher({"bad.stl": b"not an stl"}), z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "bad.stl"}))
        assert not avatar.mesh_applied
        assert assembler.procedural.visible
        assert request.errors

    def test_flat_body_rejected(self, make_fetcher):
        flat = encode_binary_stl(quad())
        assembler = AvatarAssembler(make_fetcher({"flat.stl": flat}), z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "flat.stl"}))
        assert not avatar.mesh_applied
        assert request.errors

    def test_non_finite_stl_keeps_placeholder(self, make_fetcher, box_mesh):
        data = bytearray(encode_binary_stl(box_mesh))
        for i in range(box_mesh.triangle_count):
            offset = 84 + 50 * i + 16
            data[offset:offset + 4] = np.float32(np.nan).tobytes()
        assembler = AvatarAssembler(make_fetcher({"nan.stl": bytes(data)}), z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "nan.stl"}))
        assert not avatar.mesh_applied
        assert assembler.procedural.visible
        assert request.errors

    def test_unbounded_body_keeps_placeholder(self, make_fetcher, box_stl, monkeypatch):
        broken = Mesh.build(np.array([[0, 0, 0], [1, np.nan, 0], [0, 1, 0]]), [[0, 1, 2]],
                            normals=np.tile([0.0, 0.0, 1.0], (3, 1)))
        monkeypatch.setattr("worldbuilder.avatar.decode_stl", lambda data, swap_yz: broken)
        assembler = AvatarAssembler(make_fetcher({"a.stl": box_stl}), z_up=False)
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "a.stl"}))
        assert not avatar.mesh_applied
        assert assembler.procedural.visible
        assert not assembler.mesh_node.visible
        assert request.errors

    def test_failed_update_keeps_previous_mesh(self, make_fetcher, box_stl):
        fetcher = make_fetcher({"a.stl": box_stl})
        assembler = AvatarAssembler(fetcher, z_up=False)
        _assemble(assembler, _mesh_spec({"uri": "a.stl"}))
        avatar, request = _assemble(assembler, _mesh_spec({"uri": "b.stl"}))
        assert avatar.mesh_applied
        assert request.errors

    def test_body_first_and_duplicates_skipped(self, make_fetcher, box_stl):
        fetcher = make_fetcher({"body.stl": box_stl, "hat.stl": box_stl,
                                "arm.stl": box_stl})
        assembler = AvatarAssembler(fetcher, z_up=False)
        spec = _mesh_spec({"uri": "full.stl", "sha256": "full", "parts": [
            {"id": "hat", "uri": "hat.stl", "sha256": "h1", "material": "emissive"},
            {"id": "arm", "uri": "arm.stl", "sha256": "FULL"},
            {"id": "body", "uri": "body.stl", "sha256": "b1"},
        ]})
        avatar, _ = _assemble(assembler, spec)
        assert fetcher.calls[0] == "body.stl"
        assert sorted(fetcher.calls) == ["body.stl", "hat.stl"]
        assert _names(assembler.mesh_node) == ["body", "hat"]
        assert assembler.mesh_node.children[1].material.emissive
        assert avatar.mesh_applied

    def test_z_up_swaps_axes(self, make_fetcher):
        tall = Mesh.build(np.array([[0, 0, 0], [1, 0, 0], [0, 0, 4.0]]), [[0, 1, 2]])
        fetcher = make_fetcher({"tall.stl": encode_binary_stl(tall)})
        assembler = AvatarAssembler(fetcher, z_up=True)
        avatar, _ = _assemble(assembler, _mesh_spec({"uri": "tall.stl"}))
        assert avatar.mesh_applied
        lo, hi = assembler.root.world_bounds()
        assert hi[1] - lo[1] == pytest.approx(2.0, abs=1e-5)
        assert hi[2] - lo[2] == pytest.approx(0.0, abs=1e-5)


class TestMeshHelpers:
    def test_cache_key_includes_parts(self):
        spec = _mesh_spec({"uri": "a.stl", "parts": [{"id": "hat", "uri": "h.stl",
                                                      "sha256": "h1"}]})
        assert mesh_cache_key(spec.mesh) == "a.stl|hat:h1"

    def test_split_without_body_uses_first_part(self):
        spec = _mesh_spec({"parts": [{"id": "torso", "uri": "t.stl"},
                                     {"id": "hat", "uri": "h.stl"}]})
        body, others = split_mesh_parts(spec.mesh)
        assert body.id == "torso"
        assert [r.id for r in others] == ["hat"]

    def test_split_empty(self):
        assert split_mesh_parts(_mesh_spec({}).mesh) == (None, [])


# ---------------------------------------------------------------------------
# Overlapping requests / pipeline
# ---------------------------------------------------------------------------


class TestConcurrency:
    def test_stale_override_discarded(self, make_fetcher, box_stl):
        fetcher = make_fetcher({"slow.stl": box_stl}, delay=0.05)
        assembler = AvatarAssembler(fetcher, z_up=False)
        slow = _mesh_spec({"uri": "slow.stl"}, name="Slow")
        fast = _spec(name="Fast", tags=["angel"])

        async def run():
            first, second = AssemblyRequest("avatar"), AssemblyRequest("avatar")
            await asyncio.gather(assembler.assemble(slow, first),
                                 assembler.assemble(fast, second))
            return first, second

        first, second = asyncio.run(run())
        assert first.stale
        assert not second.stale
        assert not assembler.showing_mesh
        assert assembler.root.name == "Avatar_Fast"

    def test_pipeline_accepts_text(self, make_fetcher):
        pipeline = AssemblyPipeline(fetcher=make_fetcher(), z_up=False)
        text = 'Sure! {"name": "Ivy", "tags": ["wizard"], "height": 9}'
        result = asyncio.run(pipeline.assemble_avatar(text))
        assert result.ok
        assert result.detail.archetype == "wizard"
        assert result.root.scale == (2.0, 2.0, 2.0)
        assert result.detail.summary == "wizard; 3 parts"
