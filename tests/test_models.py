"""Input documents: clamping, defaults, and lenient loading."""

import pytest
from pydantic import ValidationError

from worldbuilder.models import (
    AvatarSpec, WorldPlan, extract_json_object, load_avatar_spec, load_world_plan,
    parse_hex_color,
)


class TestWorldPlan:
    def test_defaults(self):
        plan = WorldPlan()
        assert plan.seed == 0
        assert plan.ground.grid == 64
        assert not plan.fog.enabled
        assert plan.objects == []

    def test_clamps(self):
        plan = WorldPlan.model_validate({
            "seed": -5,
            "ground": {"size": 5000, "grid": 4, "height_scale": 99, "noise_scale": 0.1},
            "sky": {"atmosphere_thickness": 9, "sun_size": 0},
            "fog": {"density": 1.0},
        })
        assert plan.seed == 0
        assert plan.ground.size == 400.0
        assert plan.ground.grid == 16
        assert plan.ground.height_scale == 40.0
        assert plan.ground.noise_scale == 0.5
        assert plan.sky.atmosphere_thickness == 4.0
        assert plan.sky.sun_size == 0.01
        assert plan.fog.density == 0.05

    def test_caps(self):
        plan = WorldPlan.model_validate({
            "biome_tags": [f"t{i}" for i in range(30)],
            "objects": [{"id": str(i), "prefab": "rock"} for i in range(450)],
        })
        assert len(plan.biome_tags) == 16
        assert len(plan.objects) == 400

    def test_vectors_padded(self):
        plan = WorldPlan.model_validate({"objects": [
            {"id": "a", "prefab": "Tree", "position": [1, 2], "scale": [3]},
        ]})
        obj = plan.objects[0]
        assert obj.position == (1.0, 2.0, 0.0)
        assert obj.scale == (3.0, 1.0, 1.0)
        assert obj.rotation == (0.0, 0.0, 0.0)
        assert obj.catalog_id == "tree"

    def test_emission_clamped(self):
        plan = WorldPlan.model_validate({"objects": [
            {"id": "a", "prefab": "lamp", "emission_strength": 50},
        ]})
        assert plan.objects[0].emission_strength == 10.0

    def test_missing_required_field(self):
        with pytest.raises(ValidationError):
            WorldPlan.model_validate({"objects": [{"id": "a"}]})


class TestAvatarSpec:
    def test_defaults(self):
        spec = AvatarSpec.model_validate({"name": "  "})
        assert spec.name == "Traveler"
        assert spec.primary_color == "#00D1FF"
        assert spec.secondary_color == "#FFFFFF"
        assert spec.height == 1.0

    def test_height_clamped(self):
        assert AvatarSpec(height=0.1).height == 0.5
        assert AvatarSpec(height=7).height == 2.0

    def test_attach_normalised(self):
        spec = AvatarSpec.model_validate({"parts": [
            {"id": "a", "attach": "HEAD"}, {"id": "b", "attach": "tail"},
        ]})
        assert [p.attach for p in spec.parts] == ["head", "body"]

    def test_unsupported_mesh_format(self):
        spec = AvatarSpec.model_validate({"mesh": {"format": "png", "uri": "a.png"}})
        assert spec.mesh is not None
        assert spec.mesh_override is None

    def test_stl_mesh_format(self):
        spec = AvatarSpec.model_validate({"mesh": {"format": "STL", "uri": "a.stl"}})
        assert spec.mesh_override is spec.mesh


class TestHexColor:
    @pytest.mark.parametrize("text,expected", [
        ("#FFF", (1.0, 1.0, 1.0, 1.0)),
        ("#000000", (0.0, 0.0, 0.0, 1.0)),
        ("FF000080", (1.0, 0.0, 0.0, 128 / 255)),
    ])
    def test_valid(self, text, expected):
        assert parse_hex_color(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["", None, "#12", "#GGHHII", "blue"])
    def test_invalid_uses_fallback(self, text):
        assert parse_hex_color(text, (0.1, 0.2, 0.3, 1.0)) == (0.1, 0.2, 0.3, 1.0)


class TestLoading:
    def test_extract_ignores_braces_in_strings(self):
        text = 'Plan: {"name": "a}b", "x": {"y": 1}} trailing {"z": 2}'
        assert extract_json_object(text) == '{"name": "a}b", "x": {"y": 1}}'

    def test_extract_escaped_quote(self):
        text = r'{"name": "say \"}\""} done'
        assert extract_json_object(text) == r'{"name": "say \"}\""}'

    def test_extract_failures(self):
        with pytest.raises(ValueError):
            extract_json_object("no json here")
        with pytest.raises(ValueError):
            extract_json_object('{"open": 1')

    def test_load_with_prose(self):
        plan = load_world_plan('Sure thing!\n```json\n{"name": "Dunes", "seed": 7}\n```')
        assert plan.name == "Dunes"
        assert plan.seed == 7

    def test_load_avatar_plain_json(self):
        spec = load_avatar_spec('{"name": "Ivy", "tags": ["navi"]}')
        assert spec.tags == ["navi"]

    def test_wrong_shape_raises(self):
        with pytest.raises(ValidationError):
            load_avatar_spec('{"parts": "not a list"}')
