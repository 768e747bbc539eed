"""Command line entry points."""

import json

from click.testing import CliRunner

from worldbuilder.cli import cli


class TestInspectStl:
    def test_binary(self, tmp_path, box_stl):
        path = tmp_path / "box.stl"
        path.write_bytes(box_stl)
        result = CliRunner().invoke(cli, ["inspect-stl", str(path)])
        assert result.exit_code == 0, result.output
        assert "format:     binary" in result.output
        assert "triangles:  12" in result.output
        assert "vertices:   36" in result.output

    def test_decode_error(self, tmp_path):
        path = tmp_path / "tiny.stl"
        path.write_bytes(b"solid")
        result = CliRunner().invoke(cli, ["inspect-stl", str(path)])
        assert result.exit_code != 0
        assert "too_small" in result.output


class TestWorldCommand:
    def test_exports_glb(self, tmp_path):
        plan = tmp_path / "plan.json"
        plan.write_text(json.dumps({
            "name": "Glade", "seed": 4, "ground": {"size": 40, "grid": 16},
            "objects": [{"id": "t", "prefab": "tree", "position": [2, 0, 3]}],
        }))
        output = tmp_path / "glade.glb"
        result = CliRunner().invoke(cli, ["world", str(plan), "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert output.exists()
        assert "World 'Glade' (done): 1 objects" in result.output

    def test_invalid_plan(self, tmp_path):
        plan = tmp_path / "plan.json"
        plan.write_text("nothing to see")
        result = CliRunner().invoke(cli, ["world", str(plan), "-o", str(tmp_path / "x.glb")])
        assert result.exit_code != 0


class TestAvatarCommand:
    def test_procedural_avatar(self, tmp_path):
        spec = tmp_path / "avatar.json"
        spec.write_text(json.dumps({"name": "Rook", "tags": ["knight"]}))
        output = tmp_path / "rook.glb"
        result = CliRunner().invoke(cli, ["avatar", str(spec), "-o", str(output)])
        assert result.exit_code == 0, result.output
        assert output.exists()
        assert "knight; shoulder armor" in result.output
