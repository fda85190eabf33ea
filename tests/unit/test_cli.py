"""
Tests for the sheetphrase command line.
"""

import json

import pytest

from sheetphrase.cli.main import build_parser, main


@pytest.fixture
def props_file(tmp_path):
    path = tmp_path / "props.yaml"
    path.write_text("str: 16\nlevel: 3\nweapons:\n  '0': {name: Dagger, bonus: 2}\n")
    return path


class TestParser:
    """Sub-commands and options."""

    def test_eval_options(self):
        args = build_parser().parse_args(["eval", "${1}$", "--static", "--reference", "weapons.0"])
        assert args.command == "eval"
        assert args.static is True
        assert args.reference == "weapons.0"

    def test_no_command_prints_help(self, capsys):
        main([])
        assert "compute-props" in capsys.readouterr().out


class TestEval:
    """eval PHRASE"""

    def test_plain(self, capsys):
        main(["eval", "You gain ${2+3}$ points", "--no-input"])
        assert capsys.readouterr().out.strip() == "You gain 5 points"

    def test_with_props(self, capsys, props_file):
        main(["eval", "Attack ${str + level}$", "--props", str(props_file), "--static"])
        assert capsys.readouterr().out.strip() == "Attack 19"

    def test_reference(self, capsys, props_file):
        main([
            "eval", "${sameRow('name')}$", "--props", str(props_file),
            "--reference", "weapons.0", "--static"
        ])
        assert capsys.readouterr().out.strip() == "Dagger"

    def test_default(self, capsys):
        main(["eval", "${missing + 1}$", "--default", "4", "--static"])
        assert capsys.readouterr().out.strip() == "5"

    def test_json(self, capsys):
        main(["eval", "${1 + 1}$", "--json", "--static"])
        data = json.loads(capsys.readouterr().out)
        assert data["result"] == "2"
        assert data["values"]["form0"]["result"] == 2

    def test_uncomputable_exits(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["eval", "${missing}$", "--static"])
        assert exc_info.value.code == 2
        assert "Uncomputable" in capsys.readouterr().err

    def test_entity(self, capsys, tmp_path):
        path = tmp_path / "entities.yaml"
        path.write_text("entities:\n  - name: Aria\n    props: {str: 12}\n")
        main(["eval", "${str}$", "--entities", str(path), "--entity", "Aria", "--static"])
        assert capsys.readouterr().out.strip() == "12"

    def test_unknown_entity(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["eval", "${str}$", "--entity", "Nobody"])
        assert exc_info.value.code == 1


class TestComputeProps:
    """compute-props FILE"""

    def test_converges(self, capsys, tmp_path):
        path = tmp_path / "sheet.yaml"
        path.write_text(
            "props:\n"
            "  str: 16\n"
            "computed:\n"
            "  mod: '${floor((str - 10) / 2)}$'\n"
            "  attack: '${mod + 2}$'\n"
        )
        with pytest.raises(SystemExit) as exc_info:
            main(["compute-props", str(path), "--json"])
        assert exc_info.value.code == 0

        data = json.loads(capsys.readouterr().out)
        assert data["props"]["mod"] == "3"
        assert data["props"]["attack"] == "5"
        assert data["uncomputed"] == {}

    def test_stuck(self, capsys, tmp_path):
        path = tmp_path / "sheet.yaml"
        path.write_text("computed:\n  a: '${b}$'\n  b: '${a}$'\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["compute-props", str(path)])
        assert exc_info.value.code == 1
        assert "not computed: a" in capsys.readouterr().out

    def test_missing_file(self, capsys, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["compute-props", str(tmp_path / "none.yaml")])
        assert exc_info.value.code == 1
        assert "File not found" in capsys.readouterr().err


class TestRoll:
    """roll EXPR"""

    def test_seeded_roll_repeats(self, capsys):
        main(["roll", "3d6+1", "--seed", "5", "--json"])
        first = json.loads(capsys.readouterr().out)
        main(["roll", "3d6+1", "--seed", "5", "--json"])
        second = json.loads(capsys.readouterr().out)
        assert first == second
        assert first["formula"] == "3d6 + 1"

    def test_plain_output(self, capsys):
        main(["roll", "5"])
        assert capsys.readouterr().out.strip() == "5 = 5"

    def test_invalid(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["roll", "1d0"])
        assert exc_info.value.code == 1
