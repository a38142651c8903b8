"""Tests for the scripts/match_clouds.py command line entry point."""

import importlib.util
import sys
from pathlib import Path

import numpy as np
import yaml

sys.path.append(str(Path(__file__).parent.parent / "src"))

from ndt_gridmap.serialization import load

SCRIPT = Path(__file__).parent.parent / "scripts" / "match_clouds.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("match_clouds", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _write_clouds(tmp_path, destination, source):
    np.save(tmp_path / "dst.npy", destination)
    np.save(tmp_path / "src.npy", source)
    return str(tmp_path / "dst.npy"), str(tmp_path / "src.npy")


def test_cli_writes_transform(tmp_path, monkeypatch, capsys):
    axis = np.linspace(-0.4, 0.4, 9)
    xx, yy = np.meshgrid(axis, axis, indexing="ij")
    cluster = np.column_stack([xx.ravel(), yy.ravel()])
    destination = np.vstack([cluster, [[-2.5, -2.5]]])
    dst, src = _write_clouds(tmp_path, destination, cluster + np.array([0.05, 0.1]))
    output = tmp_path / "transform.txt"

    monkeypatch.setattr(
        sys, "argv",
        ["match_clouds.py", "--destination", dst, "--source", src,
         "--resolution", "2.0", "--output", str(output)],
    )
    assert _load_script().main() == 0

    transform = np.loadtxt(output)
    assert transform.shape == (3, 3)
    assert "State:" in capsys.readouterr().out


def test_cli_reports_invalid_input(tmp_path, monkeypatch):
    line = np.column_stack([np.linspace(0.0, 1.0, 10), np.zeros(10)])
    dst, src = _write_clouds(tmp_path, line, line)

    monkeypatch.setattr(sys, "argv", ["match_clouds.py", "--destination", dst, "--source", src])
    assert _load_script().main() == 2


def test_cli_missing_file(tmp_path, monkeypatch):
    monkeypatch.setattr(
        sys, "argv",
        ["match_clouds.py", "--destination", str(tmp_path / "a.npy"), "--source", str(tmp_path / "b.npy")],
    )
    assert _load_script().main() == 1


def test_cli_saves_destination_map_with_configured_layout(tmp_path, monkeypatch):
    axis = np.linspace(-0.4, 0.4, 9)
    xx, yy = np.meshgrid(axis, axis, indexing="ij")
    cluster = np.column_stack([xx.ravel(), yy.ravel()])
    dst, src = _write_clouds(tmp_path, np.vstack([cluster, [[-2.5, -2.5]]]), cluster)
    config = tmp_path / "config.yaml"
    config.write_text("serialization:\n  layout: octant\n")

    for name, extra in (("flat", []), ("octant", ["--config", str(config)])):
        map_dir = tmp_path / name
        monkeypatch.setattr(
            sys, "argv",
            ["match_clouds.py", "--destination", dst, "--source", src,
             "--resolution", "2.0", "--save-map", str(map_dir)] + extra,
        )
        assert _load_script().main() == 0

        meta = yaml.safe_load((map_dir / "map.yaml").read_text())
        assert meta["layout"] == name
        assert meta["kind"] == "static"
        assert load(map_dir).bundle_count == len(meta["bundles"])
