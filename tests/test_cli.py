"""Tests for the command-line entry points."""

import json
import sys

import cli


def test_polygon_command_writes_geojson(tmp_path, monkeypatch) -> None:
    output = tmp_path / "polygon.geojson"
    monkeypatch.setattr(sys, "argv", [
        "cli.py", "polygon", "--lat", "-36.8", "--lon", "174.7",
        "--wind-dir", "90", "--wind-speed", "3", "-o", str(output),
    ])

    assert cli.main() == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    assert data["features"][0]["geometry"]["type"] == "Polygon"


def test_polygon_command_rejects_bad_input(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", [
        "cli.py", "polygon", "--lat", "120", "--lon", "174.7",
        "--wind-dir", "90", "--wind-speed", "3",
    ])

    assert cli.main() == 1


def test_simulate_command(tmp_path, monkeypatch) -> None:
    output = tmp_path / "simulated.geojson"
    monkeypatch.setattr(sys, "argv", [
        "cli.py", "simulate", "--steps", "4", "--step-interval", "0.01",
        "--interval", "0.05", "--seed", "3", "--polygons", "-o", str(output),
    ])

    assert cli.main() == 0
    data = json.loads(output.read_text(encoding="utf-8"))
    kinds = [f["properties"]["kind"] for f in data["features"]]
    assert kinds.count("detection") == 4
    assert "coverage" in kinds


def test_missing_command_prints_help(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["cli.py"])

    assert cli.main() == 1
