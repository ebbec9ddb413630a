"""
End-to-end tests of the demo-provision command line.
"""

from __future__ import annotations

import json

import pytest

import demo_provisioner.lib.fetch as fetch
from demo_provisioner.errors import CommandError
from demo_provisioner.main import main
from demo_provisioner.state_store import load_state


ARTIFACTS = [
    {"name": "vae", "url": "https://example.invalid/vae.safetensors", "destination": "models/vae.safetensors"},
    {
        "name": "upscaler",
        "url": "https://example.invalid/4x.pth",
        "destination": "models/upscale/4x.pth",
        "optional": True,
    },
]


@pytest.fixture
def models_recipe(write_recipe):
    return write_recipe(
        artifacts=ARTIFACTS,
        launcher={"filename": "run_demo.sh", "command": "python main.py"},
    )


@pytest.fixture
def offline(monkeypatch):
    """Every download attempt fails like an unreachable host."""

    calls = []

    def unreachable(argv, **kwargs):
        calls.append(list(argv))
        raise CommandError(list(argv), 4, "wget: unable to resolve host address")

    monkeypatch.setattr(fetch, "run_cmd", unreachable)
    return calls


def provisioned(tmp_path):
    for rel in ("models/vae.safetensors", "models/upscale/4x.pth"):
        p = tmp_path / "app" / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"weights")


def test_recipes_lists_bundled(capsys):
    assert main(["recipes"]) == 0
    out = capsys.readouterr().out.split()
    assert "framepack" in out and "wan-models" in out


def test_missing_recipe_is_a_config_error(tmp_path, capsys):
    assert main(["run", str(tmp_path / "missing.yaml")]) == 2
    assert "Recipe not found" in capsys.readouterr().err


def test_unknown_start_step_is_a_config_error(models_recipe):
    assert main(["run", str(models_recipe), "--start-at", "deps:nothing"]) == 2


def test_provisioned_target_is_all_skipped(models_recipe, tmp_path, offline, capsys):
    provisioned(tmp_path)

    assert main(["run", str(models_recipe)]) == 0
    assert main(["run", str(models_recipe)]) == 0

    assert offline == []
    report = json.loads((tmp_path / "state" / "report.json").read_text())
    assert report["status"] == "completed"
    assert {s["status"] for s in report["steps"]} == {"skipped"}
    assert (tmp_path / "app" / "run_demo.sh").exists()
    assert "Launcher:" in capsys.readouterr().out


def test_optional_artifact_failure_still_completes(models_recipe, tmp_path, offline):
    (tmp_path / "app" / "models").mkdir(parents=True)
    (tmp_path / "app" / "models" / "vae.safetensors").write_bytes(b"weights")

    assert main(["run", str(models_recipe)]) == 0

    report = json.loads((tmp_path / "state" / "report.json").read_text())
    assert [(s["step"], s["status"]) for s in report["steps"]] == [
        ("artifact:vae", "skipped"),
        ("artifact:upscaler", "failed"),
    ]
    assert len(offline) == 1


def test_mandatory_artifact_failure_aborts(models_recipe, tmp_path, offline):
    assert main(["run", str(models_recipe)]) == 1

    report = json.loads((tmp_path / "state" / "report.json").read_text())
    assert report["status"] == "aborted"
    assert [s["step"] for s in report["steps"]] == ["artifact:vae"]
    assert not (tmp_path / "app" / "run_demo.sh").exists()

    state = load_state(str(tmp_path / "state" / "state.json"))
    assert state["execution"]["errors"][0]["step"] == "artifact:vae"
    assert state["execution"]["last_run"]["status"] == "aborted"


def test_skip_optional(models_recipe, tmp_path, offline):
    (tmp_path / "app" / "models").mkdir(parents=True)
    (tmp_path / "app" / "models" / "vae.safetensors").write_bytes(b"weights")

    assert main(["run", str(models_recipe), "--skip-optional"]) == 0
    assert offline == []


def test_dry_run_writes_no_state(models_recipe, tmp_path, monkeypatch):
    seen = []
    monkeypatch.setattr(fetch, "run_cmd", lambda argv, **kw: seen.append(kw.get("dry_run")))

    assert main(["run", str(models_recipe), "--dry-run"]) == 0

    assert seen == [True, True]
    assert not (tmp_path / "state" / "state.json").exists()
    assert not (tmp_path / "state" / "report.json").exists()
    assert not (tmp_path / "app" / "run_demo.sh").exists()


def test_plan_prints_decisions(models_recipe, tmp_path, offline, capsys):
    provisioned(tmp_path)
    (tmp_path / "app" / "models" / "upscale" / "4x.pth").unlink()

    assert main(["plan", str(models_recipe)]) == 0

    out = capsys.readouterr().out
    assert "artifact:vae" in out and "-> skip" in out
    assert "artifact:upscaler" in out and "-> proceed" in out
    assert offline == []


def test_target_override(write_recipe, tmp_path, offline):
    recipe = write_recipe(artifacts=ARTIFACTS[:1])
    other = tmp_path / "other"
    (other / "models").mkdir(parents=True)
    (other / "models" / "vae.safetensors").write_bytes(b"weights")

    assert main(["run", str(recipe), "--target", str(other)]) == 0
    assert offline == []
