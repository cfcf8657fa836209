"""CLI commands via typer's CliRunner, against the sandbox backend."""

import json

import pytest
from typer.testing import CliRunner

from hostplane.cli.app import app
from hostplane.engine.generations import GenerationStore

from conftest import NEXT_DESCRIPTOR


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env(tmp_path):
    return {
        "HOSTPLANE_STATE_ROOT": str(tmp_path / "state"),
        "HOSTPLANE_BACKEND": "sandbox",
        "HOSTPLANE_SANDBOX_FILE": str(tmp_path / "sandbox.json"),
        "HOSTPLANE_HOSTNAME": "workstation",
        "HOSTPLANE_ARCHITECTURE": "x86_64",
    }


def test_apply_then_diff_is_clean(runner, env, write_descriptor):
    path = str(write_descriptor())

    result = runner.invoke(app, ["apply", path], env=env)
    assert result.exit_code == 0, result.output
    assert "generación 1" in result.output

    result = runner.invoke(app, ["diff", path], env=env)
    assert result.exit_code == 0
    assert "Sin cambios" in result.output

    result = runner.invoke(app, ["apply", path], env=env)
    assert result.exit_code == 0
    assert "Sin cambios" in result.output


def test_diff_lists_actions_without_applying(runner, env, write_descriptor, tmp_path):
    result = runner.invoke(app, ["diff", str(write_descriptor())], env=env)
    assert result.exit_code == 0
    assert "enable-service" in result.output
    assert not (tmp_path / "sandbox.json").exists()


def test_failed_action_reports_applied_and_pending(runner, env, write_descriptor, tmp_path):
    (tmp_path / "sandbox.json").write_text(json.dumps({"fail_on": ["package:git"]}))

    result = runner.invoke(app, ["apply", str(write_descriptor())], env=env)

    assert result.exit_code == 4
    assert "applied" in result.output
    assert "pending" in result.output
    assert "failed" in result.output

    result = runner.invoke(app, ["failures"], env=env)
    assert result.exit_code == 0
    assert "Intentos fallidos" in result.output


@pytest.mark.parametrize(
    "text, code",
    [
        ("services: [\n", 2),
        ("services:\n  - name: a\n    ports: [80]\n  - name: b\n    ports: [80]\n", 3),
    ],
)
def test_descriptor_errors_map_to_exit_codes(runner, env, write_descriptor, text, code):
    result = runner.invoke(app, ["apply", str(write_descriptor(text))], env=env)
    assert result.exit_code == code


def test_missing_descriptor_is_config_error(runner, env, tmp_path):
    result = runner.invoke(app, ["apply", str(tmp_path / "missing.yaml")], env=env)
    assert result.exit_code == 7


def test_wrong_host_is_rejected(runner, env, write_descriptor):
    env["HOSTPLANE_HOSTNAME"] = "laptop"
    result = runner.invoke(app, ["apply", str(write_descriptor())], env=env)
    assert result.exit_code == 3


def test_lock_contention(runner, env, write_descriptor, tmp_path):
    store = GenerationStore(tmp_path / "state")
    with store.lock():
        result = runner.invoke(app, ["apply", str(write_descriptor())], env=env)
    assert result.exit_code == 5


def test_history_show_rollback_and_gc(runner, env, write_descriptor):
    runner.invoke(app, ["apply", str(write_descriptor())], env=env)
    runner.invoke(app, ["apply", str(write_descriptor(NEXT_DESCRIPTOR, name="next.yaml"))], env=env)

    result = runner.invoke(app, ["list-generations"], env=env)
    assert result.exit_code == 0
    assert "Generaciones" in result.output

    result = runner.invoke(app, ["show", "2"], env=env)
    assert result.exit_code == 0
    assert "Generación 2" in result.output

    result = runner.invoke(app, ["rollback", "1"], env=env)
    assert result.exit_code == 0, result.output
    assert "generación 3" in result.output

    result = runner.invoke(app, ["rollback", "99"], env=env)
    assert result.exit_code == 8

    result = runner.invoke(app, ["gc", "--keep", "1"], env=env)
    assert result.exit_code == 0
    assert "1, 2" in result.output


def test_state_root_option_overrides_environment(runner, env, write_descriptor, tmp_path):
    other = tmp_path / "other-state"
    result = runner.invoke(app, ["--state-root", str(other), "apply", str(write_descriptor())], env=env)
    assert result.exit_code == 0
    assert (other / "generations" / "gen-1.json").exists()


def test_invalid_setting_is_config_error(runner, env):
    env["HOSTPLANE_BACKEND"] = "docker"
    result = runner.invoke(app, ["list-generations"], env=env)
    assert result.exit_code == 7


def test_validate_and_version(runner, env, write_descriptor):
    result = runner.invoke(app, ["validate", str(write_descriptor())], env=env)
    assert result.exit_code == 0
    assert "Descriptor válido" in result.output

    result = runner.invoke(app, ["version"], env=env)
    assert result.exit_code == 0
    assert "hostplane" in result.output
