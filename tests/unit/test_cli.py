"""Tests for the click command line."""

import json
import os

import pytest
from click.testing import CliRunner
from conftest import FakeToolManager, StaticScope, make_install_tree

from mise_s3_cache.app.cli import main


@pytest.fixture
def tool_manager(tmp_path):
    return FakeToolManager(tmp_path / "mise" / "installs")


@pytest.fixture
def env(monkeypatch, tmp_path):
    """Isolated HOME and working directory with a configured bucket."""
    home = tmp_path / "home"
    project = tmp_path / "project"
    home.mkdir()
    project.mkdir()
    for name in list(os.environ):
        if name.startswith("MISE_S3_CACHE_") or name in ("AWS_PROFILE", "AWS_ENDPOINT_URL"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(project)
    monkeypatch.setenv("MISE_S3_CACHE_BUCKET", "mise-test-cache")
    return monkeypatch


@pytest.fixture
def wired(env, make_service, tool_manager):
    """Route create_service to in-memory storage; keep bucket/enabled from the environment."""
    created = []

    def fake_create_service(config, log_level="INFO", project_dir=None):
        service = make_service(
            scope=StaticScope(("go", "1.21.0"), ("node", "20.11.1")),
            tool_manager=tool_manager,
            bucket=config.bucket,
            enabled=config.enabled,
        )
        created.append((service, log_level))
        return service

    env.setattr(main, "create_service", fake_create_service)
    return created


@pytest.fixture
def runner():
    return CliRunner()


def _seed(service_factory, tool_manager, tool="go", version="1.21.0"):
    source = make_install_tree(tool_manager.install_path(tool, version), tool)
    service_factory().store(tool, version, source)
    return source


class TestCheck:
    def test_miss_then_hit(self, runner, wired, make_service, tool_manager):
        result = runner.invoke(main.cli, ["check", "go", "1.21.0"])
        assert result.exit_code == 1
        assert "go@1.21.0 is not cached" in result.output

        _seed(make_service, tool_manager)
        result = runner.invoke(main.cli, ["check", "go", "1.21.0"])
        assert result.exit_code == 0
        assert "go@1.21.0 is cached" in result.output

    def test_hook_mode_is_silent(self, runner, wired):
        result = runner.invoke(main.cli, ["check", "go", "1.21.0", "--hook-mode"])
        assert result.exit_code == 1
        assert result.output == ""
        assert wired[0][1] == "ERROR"

    def test_verbose_hook_mode_logs_warnings(self, runner, wired):
        runner.invoke(main.cli, ["-v", "check", "go", "1.21.0", "--hook-mode"])
        assert wired[0][1] == "WARNING"

    def test_invalid_tool_name(self, runner, wired, storage):
        result = runner.invoke(main.cli, ["check", "go;ls", "1.0"])
        assert result.exit_code == 1
        assert "Invalid tool name" in result.output
        assert storage.calls == []

    def test_tool_and_version_required(self, runner, wired):
        result = runner.invoke(main.cli, ["check", "go"])
        assert result.exit_code == 2

    @pytest.mark.parametrize(
        "args, code",
        [
            (["check", "go", "--hook-mode"], 1),
            (["restore", "--hook-mode"], 1),
            (["store", "--hook-mode"], 0),
            (["store", "go", "--hook-mode", "--ci-mode"], 1),
        ],
    )
    def test_missing_arguments_in_hook_mode(self, runner, wired, storage, args, code):
        result = runner.invoke(main.cli, args)
        assert result.exit_code == code
        assert result.output == ""
        assert storage.calls == []

    def test_all(self, runner, wired, make_service, tool_manager):
        _seed(make_service, tool_manager)
        result = runner.invoke(main.cli, ["check", "--all"])
        assert result.exit_code == 1
        assert "cached   go@1.21.0" in result.output
        assert "missing  node@20.11.1" in result.output


class TestRestore:
    def test_hit_into_path(self, runner, wired, make_service, tool_manager, tmp_path):
        _seed(make_service, tool_manager)
        dest = tmp_path / "restored"

        result = runner.invoke(main.cli, ["restore", "go", "1.21.0", "-p", str(dest)])

        assert result.exit_code == 0
        assert (dest / "bin" / "go").exists()

    def test_defaults_to_install_path(self, runner, wired, make_service, tool_manager):
        source = _seed(make_service, tool_manager)
        (source / "bin" / "go").unlink()

        result = runner.invoke(main.cli, ["restore", "go", "1.21.0"])

        assert result.exit_code == 0
        assert (source / "bin" / "go").exists()

    def test_miss(self, runner, wired, tmp_path):
        result = runner.invoke(main.cli, ["restore", "go", "1.21.0", "-p", str(tmp_path / "d")])
        assert result.exit_code == 1
        assert "Cache miss" in result.output

    def test_miss_in_hook_mode(self, runner, wired, tmp_path):
        result = runner.invoke(
            main.cli, ["restore", "go", "1.21.0", "-p", str(tmp_path / "d"), "--hook-mode"]
        )
        assert result.exit_code == 1
        assert result.output == ""

    def test_all_selective(self, runner, wired, make_service, tool_manager):
        _seed(make_service, tool_manager)
        result = runner.invoke(main.cli, ["restore", "--all", "--selective"])
        assert result.exit_code == 0
        assert "Restored 1 of 1 tools from cache" in result.output


class TestStore:
    def test_stores_install(self, runner, wired, storage, tool_manager):
        make_install_tree(tool_manager.install_path("go", "1.21.0"))
        result = runner.invoke(main.cli, ["store", "go", "1.21.0"])
        assert result.exit_code == 0
        assert result.output.startswith("stored")
        assert len(storage.calls_for("put")) == 3

    def test_failure_only_fails_in_ci_mode(self, runner, wired, tmp_path):
        missing = str(tmp_path / "nowhere")
        assert runner.invoke(main.cli, ["store", "go", "1.21.0", "-p", missing]).exit_code == 0
        result = runner.invoke(main.cli, ["store", "go", "1.21.0", "-p", missing, "--ci-mode"])
        assert result.exit_code == 1

    def test_unavailable_cache(self, runner, wired, env):
        env.delenv("MISE_S3_CACHE_BUCKET")
        assert runner.invoke(main.cli, ["store", "go", "1.21.0", "--hook-mode"]).exit_code == 0
        result = runner.invoke(main.cli, ["store", "go", "1.21.0", "--ci-mode"])
        assert result.exit_code == 1
        assert "S3 bucket not configured" in result.output

    def test_all(self, runner, wired, tool_manager):
        make_install_tree(tool_manager.install_path("node", "20.11.1"), "node")
        result = runner.invoke(main.cli, ["store", "--all"])
        assert result.exit_code == 0
        assert "node@20.11.1" in result.output
        assert "go@1.21.0" not in result.output

    def test_broken_config_file(self, runner, wired, tmp_path):
        missing = str(tmp_path / "missing.toml")
        result = runner.invoke(main.cli, ["--config", missing, "store", "go", "1.21.0"])
        assert result.exit_code == 0
        assert "Config file not found" in result.output
        result = runner.invoke(
            main.cli, ["--config", missing, "store", "go", "1.21.0", "--ci-mode"]
        )
        assert result.exit_code == 1


class TestReporting:
    def test_stats(self, runner, wired, make_service, tool_manager, tmp_path):
        _seed(make_service, tool_manager)
        runner.invoke(main.cli, ["restore", "go", "1.21.0", "-p", str(tmp_path / "a")])
        runner.invoke(main.cli, ["restore", "node", "20.11.1", "-p", str(tmp_path / "b")])

        result = runner.invoke(main.cli, ["stats"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["cache_hits"] == 1
        assert data["cache_misses"] == 1
        assert data["hit_rate"] == 0.5
        assert data["tools"]["go"]["1.21.0"]["status"] == "success"

    def test_status(self, runner, wired, make_service, tool_manager):
        _seed(make_service, tool_manager)
        result = runner.invoke(main.cli, ["status"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["available"] is True
        assert data["tool_manager_version"] == "2024.5.0 linux-x64"
        assert data["remote"]["objects"] == 3
        assert data["remote"]["entries"] == 1

    def test_status_quiet(self, runner, wired, env):
        assert runner.invoke(main.cli, ["status", "-q"]).exit_code == 0
        env.setenv("MISE_S3_CACHE_ENABLED", "false")
        result = runner.invoke(main.cli, ["status", "-q"])
        assert result.exit_code == 1
        assert result.output == ""

    def test_analyze(self, runner, wired, make_service, tool_manager):
        _seed(make_service, tool_manager)
        result = runner.invoke(main.cli, ["analyze"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {
            "total": 2,
            "cached": ["go@1.21.0"],
            "missing": ["node@20.11.1"],
            "hit_rate": 0.5,
        }

    def test_connection_test_needs_s3(self, runner, wired):
        result = runner.invoke(main.cli, ["test"])
        assert result.exit_code == 1
        assert "needs the S3 storage backend" in result.output


class TestMaintenance:
    def test_cleanup(self, runner, wired):
        result = runner.invoke(main.cli, ["cleanup", "--days", "7"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["objects_deleted"] == 0
        assert data["errors"] == []

    def test_cleanup_negative_days(self, runner, wired):
        result = runner.invoke(main.cli, ["cleanup", "--days=-1"])
        assert result.exit_code == 1

    def test_cleanup_temp_only(self, runner, wired, make_config):
        temp_dir = make_config().temp_dir
        temp_dir.mkdir(parents=True)
        (temp_dir / "leftover").write_bytes(b"x")
        result = runner.invoke(main.cli, ["cleanup", "--temp-only"])
        assert result.exit_code == 0
        assert json.loads(result.output)["removed"] == [str(temp_dir / "leftover")]

    def test_warm(self, runner, wired, tool_manager):
        result = runner.invoke(main.cli, ["warm"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert sorted(data["installed"]) == ["go@1.21.0", "node@20.11.1"]

    def test_warm_ci_mode_fails_on_install_error(self, runner, wired, tool_manager):
        tool_manager.failing = {"node"}
        result = runner.invoke(main.cli, ["warm", "--ci-mode"])
        assert result.exit_code == 1
        assert "node@20.11.1" in json.loads(result.output)["failed"]
        assert runner.invoke(main.cli, ["warm", "--hook-mode"]).exit_code == 0

    @pytest.fixture
    def spawned(self, env):
        calls = []

        class FakeProcess:
            pid = 4242

            def __init__(self, args, **kwargs):
                calls.append((args, kwargs))

        env.setattr(main.subprocess, "Popen", FakeProcess)
        return calls

    def test_warm_background_detaches(self, runner, wired, tool_manager, spawned):
        result = runner.invoke(main.cli, ["-v", "warm", "--background", "-p", "2"])

        assert result.exit_code == 0
        assert "started in background (pid 4242)" in result.output
        assert tool_manager.installed == []
        args, kwargs = spawned[0]
        assert args[1:] == [
            "-m", "mise_s3_cache.app.cli.main", "-v", "warm", "--hook-mode", "--parallel", "2"
        ]
        assert kwargs["start_new_session"] is True

    def test_ci_mode_overrides_background(self, runner, wired, tool_manager, spawned):
        result = runner.invoke(main.cli, ["warm", "--background", "--ci-mode"])
        assert result.exit_code == 0
        assert spawned == []
        assert sorted(tool_manager.installed) == ["go@1.21.0", "node@20.11.1"]
