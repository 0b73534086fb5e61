"""
Tests for the Cloud Tasks MCP setup script
"""

from pathlib import Path

import pytest

import setup_cloud_tasks
from cloud_tasks_mcp import RouterConfig


@pytest.fixture
def config():
    return RouterConfig.from_value("us-east1:proj-a,us-central1:proj-b,europe-west1:proj-a")


def test_find_missing_keys(tmp_path, config):
    (tmp_path / "proj-a.json").write_text("{}")
    assert setup_cloud_tasks.find_missing_keys(config, tmp_path) == ["proj-b"]


def test_check_credentials_passes_with_partial_keys(tmp_path, config, capsys):
    (tmp_path / "proj-b.json").write_text("{}")
    assert setup_cloud_tasks.check_credentials(config, tmp_path) is True
    assert "No key for project proj-a" in capsys.readouterr().out


def test_check_credentials_fails_without_any_key(tmp_path, config):
    keys_dir = tmp_path / "keys"
    assert setup_cloud_tasks.check_credentials(config, keys_dir) is False
    assert keys_dir.is_dir()


def test_check_credentials_fails_without_configuration(tmp_path):
    assert setup_cloud_tasks.check_credentials(RouterConfig(), tmp_path) is False


def test_build_server_config(tmp_path):
    server_config = setup_cloud_tasks.build_server_config("us-east1:proj-a", tmp_path)
    entry = server_config["cloudtasks"]
    assert Path(entry["args"][0]).name == "cloud_tasks_mcp.py"
    assert entry["env"] == {
        "GOOGLE_CLOUD_LOCATION_PROJECTS": "us-east1:proj-a",
        "CLOUD_TASKS_KEYS_DIR": str(tmp_path),
    }


@pytest.mark.parametrize("system, suffix", [
    ("Darwin", Path("Library") / "Application Support" / "Claude" / "claude_desktop_config.json"),
    ("Linux", Path(".config") / "Claude" / "claude_desktop_config.json"),
])
def test_claude_config_path(monkeypatch, system, suffix):
    monkeypatch.setattr(setup_cloud_tasks.platform, "system", lambda: system)
    assert setup_cloud_tasks.get_claude_config_path() == Path.home() / suffix


def test_claude_config_path_unknown_system(monkeypatch):
    monkeypatch.setattr(setup_cloud_tasks.platform, "system", lambda: "Plan9")
    assert setup_cloud_tasks.get_claude_config_path() is None


def test_every_color_code_is_used():
    source = Path(setup_cloud_tasks.__file__).read_text()
    codes = [name for name in vars(setup_cloud_tasks.Colors) if name.isupper()]
    assert all(source.count(f"Colors.{name}") > 0 for name in codes)
