"""Tests for settings and registry configuration."""

import tempfile
from pathlib import Path

import pytest
import yaml

from skillsearch.config import DEFAULT_REGISTRIES, Settings, load_registries
from skillsearch.errors import ConfigurationError
from skillsearch.registry.models import TrustLevel


def _write_config(tmpdir: str, registries) -> Path:
    path = Path(tmpdir) / "registries.yaml"
    with open(path, "w") as f:
        yaml.dump({"registries": registries}, f)
    return path


def test_default_registries():
    ids = [r.id for r in DEFAULT_REGISTRIES]
    assert ids == ["clawdhub", "anthropic", "openai", "openai-experimental"]
    trusted = {r.id for r in DEFAULT_REGISTRIES if r.trusted}
    assert trusted == {"anthropic", "openai"}
    assert DEFAULT_REGISTRIES[0].stars_api


def test_settings_paths(monkeypatch):
    monkeypatch.delenv("SKILLSEARCH_WORKERS", raising=False)
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = Settings.load(data_dir=tmpdir)
        assert settings.data_dir == Path(tmpdir)
        assert settings.db_path == Path(tmpdir) / "skills.db"
        assert settings.index_dir == Path(tmpdir) / "index"
        assert settings.mirrors_dir == Path(tmpdir) / "repos"
        assert [r.id for r in settings.registries] == [r.id for r in DEFAULT_REGISTRIES]
        assert settings.max_workers == 4


def test_home_env(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("SKILLSEARCH_HOME", tmpdir)
        assert Settings.load().data_dir == Path(tmpdir)


def test_env_tunables(monkeypatch):
    monkeypatch.setenv("SKILLSEARCH_WORKERS", "8")
    monkeypatch.setenv("SKILLSEARCH_GIT_TIMEOUT", "30")
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = Settings.load(data_dir=tmpdir)
        assert settings.max_workers == 8
        assert settings.git_timeout == 30.0

    monkeypatch.setenv("SKILLSEARCH_WORKERS", "lots")
    with pytest.raises(ConfigurationError):
        Settings.load(data_dir="/tmp/unused")


def test_registries_file_in_data_dir_replaces_defaults():
    with tempfile.TemporaryDirectory() as tmpdir:
        _write_config(
            tmpdir,
            [{"id": "internal", "url": "https://git.example.com/skills.git", "trust": "official"}],
        )
        settings = Settings.load(data_dir=tmpdir)
        assert [r.id for r in settings.registries] == ["internal"]
        assert settings.registries_by_id["internal"].trusted


def test_load_registries():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(
            tmpdir,
            [
                {
                    "id": "team",
                    "url": "https://github.com/team/skills.git",
                    "subpath": "/skills/",
                    "trust": "Experimental",
                    "branch": "dev",
                },
                {"id": "hub", "url": "https://github.com/hub/skills", "stars_api": "https://hub/api"},
            ],
        )
        team, hub = load_registries(path)

        assert team.subpath == "skills"
        assert team.trust_level == TrustLevel.EXPERIMENTAL
        assert team.branch == "dev"
        assert hub.trust_level == TrustLevel.COMMUNITY
        assert hub.branch == "main"
        assert hub.stars_api == "https://hub/api"


@pytest.mark.parametrize(
    "registries",
    [
        [],
        [{"id": "no-url"}],
        [{"id": "a:b", "url": "x"}],
        [{"id": "dup", "url": "x"}, {"id": "dup", "url": "y"}],
        [{"id": "odd", "url": "x", "trust": "blessed"}],
        ["not-a-mapping"],
    ],
)
def test_invalid_registry_configs(registries):
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write_config(tmpdir, registries)
        with pytest.raises(ConfigurationError):
            load_registries(path)


def test_missing_config_file():
    with pytest.raises(ConfigurationError):
        load_registries("/nonexistent/registries.yaml")
