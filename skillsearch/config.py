"""Configuration — data directory, tunables and the registry table.

Registries default to the four public skill repositories below. A YAML
file (``<data_dir>/registries.yaml`` or ``--config``) replaces them::

    registries:
      - id: anthropic
        url: https://github.com/anthropics/skills.git
        subpath: skills
        trust: official
        branch: main
      - id: clawdhub
        url: https://github.com/openclaw/skills.git
        subpath: skills
        trust: community
        stars_api: https://clawhub.com/api/v1/skills
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from skillsearch.errors import ConfigurationError
from skillsearch.registry.models import Registry, TrustLevel

HOME_ENV = "SKILLSEARCH_HOME"

CLAWHUB_STARS_API = "https://clawhub.com/api/v1/skills"

DEFAULT_REGISTRIES: tuple[Registry, ...] = (
    Registry(
        id="clawdhub",
        remote_location="https://github.com/openclaw/skills.git",
        subpath="skills",
        trust_level=TrustLevel.COMMUNITY,
        stars_api=CLAWHUB_STARS_API,
    ),
    Registry(
        id="anthropic",
        remote_location="https://github.com/anthropics/skills.git",
        subpath="skills",
        trust_level=TrustLevel.OFFICIAL,
    ),
    Registry(
        id="openai",
        remote_location="https://github.com/openai/skills.git",
        subpath="skills/.curated",
        trust_level=TrustLevel.OFFICIAL,
    ),
    Registry(
        id="openai-experimental",
        remote_location="https://github.com/openai/skills.git",
        subpath="skills/.experimental",
        trust_level=TrustLevel.EXPERIMENTAL,
    ),
)


def default_data_dir() -> Path:
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".local" / "share" / "skill-search"


@dataclass
class Settings:
    """Resolved runtime configuration, passed explicitly to each component."""

    data_dir: Path
    registries: list[Registry] = field(default_factory=lambda: list(DEFAULT_REGISTRIES))
    max_workers: int = 4
    git_timeout: float = 120.0  # Seconds per clone/fetch attempt
    git_retries: int = 3
    retry_backoff: float = 1.0  # Seconds; doubles per attempt
    http_timeout: float = 15.0
    stars_ttl: float = 6 * 3600.0

    @property
    def db_path(self) -> Path:
        return self.data_dir / "skills.db"

    @property
    def index_dir(self) -> Path:
        return self.data_dir / "index"

    @property
    def mirrors_dir(self) -> Path:
        return self.data_dir / "repos"

    @property
    def quality_path(self) -> Path:
        return self.data_dir / "quality.json"

    @property
    def registries_by_id(self) -> dict[str, Registry]:
        return {r.id: r for r in self.registries}

    @classmethod
    def load(cls, data_dir: str | Path | None = None, config_path: str | Path | None = None) -> "Settings":
        """Build settings from explicit arguments, then environment, then defaults."""
        root = Path(data_dir).expanduser() if data_dir else default_data_dir()

        registries = list(DEFAULT_REGISTRIES)
        if config_path is not None:
            registries = load_registries(config_path)
        elif (root / "registries.yaml").exists():
            registries = load_registries(root / "registries.yaml")

        return cls(
            data_dir=root,
            registries=registries,
            max_workers=_env_int("SKILLSEARCH_WORKERS", 4),
            git_timeout=_env_float("SKILLSEARCH_GIT_TIMEOUT", 120.0),
            http_timeout=_env_float("SKILLSEARCH_HTTP_TIMEOUT", 15.0),
            stars_ttl=_env_float("SKILLSEARCH_STARS_TTL", 6 * 3600.0),
        )


def load_registries(path: str | Path) -> list[Registry]:
    """Load a registry table from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read registry config {path}: {e}") from e

    entries = data.get("registries") if isinstance(data, dict) else None
    if not isinstance(entries, list) or not entries:
        raise ConfigurationError(f"{path}: expected a non-empty 'registries' list")

    registries: list[Registry] = []
    seen: set[str] = set()
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigurationError(f"{path}: registry #{i + 1} must be a mapping")
        reg_id = str(entry.get("id", "")).strip()
        url = str(entry.get("url", "")).strip()
        if not reg_id or not url:
            raise ConfigurationError(f"{path}: registry #{i + 1} needs 'id' and 'url'")
        if ":" in reg_id:
            raise ConfigurationError(f"{path}: registry id {reg_id!r} may not contain ':'")
        if reg_id in seen:
            raise ConfigurationError(f"{path}: duplicate registry id {reg_id!r}")
        seen.add(reg_id)

        try:
            trust = TrustLevel(str(entry.get("trust", "community")).lower())
        except ValueError:
            choices = ", ".join(t.value for t in TrustLevel)
            raise ConfigurationError(
                f"{path}: registry {reg_id!r} has unknown trust {entry.get('trust')!r} "
                f"(expected one of: {choices})"
            )

        registries.append(
            Registry(
                id=reg_id,
                remote_location=url,
                subpath=str(entry.get("subpath", "") or "").strip("/"),
                trust_level=trust,
                branch=str(entry.get("branch", "main")),
                stars_api=str(entry.get("stars_api", "") or ""),
            )
        )
    return registries


def _env_int(name: str, default: int) -> int:
    try:
        return max(1, int(os.environ.get(name, default)))
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer")


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        raise ConfigurationError(f"{name} must be a number")
