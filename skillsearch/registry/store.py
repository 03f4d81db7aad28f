"""Skill store — SQLite-backed source of truth for skills and sync checkpoints.

Storage path: ``<data_dir>/skills.db`` with tables:
- ``registries`` -- configured registries and their last synced revision
- ``skills`` -- one row per live skill, keyed by (registry_id, slug)
- ``popularity_cache`` -- star counts per registry with their fetch time
- ``meta`` -- the ``generation`` counter, bumped by every write to ``skills``

Writes go through a single writer lock and one transaction each, so a
registry's upserts, tombstones and checkpoint land together or not at all.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from skillsearch.errors import StoreTransactionError
from skillsearch.registry.models import Registry, Skill, TrustLevel

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS registries (
    id TEXT PRIMARY KEY,
    remote_location TEXT NOT NULL,
    subpath TEXT NOT NULL DEFAULT '',
    trust_level TEXT NOT NULL,
    branch TEXT NOT NULL DEFAULT 'main',
    stars_api TEXT NOT NULL DEFAULT '',
    last_synced_revision TEXT,
    last_synced_at INTEGER
);

CREATE TABLE IF NOT EXISTS skills (
    registry_id TEXT NOT NULL,
    slug TEXT NOT NULL,
    name TEXT NOT NULL DEFAULT '',
    description TEXT NOT NULL DEFAULT '',
    relative_path TEXT NOT NULL DEFAULT '',
    raw_metadata TEXT NOT NULL DEFAULT '{}',
    compatibility TEXT NOT NULL DEFAULT '',
    content TEXT NOT NULL DEFAULT '',
    full_text TEXT NOT NULL DEFAULT '',
    star_count INTEGER NOT NULL DEFAULT 0,
    trusted INTEGER NOT NULL DEFAULT 0,
    content_hash TEXT NOT NULL DEFAULT '',
    updated_at INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (registry_id, slug)
);

CREATE INDEX IF NOT EXISTS idx_skills_slug ON skills(slug);
CREATE INDEX IF NOT EXISTS idx_skills_stars ON skills(star_count DESC);

CREATE TABLE IF NOT EXISTS popularity_cache (
    registry_id TEXT PRIMARY KEY,
    fetched_at REAL NOT NULL,
    payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

INSERT OR IGNORE INTO meta (key, value) VALUES ('generation', '0');
"""

_SKILL_COLUMNS = (
    "registry_id, slug, name, description, relative_path, raw_metadata, compatibility, "
    "content, full_text, star_count, trusted, content_hash, updated_at"
)


@dataclass(frozen=True)
class SkillFingerprint:
    """What sync needs to know about a stored skill to detect changes."""

    content_hash: str
    relative_path: str
    star_count: int


class SkillStore:
    """Durable record of registries, skills and sync checkpoints."""

    DB_FILE = "skills.db"

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        with closing(self._connect()) as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            with closing(self._connect()) as conn:
                yield conn
        except sqlite3.Error as e:
            raise StoreTransactionError(f"Could not read {self.db_path}: {e}") from e

    @contextmanager
    def _transaction(self, what: str) -> Iterator[sqlite3.Connection]:
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreTransactionError(
                    f"Could not commit {what}: {e}", details={"operation": what}
                ) from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()

    @staticmethod
    def _bump_generation(conn: sqlite3.Connection) -> int:
        conn.execute(
            "UPDATE meta SET value = CAST(CAST(value AS INTEGER) + 1 AS TEXT) "
            "WHERE key = 'generation'"
        )
        return int(conn.execute("SELECT value FROM meta WHERE key = 'generation'").fetchone()[0])

    # ------------------------------------------------------------------
    # Registries and checkpoints
    # ------------------------------------------------------------------

    def register(self, registries: list[Registry]) -> None:
        """Record registry configuration, keeping existing checkpoints.

        A changed trust level is pushed down to the registry's skills.
        Registries no longer configured are dropped with their skills.
        """
        with self._transaction("registry configuration") as conn:
            changed = dropped = 0
            configured = {reg.id for reg in registries}
            for row in conn.execute("SELECT id FROM registries").fetchall():
                if row["id"] in configured:
                    continue
                cur = conn.execute("DELETE FROM skills WHERE registry_id = ?", (row["id"],))
                conn.execute("DELETE FROM popularity_cache WHERE registry_id = ?", (row["id"],))
                conn.execute("DELETE FROM registries WHERE id = ?", (row["id"],))
                logger.info("Dropped unconfigured registry %s (%d skills)", row["id"], cur.rowcount)
                dropped += cur.rowcount
            for reg in registries:
                conn.execute(
                    """
                    INSERT INTO registries (id, remote_location, subpath, trust_level, branch, stars_api)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        remote_location = excluded.remote_location,
                        subpath = excluded.subpath,
                        trust_level = excluded.trust_level,
                        branch = excluded.branch,
                        stars_api = excluded.stars_api
                    """,
                    (
                        reg.id,
                        reg.remote_location,
                        reg.subpath,
                        reg.trust_level.value,
                        reg.branch,
                        reg.stars_api,
                    ),
                )
                cur = conn.execute(
                    "UPDATE skills SET trusted = ? WHERE registry_id = ? AND trusted != ?",
                    (int(reg.trusted), reg.id, int(reg.trusted)),
                )
                changed += cur.rowcount
            if changed:
                logger.info("Trust level changed for %d stored skills", changed)
            if changed or dropped:
                self._bump_generation(conn)

    def get_registry(self, registry_id: str) -> Registry | None:
        with self._read() as conn:
            row = conn.execute("SELECT * FROM registries WHERE id = ?", (registry_id,)).fetchone()
        return _row_to_registry(row) if row else None

    def list_registries(self) -> list[Registry]:
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM registries ORDER BY id").fetchall()
        return [_row_to_registry(r) for r in rows]

    def get_checkpoint(self, registry_id: str) -> str | None:
        with self._read() as conn:
            row = conn.execute(
                "SELECT last_synced_revision FROM registries WHERE id = ?", (registry_id,)
            ).fetchone()
        return row[0] if row else None

    def clear_checkpoint(self, registry_id: str) -> None:
        with self._transaction(f"checkpoint reset for {registry_id}") as conn:
            conn.execute(
                "UPDATE registries SET last_synced_revision = NULL WHERE id = ?", (registry_id,)
            )

    # ------------------------------------------------------------------
    # Sync writes
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        registry_id: str,
        upserts: list[Skill],
        removals: list[str],
        revision: str,
    ) -> int:
        """Commit one registry's changes and its new checkpoint atomically.

        Stored star counts survive upserts; popularity is owned by enrichment.

        Returns:
            The store generation after the commit.
        """
        with self._transaction(f"sync of {registry_id}") as conn:
            for skill in upserts:
                conn.execute(
                    f"""
                    INSERT INTO skills ({_SKILL_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(registry_id, slug) DO UPDATE SET
                        name = excluded.name,
                        description = excluded.description,
                        relative_path = excluded.relative_path,
                        raw_metadata = excluded.raw_metadata,
                        compatibility = excluded.compatibility,
                        content = excluded.content,
                        full_text = excluded.full_text,
                        trusted = excluded.trusted,
                        content_hash = excluded.content_hash,
                        updated_at = excluded.updated_at
                    """,
                    _skill_to_row(skill, registry_id),
                )
            for slug in removals:
                conn.execute(
                    "DELETE FROM skills WHERE registry_id = ? AND slug = ?", (registry_id, slug)
                )
            conn.execute(
                "UPDATE registries SET last_synced_revision = ?, last_synced_at = ? WHERE id = ?",
                (revision, int(time.time()), registry_id),
            )
            if upserts or removals:
                return self._bump_generation(conn)
            return int(conn.execute("SELECT value FROM meta WHERE key = 'generation'").fetchone()[0])

    def update_stars(self, changes: list[tuple[str, str, int]]) -> int:
        """Persist (registry_id, slug, stars) triples. Returns the new generation."""
        with self._transaction("star counts") as conn:
            conn.executemany(
                "UPDATE skills SET star_count = ? WHERE registry_id = ? AND slug = ?",
                [(stars, registry_id, slug) for registry_id, slug, stars in changes],
            )
            if changes:
                return self._bump_generation(conn)
            return int(conn.execute("SELECT value FROM meta WHERE key = 'generation'").fetchone()[0])

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def generation(self) -> int:
        with self._read() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key = 'generation'").fetchone()
        return int(row[0])

    def fingerprints(self, registry_id: str) -> dict[str, SkillFingerprint]:
        with self._read() as conn:
            rows = conn.execute(
                "SELECT slug, content_hash, relative_path, star_count FROM skills WHERE registry_id = ?",
                (registry_id,),
            ).fetchall()
        return {
            r["slug"]: SkillFingerprint(r["content_hash"], r["relative_path"], r["star_count"])
            for r in rows
        }

    def get_skill(self, registry_id: str, slug: str) -> Skill | None:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT {_SKILL_COLUMNS} FROM skills WHERE registry_id = ? AND slug = ?",
                (registry_id, slug),
            ).fetchone()
        return _row_to_skill(row) if row else None

    def find_by_slug(self, slug: str) -> list[Skill]:
        """All skills with this slug, trusted first, then by registry id."""
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT {_SKILL_COLUMNS} FROM skills WHERE slug = ? "
                "ORDER BY trusted DESC, registry_id ASC",
                (slug,),
            ).fetchall()
        return [_row_to_skill(r) for r in rows]

    def list_skills(self, registry_id: str | None = None, trusted_only: bool = False) -> list[Skill]:
        query = f"SELECT {_SKILL_COLUMNS} FROM skills WHERE 1 = 1"
        params: list = []
        if registry_id is not None:
            query += " AND registry_id = ?"
            params.append(registry_id)
        if trusted_only:
            query += " AND trusted = 1"
        query += " ORDER BY registry_id, slug"
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_skill(r) for r in rows]

    def count(self) -> int:
        with self._read() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM skills").fetchone()[0])

    # ------------------------------------------------------------------
    # Popularity cache
    # ------------------------------------------------------------------

    def get_cached_stars(self, registry_id: str, max_age: float) -> dict[str, int] | None:
        """Cached star counts younger than ``max_age`` seconds, or None."""
        with self._read() as conn:
            row = conn.execute(
                "SELECT fetched_at, payload FROM popularity_cache WHERE registry_id = ?",
                (registry_id,),
            ).fetchone()
        if row is None or time.time() - row["fetched_at"] > max_age:
            return None
        return {str(k): int(v) for k, v in json.loads(row["payload"]).items()}

    def put_cached_stars(self, registry_id: str, stars: dict[str, int]) -> None:
        with self._transaction(f"popularity cache for {registry_id}") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO popularity_cache (registry_id, fetched_at, payload) "
                "VALUES (?, ?, ?)",
                (registry_id, time.time(), json.dumps(stars, sort_keys=True)),
            )


def _skill_to_row(skill: Skill, registry_id: str) -> tuple:
    return (
        registry_id,
        skill.slug,
        skill.name,
        skill.description,
        skill.relative_path,
        json.dumps(skill.raw_metadata, sort_keys=True),
        skill.compatibility,
        skill.content,
        skill.full_text,
        skill.star_count,
        int(skill.trusted),
        skill.content_hash,
        skill.updated_at,
    )


def _row_to_skill(row: sqlite3.Row) -> Skill:
    return Skill(
        slug=row["slug"],
        name=row["name"],
        description=row["description"],
        registry_id=row["registry_id"],
        relative_path=row["relative_path"],
        raw_metadata=json.loads(row["raw_metadata"] or "{}"),
        compatibility=row["compatibility"],
        content=row["content"],
        full_text=row["full_text"],
        star_count=row["star_count"],
        trusted=bool(row["trusted"]),
        content_hash=row["content_hash"],
        updated_at=row["updated_at"],
    )


def _row_to_registry(row: sqlite3.Row) -> Registry:
    return Registry(
        id=row["id"],
        remote_location=row["remote_location"],
        subpath=row["subpath"],
        trust_level=TrustLevel(row["trust_level"]),
        branch=row["branch"],
        stars_api=row["stars_api"],
        last_synced_revision=row["last_synced_revision"],
    )
