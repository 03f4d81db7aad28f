"""Registry sync manager — mirrors registries and keeps store and index current.

Per registry, in a bounded worker pool:

1. Clone (first run or ``force``) or fetch the mirror.
2. Work out which skill files changed since the stored checkpoint:
   a ``git diff`` between the two revisions when the old one is still
   known, otherwise a reconciliation of every file's content hash against
   the stored hashes.
3. Extract changed files; malformed ones are skipped with a warning.
4. Commit upserts, tombstones and the new checkpoint in one store
   transaction, then apply the same delta to the index.

Step 4 runs under a commit lock shared by all workers, so the persisted
index generation always matches the store state it was built from.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable

from git import GitCommandError
from git.objects import Commit

from skillsearch.errors import (
    ParseError,
    SkillSearchError,
    StoreTransactionError,
    SyncTransportError,
)
from skillsearch.index.engine import IndexEngine
from skillsearch.registry.extractor import content_hash, extract
from skillsearch.registry.models import Registry, Skill, make_doc_id
from skillsearch.registry.store import SkillFingerprint, SkillStore
from skillsearch.sync.git_ops import RegistryMirror
from skillsearch.sync.popularity import PopularityEnricher

logger = logging.getLogger(__name__)


@dataclass
class RegistrySyncResult:
    """Outcome of syncing one registry."""

    registry_id: str
    status: str = "pending"  # ok | failed | cancelled
    error: str = ""
    old_revision: str | None = None
    new_revision: str | None = None
    full_scan: bool = False
    added: int = 0
    updated: int = 0
    removed: int = 0
    unchanged: int = 0
    skipped: int = 0
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def changed(self) -> int:
        return self.added + self.updated + self.removed

    def summary(self) -> str:
        if self.status == "failed":
            return f"{self.registry_id}: FAILED — {self.error}"
        if self.status == "cancelled":
            return f"{self.registry_id}: cancelled"
        rev = (self.new_revision or "")[:12]
        return (
            f"{self.registry_id} @ {rev}: +{self.added} ~{self.updated} -{self.removed}"
            f" ({self.skipped} skipped)"
        )


@dataclass
class SyncReport:
    """Aggregate outcome of a sync run."""

    results: list[RegistrySyncResult] = field(default_factory=list)
    stars_updated: int = 0
    enrichment_failures: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> list[RegistrySyncResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[RegistrySyncResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def all_ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def exit_code(self) -> int:
        """0 when at least one registry synced (or there were none), else 1."""
        if not self.results or self.succeeded:
            return 0
        return 1

    def get(self, registry_id: str) -> RegistrySyncResult | None:
        for r in self.results:
            if r.registry_id == registry_id:
                return r
        return None


@dataclass
class _Delta:
    upserts: list[Skill] = field(default_factory=list)
    removals: list[str] = field(default_factory=list)


class RegistrySyncManager:
    """Synchronizes registries into a SkillStore and IndexEngine."""

    def __init__(
        self,
        store: SkillStore,
        index: IndexEngine,
        mirrors_dir: str | Path,
        *,
        max_workers: int = 4,
        git_timeout: float = 120.0,
        git_retries: int = 3,
        retry_backoff: float = 1.0,
        enricher: PopularityEnricher | None = None,
        extractor: Callable[[bytes, str], Skill] = extract,
    ):
        self.store = store
        self.index = index
        self.mirrors_dir = Path(mirrors_dir)
        self.max_workers = max(1, max_workers)
        self.git_timeout = git_timeout
        self.git_retries = git_retries
        self.retry_backoff = retry_backoff
        self.enricher = enricher
        self.extractor = extractor
        self._commit_lock = threading.Lock()
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop starting new registries; in-flight ones finish or roll back."""
        self._cancelled.set()

    def sync(self, registries: list[Registry], force: bool = False) -> SyncReport:
        self._cancelled.clear()
        before = self.store.generation()
        self.store.register(registries)
        generation = self.store.generation()
        if generation != before:
            with self._commit_lock:
                self.index.rebuild((s.to_document() for s in self.store.list_skills()), generation)
        report = SyncReport()
        results: dict[str, RegistrySyncResult] = {}

        workers = min(self.max_workers, len(registries)) or 1
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sync")
        try:
            futures = {pool.submit(self._sync_registry, reg, force): reg for reg in registries}
            for future in as_completed(futures):
                result = future.result()
                results[result.registry_id] = result
        except KeyboardInterrupt:
            self.cancel()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
        finally:
            pool.shutdown(wait=True)

        report.results = [results[reg.id] for reg in registries]

        if self.enricher is not None and not self._cancelled.is_set():
            synced = {r.registry_id for r in report.succeeded}
            self._enrich(synced, report)

        return report

    # ------------------------------------------------------------------
    # One registry
    # ------------------------------------------------------------------

    def _sync_registry(self, registry: Registry, force: bool) -> RegistrySyncResult:
        result = RegistrySyncResult(registry_id=registry.id)
        if self._cancelled.is_set():
            result.status = "cancelled"
            return result

        start = time.monotonic()
        try:
            if force:
                self.store.clear_checkpoint(registry.id)
            checkpoint = self.store.get_checkpoint(registry.id)
            result.old_revision = checkpoint

            mirror = RegistryMirror(
                registry,
                self.mirrors_dir,
                timeout=self.git_timeout,
                retries=self.git_retries,
                backoff=self.retry_backoff,
            )
            new_revision = mirror.update(force=force)
            result.new_revision = new_revision

            if checkpoint == new_revision:
                logger.info("%s is up to date at %s", registry.id, new_revision[:12])
            else:
                delta = self._compute_delta(registry, mirror, checkpoint, new_revision, force, result)
                self._commit(registry, delta, new_revision)
            result.status = "ok"
            logger.info("Synced %s", result.summary())
        except (SkillSearchError, GitCommandError, OSError) as e:
            result.status = "failed"
            result.error = str(e)
            logger.error("Sync of %s failed: %s", registry.id, e)
        except Exception as e:
            result.status = "failed"
            result.error = f"{type(e).__name__}: {e}"
            logger.exception("Sync of %s failed unexpectedly", registry.id)
        finally:
            result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def _compute_delta(
        self,
        registry: Registry,
        mirror: RegistryMirror,
        checkpoint: str | None,
        new_revision: str,
        force: bool,
        result: RegistrySyncResult,
    ) -> _Delta:
        stored = self.store.fingerprints(registry.id)
        new_commit = mirror.resolve(new_revision)
        if new_commit is None:
            raise SkillSearchError(f"{registry.id}: mirror lost revision {new_revision}")

        old_commit = None if force else mirror.resolve(checkpoint)
        if old_commit is None:
            if checkpoint:
                logger.info("%s: checkpoint %s not in mirror, reconciling", registry.id, checkpoint[:12])
            result.full_scan = True
            return self._reconcile(registry, mirror, new_commit, stored, force, result)
        return self._incremental(registry, mirror, old_commit, new_commit, stored, result)

    def _reconcile(
        self,
        registry: Registry,
        mirror: RegistryMirror,
        commit: Commit,
        stored: dict[str, SkillFingerprint],
        force: bool,
        result: RegistrySyncResult,
    ) -> _Delta:
        """Diff every skill file's content hash at ``commit`` against the store."""
        delta = _Delta()
        chosen: dict[str, str] = {}
        for rel_path in mirror.list_skill_files(commit):
            slug = _slug_of(rel_path)
            if slug in chosen:
                self._warn(result, f"{rel_path}: duplicate slug {slug!r}, keeping {chosen[slug]}")
                result.skipped += 1
                continue
            chosen[slug] = rel_path

        for slug, rel_path in chosen.items():
            data = mirror.read_file(commit, rel_path)
            skill = self._materialize(registry, rel_path, data, stored.get(slug), force, result)
            if skill is not None:
                delta.upserts.append(skill)

        delta.removals = sorted(slug for slug in stored if slug not in chosen)
        result.removed = len(delta.removals)
        return delta

    def _incremental(
        self,
        registry: Registry,
        mirror: RegistryMirror,
        old_commit: Commit,
        new_commit: Commit,
        stored: dict[str, SkillFingerprint],
        result: RegistrySyncResult,
    ) -> _Delta:
        """Process only the skill files git reports as changed."""
        delta = _Delta()
        upserted: set[str] = set()
        removed: set[str] = set()

        for change in mirror.changed_files(old_commit, new_commit):
            slug = _slug_of(change.path)
            known = stored.get(slug)
            rel_dir = str(PurePosixPath(change.path).parent)

            if change.status == "D":
                if known is not None and known.relative_path == rel_dir:
                    removed.add(slug)
                continue

            if known is not None and known.relative_path != rel_dir:
                other = f"{known.relative_path}/SKILL.md"
                if known.relative_path < rel_dir and mirror.has_file(new_commit, other):
                    self._warn(result, f"{change.path}: duplicate slug {slug!r}, keeping {other}")
                    result.skipped += 1
                    continue

            data = mirror.read_file(new_commit, change.path)
            skill = self._materialize(registry, change.path, data, known, False, result)
            if skill is not None:
                delta.upserts.append(skill)
            upserted.add(slug)

        orphaned = removed - upserted
        if orphaned:
            # A shadowed copy of a deleted skill takes its place.
            try:
                candidates = mirror.list_skill_files(new_commit)
            except SyncTransportError:
                candidates = []  # subpath removed along with every skill
            for rel_path in candidates:
                slug = _slug_of(rel_path)
                if slug not in orphaned:
                    continue
                orphaned.discard(slug)
                logger.info("%s: %s now provides slug %r", registry.id, rel_path, slug)
                data = mirror.read_file(new_commit, rel_path)
                skill = self._materialize(registry, rel_path, data, stored.get(slug), False, result)
                if skill is not None:
                    delta.upserts.append(skill)
                    upserted.add(slug)

        delta.removals = sorted(removed - upserted)
        result.removed = len(delta.removals)
        return delta

    def _materialize(
        self,
        registry: Registry,
        rel_path: str,
        data: bytes,
        known: SkillFingerprint | None,
        force: bool,
        result: RegistrySyncResult,
    ) -> Skill | None:
        """Extract one file, or None when it is unchanged or malformed."""
        rel_dir = str(PurePosixPath(rel_path).parent)
        if (
            not force
            and known is not None
            and known.content_hash == content_hash(data)
            and known.relative_path == rel_dir
        ):
            result.unchanged += 1
            return None

        try:
            skill = self.extractor(data, rel_path)
        except ParseError as e:
            self._warn(result, f"Skipping {registry.id}/{rel_path}: {e.reason}")
            result.skipped += 1
            return None

        skill.registry_id = registry.id
        skill.trusted = registry.trusted
        skill.star_count = known.star_count if known else 0
        if known is None:
            result.added += 1
        else:
            result.updated += 1
        return skill

    def _commit(self, registry: Registry, delta: _Delta, revision: str) -> None:
        with self._commit_lock:
            generation = self.store.apply_delta(registry.id, delta.upserts, delta.removals, revision)
            if not delta.upserts and not delta.removals:
                return
            self.index.apply(
                [s.to_document() for s in delta.upserts],
                [make_doc_id(registry.id, slug) for slug in delta.removals],
            )
            self._save_index(generation)

    def _save_index(self, generation: int) -> None:
        try:
            self.index.save(generation)
        except OSError as e:
            logger.warning("Could not persist index (it will be rebuilt on next use): %s", e)

    # ------------------------------------------------------------------
    # Popularity
    # ------------------------------------------------------------------

    def _enrich(self, registry_ids: set[str], report: SyncReport) -> None:
        skills = [s for s in self.store.list_skills() if s.registry_id in registry_ids]
        if not skills:
            return
        try:
            outcome = self.enricher.run(skills)
            report.enrichment_failures = outcome.failures
            if not outcome.changed:
                return
            with self._commit_lock:
                generation = self.store.update_stars(
                    [(s.registry_id, s.slug, s.star_count) for s in outcome.changed]
                )
                self.index.apply([s.to_document() for s in outcome.changed], [])
                self._save_index(generation)
            report.stars_updated = len(outcome.changed)
            logger.info("Updated star counts for %d skills", len(outcome.changed))
        except StoreTransactionError as e:
            report.enrichment_failures["store"] = str(e)
            logger.warning("Could not store star counts: %s", e)
        except Exception as e:
            report.enrichment_failures["enrichment"] = f"{type(e).__name__}: {e}"
            logger.exception("Star count enrichment failed")

    @staticmethod
    def _warn(result: RegistrySyncResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)


def _slug_of(rel_path: str) -> str:
    return PurePosixPath(rel_path).parent.name
