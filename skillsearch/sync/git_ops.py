"""Git operations — keep a local mirror of a registry and read skill files from it.

Mirrors are shallow, single-branch clones under ``<data_dir>/repos/<id>``.
Files are read from commit trees rather than the working tree, so a delta
is always computed between two exact revisions.
"""

from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, TypeVar

from git import Git, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName, BadObject
from git.objects import Commit

from skillsearch.errors import SyncTransportError
from skillsearch.registry.extractor import SKILL_FILENAME
from skillsearch.registry.models import Registry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Never block on a credential prompt
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

# <subpath>/<slug>/SKILL.md or <subpath>/<owner>/<slug>/SKILL.md
_MIN_PARTS, _MAX_PARTS = 2, 3


@dataclass
class FileChange:
    """A changed skill file between two revisions."""

    path: str  # Relative to the registry subpath
    status: str  # A(dded), M(odified), D(eleted)


class RegistryMirror:
    """Local mirror of one registry's repository."""

    def __init__(
        self,
        registry: Registry,
        mirrors_dir: str | Path,
        timeout: float = 120.0,
        retries: int = 3,
        backoff: float = 1.0,
    ):
        self.registry = registry
        self.path = Path(mirrors_dir) / registry.id
        self.timeout = timeout
        self.retries = max(1, retries)
        self.backoff = backoff

    def exists(self) -> bool:
        return (self.path / ".git").is_dir()

    def discard(self) -> None:
        if self.path.exists():
            shutil.rmtree(self.path)

    def update(self, force: bool = False) -> str:
        """Bring the mirror to the remote branch tip.

        Returns:
            The new head revision (commit SHA).

        Raises:
            SyncTransportError: If clone or fetch keeps failing.
        """
        if force:
            self.discard()

        if self.exists():
            try:
                return self._fetch()
            except (InvalidGitRepositoryError, NoSuchPathError):
                logger.warning("Mirror for %s is damaged, cloning again", self.registry.id)
                self.discard()

        return self._clone()

    def _clone(self) -> str:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        partial = self.path.with_name(self.path.name + ".partial")
        reg = self.registry

        def clone() -> None:
            if partial.exists():
                shutil.rmtree(partial)
            Git().clone(
                reg.remote_location,
                str(partial),
                depth=1,
                branch=reg.branch,
                single_branch=True,
                kill_after_timeout=self.timeout,
                env=_GIT_ENV,
            )

        logger.info("Cloning %s from %s", reg.id, reg.remote_location)
        self._with_retries("clone", clone)
        self.discard()
        partial.rename(self.path)
        return Repo(self.path).head.commit.hexsha

    def _fetch(self) -> str:
        repo = Repo(self.path)
        reg = self.registry

        def fetch() -> None:
            repo.git.fetch(
                "origin",
                reg.branch,
                depth=1,
                kill_after_timeout=self.timeout,
                env=_GIT_ENV,
            )

        logger.info("Fetching updates for %s", reg.id)
        self._with_retries("fetch", fetch)
        try:
            tip = repo.git.rev_parse("FETCH_HEAD^{commit}")
        except GitCommandError as e:
            raise SyncTransportError(reg.id, f"cannot resolve fetched head: {_git_error(e)}") from e
        # The mirror never carries local work
        repo.git.reset("--hard", tip)
        return tip

    def _with_retries(self, action: str, op: Callable[[], T]) -> T:
        last_error: GitCommandError | None = None
        for attempt in range(1, self.retries + 1):
            try:
                return op()
            except GitCommandError as e:
                last_error = e
                if attempt < self.retries:
                    delay = self.backoff * 2 ** (attempt - 1)
                    logger.warning(
                        "%s of %s failed (attempt %d/%d), retrying in %.1fs",
                        action, self.registry.id, attempt, self.retries, delay,
                    )
                    time.sleep(delay)
        raise SyncTransportError(
            self.registry.id,
            f"{action} failed after {self.retries} attempt(s): {_git_error(last_error)}",
            attempts=self.retries,
        )

    # ------------------------------------------------------------------
    # Reading revisions
    # ------------------------------------------------------------------

    def repo(self) -> Repo:
        return Repo(self.path)

    def resolve(self, revision: str | None) -> Commit | None:
        """Return the commit for ``revision`` if the mirror still has it."""
        if not revision:
            return None
        try:
            return self.repo().commit(revision)
        except (BadName, BadObject, ValueError, GitCommandError):
            return None

    def list_skill_files(self, commit: Commit) -> list[str]:
        """All skill files at ``commit``, relative to the subpath, sorted."""
        subpath = self.registry.subpath.strip("/")
        try:
            tree = commit.tree / subpath if subpath else commit.tree
        except KeyError:
            raise SyncTransportError(
                self.registry.id, f"subpath {subpath!r} not found at {commit.hexsha[:12]}"
            )
        files = []
        for item in tree.traverse():
            if item.type == "blob" and item.name == SKILL_FILENAME:
                rel = self._relative(item.path)
                if rel is not None:
                    files.append(rel)
        return sorted(files)

    def changed_files(self, old: Commit, new: Commit) -> list[FileChange]:
        """Skill files added, modified or deleted between two commits."""
        subpath = self.registry.subpath.strip("/")
        changes: list[FileChange] = []
        for diff in old.diff(new, paths=subpath or None):
            kind = diff.change_type
            if kind in ("D", "R"):
                rel = self._relative(diff.a_path)
                if rel is not None:
                    changes.append(FileChange(rel, "D"))
            if kind in ("A", "C", "R"):
                rel = self._relative(diff.b_path)
                if rel is not None:
                    changes.append(FileChange(rel, "A"))
            elif kind in ("M", "T"):
                rel = self._relative(diff.b_path)
                if rel is not None:
                    changes.append(FileChange(rel, "M"))
        return sorted(changes, key=lambda c: (c.path, c.status))

    def read_file(self, commit: Commit, rel_path: str) -> bytes:
        return (commit.tree / self._repo_path(rel_path)).data_stream.read()

    def has_file(self, commit: Commit, rel_path: str) -> bool:
        try:
            commit.tree / self._repo_path(rel_path)
        except KeyError:
            return False
        return True

    def _repo_path(self, rel_path: str) -> str:
        subpath = self.registry.subpath.strip("/")
        return f"{subpath}/{rel_path}" if subpath else rel_path

    def _relative(self, repo_path: str | None) -> str | None:
        """Map a repo path to a subpath-relative skill file path, or None."""
        if not repo_path:
            return None
        path = PurePosixPath(repo_path)
        subpath = self.registry.subpath.strip("/")
        if subpath:
            try:
                path = path.relative_to(subpath)
            except ValueError:
                return None
        if path.name != SKILL_FILENAME or not _MIN_PARTS <= len(path.parts) <= _MAX_PARTS:
            return None
        return str(path)


def _git_error(error: GitCommandError | None) -> str:
    if error is None:
        return "unknown error"
    stderr = (error.stderr or "").strip()
    for prefix in ("stderr:", "'"):
        stderr = stderr.removeprefix(prefix).strip()
    stderr = stderr.rstrip("'").strip()
    return stderr.splitlines()[-1] if stderr else str(error)
