"""Shared fixtures: throwaway git registries and a skillsearch data directory."""

from pathlib import Path

import pytest
from git import Actor, Repo

from skillsearch.registry.models import Registry, TrustLevel

AUTHOR = Actor("Skill Author", "author@example.com")


class RemoteRegistry:
    """A local git repository standing in for a hosted skill registry."""

    def __init__(self, path: Path, subpath: str = "skills"):
        self.path = path
        self.subpath = subpath
        self.repo = Repo.init(path)

    @property
    def url(self) -> str:
        return self.path.as_uri()

    def write(self, rel_path: str, text: str | bytes) -> None:
        target = self.path / self.subpath / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(text, bytes):
            target.write_bytes(text)
        else:
            target.write_text(text, encoding="utf-8")
        self.repo.index.add([str(target.relative_to(self.path))])

    def delete(self, rel_path: str) -> None:
        target = self.path / self.subpath / rel_path
        self.repo.index.remove([str(target.relative_to(self.path))], working_tree=True)

    def commit(self, message: str = "update skills") -> str:
        first = not self.repo.head.is_valid()
        commit = self.repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
        if first:
            self.repo.git.branch("-M", "main")
        return commit.hexsha

    def registry(self, registry_id: str, trust: TrustLevel = TrustLevel.COMMUNITY, **kwargs) -> Registry:
        return Registry(
            id=registry_id,
            remote_location=self.url,
            subpath=self.subpath,
            trust_level=trust,
            **kwargs,
        )


@pytest.fixture
def make_remote(tmp_path):
    """Factory for remote registries under the test's temp directory."""

    def factory(name: str = "remote", subpath: str = "skills") -> RemoteRegistry:
        return RemoteRegistry(tmp_path / name, subpath=subpath)

    return factory


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path
