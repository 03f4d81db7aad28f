"""Registry data models — registries, skills and their searchable projection."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TrustLevel(Enum):
    """How much a registry is trusted. Fixed per registry at configuration time."""

    OFFICIAL = "official"
    COMMUNITY = "community"
    EXPERIMENTAL = "experimental"


def make_doc_id(registry_id: str, slug: str) -> str:
    return f"{registry_id}:{slug}"


def split_doc_id(doc_id: str) -> tuple[str, str]:
    registry_id, _, slug = doc_id.partition(":")
    return registry_id, slug


@dataclass
class Registry:
    """A named remote git repository holding skill definitions."""

    id: str
    remote_location: str
    subpath: str = ""  # Root-relative directory holding the skills
    trust_level: TrustLevel = TrustLevel.COMMUNITY
    branch: str = "main"
    stars_api: str = ""  # Popularity endpoint, empty when the registry has none
    last_synced_revision: str | None = None

    @property
    def trusted(self) -> bool:
        return self.trust_level == TrustLevel.OFFICIAL

    @property
    def browse_url(self) -> str:
        """Web location of the registry's branch, e.g. ``https://github.com/o/r/tree/main``."""
        base = self.remote_location.rstrip("/")
        if base.endswith(".git"):
            base = base[: -len(".git")]
        return f"{base}/tree/{self.branch}"

    def skill_url(self, relative_path: str) -> str:
        parts = [self.browse_url, self.subpath.strip("/"), relative_path.strip("/")]
        return "/".join(p for p in parts if p)


@dataclass
class IndexDocument:
    """The searchable projection of a Skill."""

    doc_id: str
    registry_id: str
    text_fields: dict[str, str] = field(default_factory=dict)
    trusted: bool = False
    star_count: int = 0

    @property
    def boost_factors(self) -> tuple[bool, int]:
        return self.trusted, self.star_count


@dataclass
class Skill:
    """One skill definition extracted from a ``SKILL.md`` file."""

    # Identity
    slug: str
    name: str = ""
    description: str = ""
    registry_id: str = ""
    relative_path: str = ""  # Skill directory, relative to the registry subpath

    # Extracted content
    raw_metadata: dict[str, str] = field(default_factory=dict)
    compatibility: str = ""
    content: str = ""  # Raw SKILL.md text
    full_text: str = ""  # name, description, then the metadata field of to_document()

    # Signals
    star_count: int = 0
    trusted: bool = False

    # Change tracking
    content_hash: str = ""
    updated_at: int = 0  # Epoch seconds of the last extraction

    @property
    def doc_id(self) -> str:
        return make_doc_id(self.registry_id, self.slug)

    @property
    def version(self) -> str:
        return self.raw_metadata.get("version") or self.raw_metadata.get("metadata.version", "")

    @property
    def body(self) -> str:
        """The markdown body with the front-matter block stripped."""
        from skillsearch.registry.extractor import split_front_matter_text

        return split_front_matter_text(self.content)[1]

    def to_document(self) -> IndexDocument:
        from skillsearch.registry.extractor import build_full_text

        name = self.name
        if self.slug and self.slug.lower() not in name.lower():
            name = f"{name} {self.slug}".strip()
        return IndexDocument(
            doc_id=self.doc_id,
            registry_id=self.registry_id,
            text_fields={
                "name": name,
                "description": self.description,
                "metadata": build_full_text("", "", self.compatibility, self.raw_metadata),
                "body": self.body,
            },
            trusted=self.trusted,
            star_count=self.star_count,
        )


@dataclass
class SkillResult:
    """A skill as returned by a query, with its resolved URL."""

    skill: Skill
    url: str
    score: float | None = None
    quality_score: int | None = None

    def to_dict(self) -> dict:
        return {
            "slug": self.skill.slug,
            "name": self.skill.name,
            "registry": self.skill.registry_id,
            "description": self.skill.description,
            "github_url": self.url,
            "stars": self.skill.star_count,
            "trusted": self.skill.trusted,
            "score": round(self.score, 6) if self.score is not None else None,
        }
