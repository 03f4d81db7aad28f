"""Query engine — the read API over the skill store and search index.

Queries never touch the network or the registry mirrors.
"""

from __future__ import annotations

import logging

from skillsearch.errors import NotFoundError
from skillsearch.index.engine import IndexEngine, SearchFilters
from skillsearch.quality import QualityScores
from skillsearch.registry.models import Registry, Skill, SkillResult, split_doc_id
from skillsearch.registry.store import SkillStore

logger = logging.getLogger(__name__)


class QueryEngine:
    """Search, top-N, show and url over synced skills."""

    def __init__(
        self,
        store: SkillStore,
        index: IndexEngine,
        quality: QualityScores | None = None,
    ):
        self.store = store
        self.index = index
        self.quality = quality or QualityScores()

    def search(
        self,
        query: str,
        registry: str | None = None,
        trusted_only: bool = False,
        limit: int = 10,
        min_score: int = 0,
    ) -> list[SkillResult]:
        """Ranked skills matching ``query``, best first.

        Raises:
            NotFoundError: If ``registry`` is not a known registry.
        """
        if limit <= 0:
            return []
        if registry is not None:
            self._registry(registry)

        filters = SearchFilters(
            registry=registry,
            trusted=True if trusted_only else None,
            limit=limit if min_score <= 0 else None,
        )
        registries: dict[str, Registry] = {}
        results: list[SkillResult] = []
        for doc_id, score in self.index.search(query, filters):
            registry_id, slug = split_doc_id(doc_id)
            skill = self.store.get_skill(registry_id, slug)
            if skill is None:
                logger.debug("Index entry %s has no stored skill", doc_id)
                continue
            result = self._result(skill, registries, score)
            if not self._passes_quality(result, min_score):
                continue
            results.append(result)
            if len(results) >= limit:
                break
        return results

    def top(self, trusted_only: bool = False, limit: int = 20, min_score: int = 0) -> list[SkillResult]:
        """Skills by star count (descending), ties broken by slug."""
        if limit <= 0:
            return []
        skills = self.store.list_skills(trusted_only=trusted_only)
        skills.sort(key=lambda s: (-s.star_count, s.slug, s.registry_id))
        registries: dict[str, Registry] = {}
        results: list[SkillResult] = []
        for skill in skills:
            result = self._result(skill, registries)
            if not self._passes_quality(result, min_score):
                continue
            results.append(result)
            if len(results) >= limit:
                break
        return results

    def show(self, registry_id: str, slug: str) -> Skill:
        skill = self.store.get_skill(registry_id, slug)
        if skill is None:
            raise NotFoundError(
                f"Skill not found: {registry_id}/{slug}",
                details={"registry": registry_id, "slug": slug},
            )
        return skill

    def url(self, registry_id: str, slug: str) -> str:
        skill = self.show(registry_id, slug)
        return self._registry(registry_id).skill_url(skill.relative_path)

    def resolve(self, slug: str, registry: str | None = None) -> Skill:
        """Find a skill by slug alone, preferring trusted registries."""
        if registry is not None:
            self._registry(registry)
            return self.show(registry, slug)
        matches = self.store.find_by_slug(slug)
        if not matches:
            raise NotFoundError(f"Skill not found: {slug}", details={"slug": slug})
        if len(matches) > 1:
            logger.info(
                "%r exists in %s; using %s",
                slug,
                ", ".join(m.registry_id for m in matches),
                matches[0].registry_id,
            )
        return matches[0]

    def quality_score(self, skill: Skill) -> int | None:
        return self.quality.get_score(skill.registry_id, skill.slug, skill.name)

    def _registry(self, registry_id: str) -> Registry:
        registry = self.store.get_registry(registry_id)
        if registry is None:
            raise NotFoundError(f"Unknown registry: {registry_id}", details={"registry": registry_id})
        return registry

    def _result(
        self, skill: Skill, registries: dict[str, Registry], score: float | None = None
    ) -> SkillResult:
        if skill.registry_id not in registries:
            registries[skill.registry_id] = self._registry(skill.registry_id)
        return SkillResult(
            skill=skill,
            url=registries[skill.registry_id].skill_url(skill.relative_path),
            score=score,
            quality_score=self.quality_score(skill),
        )

    @staticmethod
    def _passes_quality(result: SkillResult, min_score: int) -> bool:
        if min_score <= 0:
            return True
        return result.quality_score is not None and result.quality_score >= min_score
