"""Popularity enrichment — star counts from registry APIs.

Each registry that declares a ``stars_api`` is queried once per run (not
once per skill) and the resulting slug → stars table is cached in the
store for ``ttl`` seconds. When a lookup fails the skills of that registry
keep their persisted star counts.

The API is the clawhub listing format::

    GET <stars_api>?limit=100[&cursor=...]
    {"items": [{"slug": "pdf", "stats": {"stars": 12}}, ...], "nextCursor": "..."}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

import httpx

from skillsearch import __version__
from skillsearch.registry.models import Registry, Skill
from skillsearch.registry.store import SkillStore

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 500


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment pass."""

    skills: list[Skill] = field(default_factory=list)
    changed: list[Skill] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # registry id -> error


class PopularityEnricher:
    """Fills ``star_count`` from per-registry popularity APIs."""

    def __init__(
        self,
        registries: dict[str, Registry],
        store: SkillStore,
        *,
        ttl: float = 6 * 3600.0,
        timeout: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.registries = registries
        self.store = store
        self.ttl = ttl
        self._client = client or httpx.Client(
            timeout=timeout,
            headers={"User-Agent": f"skillsearch/{__version__}"},
            follow_redirects=True,
        )
        self._owns_client = client is None
        self.last_failures: dict[str, str] = {}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "PopularityEnricher":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def enrich(self, skills: list[Skill]) -> list[Skill]:
        """Return ``skills`` with star counts filled in where available."""
        return self.run(skills).skills

    def run(self, skills: list[Skill]) -> EnrichmentResult:
        result = EnrichmentResult()
        tables: dict[str, dict[str, int] | None] = {}

        for skill in skills:
            if skill.registry_id not in tables:
                tables[skill.registry_id] = self._lookup(skill.registry_id, result)
            table = tables[skill.registry_id]
            stars = table.get(skill.slug) if table else None
            if stars is None or stars == skill.star_count:
                result.skills.append(skill)
                continue
            updated = replace(skill, star_count=stars)
            result.skills.append(updated)
            result.changed.append(updated)

        self.last_failures = result.failures
        return result

    def _lookup(self, registry_id: str, result: EnrichmentResult) -> dict[str, int] | None:
        registry = self.registries.get(registry_id)
        if registry is None or not registry.stars_api:
            return None

        cached = self.store.get_cached_stars(registry_id, self.ttl)
        if cached is not None:
            logger.debug("Using cached star counts for %s", registry_id)
            return cached

        try:
            table = fetch_star_counts(self._client, registry.stars_api)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not fetch star counts for %s: %s", registry_id, e)
            result.failures[registry_id] = str(e)
            return None
        except Exception as e:
            logger.exception("Star count lookup for %s failed", registry_id)
            result.failures[registry_id] = f"{type(e).__name__}: {e}"
            return None

        logger.info("Fetched star counts for %d %s skills", len(table), registry_id)
        self.store.put_cached_stars(registry_id, table)
        return table


def fetch_star_counts(client: httpx.Client, url: str) -> dict[str, int]:
    """Walk the paginated listing and return slug → stars."""
    stars: dict[str, int] = {}
    cursor: str | None = None

    for page in range(MAX_PAGES):
        params: dict[str, str | int] = {"limit": PAGE_SIZE}
        if cursor:
            params["cursor"] = cursor
        resp = client.get(url, params=params)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"unexpected response from {url}")

        items = data.get("items") or []
        if not isinstance(items, list):
            raise ValueError(f"unexpected items in response from {url}")
        for item in items:
            count = _star_count(item)
            if count is not None:
                stars[str(item["slug"])] = count

        if page and page % 10 == 0:
            logger.debug("Fetched %d star counts so far from %s", len(stars), url)

        cursor = data.get("nextCursor")
        if not cursor:
            break

    return stars


def _star_count(item) -> int | None:
    """The star count of one listing item, or None when the item is malformed."""
    if not isinstance(item, dict) or not item.get("slug"):
        return None
    stats = item.get("stats")
    if not isinstance(stats, dict):
        return None
    count = stats.get("stars")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        return None
    return count
