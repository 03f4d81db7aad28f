"""Curated quality scores.

An optional ``quality.json`` in the data directory lists reviewed skills::

    [{"name": "pdf", "registry": "anthropic", "score": 92, "url": "https://..."}]

Entries are keyed by registry and normalized slug, and also by the last
segment of their URL, so a review filed under a display name still matches
the skill's directory slug.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def normalize_slug(value: str) -> str:
    return "".join(c for c in value.lower() if c.isalnum() or c in "-_")


def _url_slug(url: str) -> str:
    segments = [s for s in url.split("/") if s]
    return segments[-1] if segments else ""


class QualityScores:
    """Lookup table of curated scores by (registry, slug)."""

    def __init__(self, entries: list[dict] | None = None):
        self._scores: dict[tuple[str, str], int] = {}
        for entry in entries or []:
            try:
                registry = str(entry["registry"])
                score = int(entry["score"])
            except (KeyError, TypeError, ValueError):
                continue
            for key in (entry.get("name", ""), _url_slug(entry.get("url", ""))):
                slug = normalize_slug(str(key))
                if slug:
                    self._scores.setdefault((registry, slug), score)

    @classmethod
    def load(cls, path: str | Path) -> "QualityScores":
        """Load scores from ``path``; a missing or unreadable file yields no scores."""
        path = Path(path)
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring quality scores in %s: %s", path, e)
            return cls()
        return cls(data if isinstance(data, list) else [])

    def __len__(self) -> int:
        return len(self._scores)

    def get_score(self, registry: str, slug: str, name: str = "") -> int | None:
        score = self._scores.get((registry, normalize_slug(slug)))
        if score is None and name:
            score = self._scores.get((registry, normalize_slug(name)))
        return score
