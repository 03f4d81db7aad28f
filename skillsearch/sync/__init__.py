"""Registry synchronization.

This package provides the primitives for:
- Mirroring: shallow git clones kept current with fetch
- Delta detection: changed SKILL.md files between two revisions
- Enrichment: popularity counts fetched from registry APIs
"""
