"""Registry layer — skill records, metadata extraction and persistence.

- models: registries, skills and their searchable projection
- extractor: SKILL.md front-matter parsing
- store: SQLite source of truth with sync checkpoints
"""
