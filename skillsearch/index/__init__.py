"""Full-text index — a rebuildable projection of the skill store.

The index provides:
- Tokenization shared by indexing and querying
- Field-weighted BM25 relevance
- Trust and popularity boosting (see ``scoring``)
"""
