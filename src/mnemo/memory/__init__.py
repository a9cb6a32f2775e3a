"""Persistent, relevance-scored agent memory.

Layout:
    ~/.mnemo/memories/
    ├── memory_20261017093000.md       # One memory: YAML frontmatter + content body
    ├── memory_20261017093000-2.md     # Same second, disambiguated
    ├── _index.json                    # project/type/tag/entity/temporal lookups + id → file
    └── _stats.json                    # Totals by type and project, rewritten on every index save

The index is derived data; `MemoryStore.rebuild_index()` regenerates it from the
memory files.
"""
