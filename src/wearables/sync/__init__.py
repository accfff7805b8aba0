"""Whoop sync infrastructure.

Modules:
    engine — fetch, normalize, and upsert vendor collections for a date window
    dedup  — natural keys, in-run dedup cache, upsert SQL builder
"""
