"""Health sync infrastructure for Forela.

Modules:
    orchestrator  Per-user sync, summary, enable/disable
    dedup         Upsert keys and ON CONFLICT query builder
"""
