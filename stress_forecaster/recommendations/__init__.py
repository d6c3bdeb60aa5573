"""
Recommendation engine: turns a stress prediction into ranked, deduplicated
suggested actions.

Modules
-------
selector : tier / factor / preventive rules, best-effort catalog
           enrichment, dedup + sort + cap, fallback — no DB access.
"""
