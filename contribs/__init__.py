"""
contribs — Per-period contributor statistics for git repositories.

Clones (or refreshes) a GitHub repository locally, buckets its history into
calendar months or years, ranks the top contributors of every bucket, and
resolves each contributor to a GitHub profile. Results are cached on disk so
repeated requests only recompute the most recent period.

Entry points:
    contribs.pipeline.collect_contribution_summary — one repository
    contribs.pipeline.ContributionService          — long-lived component graph
    contribs.cache.create_persistent_cache         — generic JSON-backed cache
"""

__version__ = "0.1.0"
