"""
contribs.identity — Contributor identity normalization and resolution.

Modules:
    normalize — cache-key normalization, reserved-email profile derivation.
    resolver  — IdentityResolver: cache → local commit → user search.
"""

from contribs.identity.normalize import (
    derive_profile_url,
    names_match,
    normalize_email,
    normalize_name,
    parse_identity,
)
from contribs.identity.resolver import EMAIL_CACHE_FILE, NAME_CACHE_FILE, IdentityResolver

__all__ = [
    "EMAIL_CACHE_FILE",
    "NAME_CACHE_FILE",
    "IdentityResolver",
    "derive_profile_url",
    "names_match",
    "normalize_email",
    "normalize_name",
    "parse_identity",
]
