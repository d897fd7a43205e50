"""
contribs/identity/normalize.py — Cache keys and offline profile derivation.

Two normalized forms identify a contributor:
    email: trimmed, lowercased
    name:  NFKD-decomposed, combining marks dropped, non-alphanumerics
           dropped, lowercased ("José  O'Brien" -> "joseobrien")

GitHub reserves email shapes on two domains that encode the login directly, so
they resolve to a profile URL without any network call:
    <login>@users.noreply.github.com
    <id>+<login>@users.noreply.github.com
    <login>@github.com
"""

import re
import unicodedata
from typing import Optional

GITHUB_BASE_URL = "https://github.com"

_NOREPLY = re.compile(r"^(.+?)@users\.noreply\.github\.com$")
_GITHUB_STAFF = re.compile(r"^(.+?)@github\.com$")
_IDENTITY = re.compile(r"^(.*)<(.+)>$")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_name(name: Optional[str]) -> str:
    decomposed = unicodedata.normalize("NFKD", name or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return "".join(ch for ch in stripped if ch.isalnum()).lower()


def derive_profile_url(email: Optional[str]) -> Optional[str]:
    """Profile URL for reserved GitHub email shapes, else None.

    Examples:
        >>> derive_profile_url("jane@users.noreply.github.com")
        'https://github.com/jane'
        >>> derive_profile_url("12345+jane@users.noreply.github.com")
        'https://github.com/jane'
        >>> derive_profile_url("jane@example.com") is None
        True
    """
    lowered = normalize_email(email)
    if not lowered:
        return None

    match = _NOREPLY.match(lowered)
    if match:
        username = match.group(1).split("+")[-1]
        return f"{GITHUB_BASE_URL}/{username}" if username else None

    match = _GITHUB_STAFF.match(lowered)
    if match and match.group(1):
        return f"{GITHUB_BASE_URL}/{match.group(1)}"
    return None


def parse_identity(raw: str) -> tuple[str, Optional[str]]:
    """Split 'Display Name <email>' into (name, email). Email may be absent."""
    match = _IDENTITY.match(raw.strip())
    if not match:
        return raw.strip(), None
    return match.group(1).strip(), match.group(2).strip() or None


def names_match(candidate: Optional[str], target: Optional[str]) -> bool:
    """Exact or containment match between two names after normalization."""
    left, right = normalize_name(candidate), normalize_name(target)
    if not left or not right:
        return False
    return left == right or left in right or right in left
