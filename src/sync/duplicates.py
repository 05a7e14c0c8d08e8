"""Duplicate detection for job applications.

Two applications are considered the same when:
- their job posting URLs match after normalization, or
- job title, company and application date all match (case-insensitive)
"""

import hashlib
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from src.sync.models import Record

# Tracking parameters to remove during normalization
TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "referrer",
    "source",
    "fbclid",
    "gclid",
    "trk",
    "trackingid",
    "refid",
}


def normalize_url(url: str) -> str:
    """Normalize a job posting URL.

    This function:
    - Converts http to https
    - Lowercases the host
    - Removes tracking parameters (utm_*, ref, LinkedIn trk, etc.)
    - Removes trailing slashes and fragments
    - Sorts remaining query parameters

    Args:
        url: The URL to normalize.

    Returns:
        The normalized URL.
    """
    parsed = urlparse(url.strip())

    query_params = parse_qs(parsed.query, keep_blank_values=False)
    sorted_params = sorted(
        (key, values[0])
        for key, values in query_params.items()
        if values and key.lower() not in TRACKING_PARAMS
    )

    return urlunparse(
        (
            "https",
            parsed.netloc.lower(),
            parsed.path.rstrip("/"),
            "",  # params
            urlencode(sorted_params),
            "",  # fragment
        )
    )


def _text(fields: dict[str, Any], key: str) -> str:
    value = fields.get(key)
    return str(value).strip().lower() if value else ""


def _date(fields: dict[str, Any]) -> str:
    # Dates may arrive as "2025-01-31" or a full ISO timestamp.
    return _text(fields, "applicationDate")[:10]


def compute_fingerprint(fields: dict[str, Any]) -> str:
    """Compute a fingerprint for an application's fields.

    Uses the normalized job URL when present, else title|company|date.

    Returns:
        A SHA-256 hash string representing the fingerprint.
    """
    url = fields.get("jobUrl")
    if url:
        source = normalize_url(str(url))
    else:
        source = f"{_text(fields, 'jobTitle')}|{_text(fields, 'company')}|{_date(fields)}"
    return hashlib.sha256(source.encode()).hexdigest()


def is_duplicate(candidate: dict[str, Any], existing: dict[str, Any]) -> bool:
    """Check whether two application field sets describe the same application."""
    candidate_url = candidate.get("jobUrl")
    existing_url = existing.get("jobUrl")
    if candidate_url and existing_url:
        if normalize_url(str(candidate_url)) == normalize_url(str(existing_url)):
            return True

    title = _text(candidate, "jobTitle")
    company = _text(candidate, "company")
    if not title or not company:
        return False
    return (
        title == _text(existing, "jobTitle")
        and company == _text(existing, "company")
        and _date(candidate) == _date(existing)
    )


def find_duplicate(fields: dict[str, Any], records: Iterable[Record]) -> Record | None:
    """Return the first record that duplicates ``fields``, if any."""
    for record in records:
        if is_duplicate(fields, record.fields):
            return record
    return None
