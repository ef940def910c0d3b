"""URL hygiene: tracking-parameter stripping and domain extraction."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from core.structured_logging import emit_json_event


_TRACKING_QUERY_PARAMS = {
    # Facebook
    "fbclid",
    "fb_action_ids",
    "fb_action_types",
    "fb_ref",
    "fb_source",
    # Google
    "gclid",
    "gclsrc",
    "dclid",
    "_ga",
    "_gl",
    # Others
    "mc_cid",
    "mc_eid",
    "msclkid",
    "twclid",
    "li_fat_id",
    "igshid",
    "wickedid",
    "yclid",
}


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlsplit(url.strip())
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.hostname)


def clean_url(url: str) -> str:
    """
    Strip tracking parameters so one article keeps one URL key.

    Rules:
    - Drop `utm_*` and known click-id params (fbclid, gclid, ...)
    - Keep every other param in its original order
    - Drop an empty fragment
    - Leave non-http(s) or unparseable input untouched
    """
    text = url.strip()
    try:
        parsed = urlsplit(text)
    except ValueError as exc:
        emit_json_event(
            event_type="url_clean_failed",
            run_id=None,
            level="warning",
            component="quality",
            url=url,
            error=str(exc),
        )
        return url
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        return url

    query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
    kept = [
        (key, value)
        for key, value in query_pairs
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_QUERY_PARAMS
    ]
    query = urlencode(kept, doseq=True) if len(kept) != len(query_pairs) else parsed.query

    path = parsed.path or "/"
    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), path, query, parsed.fragment))


def extract_domain(url: str) -> str:
    """Lowercase host without a leading `www.`; empty string when missing."""
    try:
        host = (urlsplit(url.strip()).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host
