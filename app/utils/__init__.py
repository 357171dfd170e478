from urllib.parse import urlsplit, urlunsplit


def redact_url(url: str) -> str:
    """Drop query string and fragment from a URL before it is logged."""
    if not url:
        return url
    parts = urlsplit(url)
    if not parts.query and not parts.fragment:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")) + "?<redacted>"
