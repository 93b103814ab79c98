LOG_LINE_LIMIT = 500


def shorten(text: str, limit: int = LOG_LINE_LIMIT) -> str:
    """Cap a log line; proxied targets can be data-heavy query strings."""
    if text is None or len(text) <= limit:
        return text
    return f"{text[:limit]}... ({len(text)} chars)"
