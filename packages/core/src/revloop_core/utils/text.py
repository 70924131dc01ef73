def excerpt(text: str, limit: int = 500) -> str:
    """Bound ``text`` for log lines and error messages."""
    if text is None:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
