from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def append_query(uri: str, **params: str | None) -> str:
    """
    Add query parameters to `uri`, keeping any query it already carries.

    Parameters whose value is None are skipped.
    """
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def is_absolute_redirect_uri(uri: str) -> bool:
    """Registered redirect URIs must be absolute and fragment free."""
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc) and not parts.fragment and "#" not in uri
