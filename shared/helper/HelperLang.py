"""UI language negotiation for language-prefixed paths ("/cs/app/parts")."""

SUPPORTED_LANGS = ("en", "cs", "de")
DEFAULT_LANG = "en"

# legacy codes still found in stored preferences and old links
LANG_ALIASES = {"cz": "cs"}


def normalize_lang(value: str | None) -> str | None:
    """
    Map a language code to a supported UI language.

    Args:
        value (str | None): Raw code, e.g. "CS", "cz" or "de".

    Returns:
        str | None: The supported code, or None when unknown or empty.
    """
    if not value:
        return None
    lang = value.strip().lower()
    lang = LANG_ALIASES.get(lang, lang)
    return lang if lang in SUPPORTED_LANGS else None


def detect_accept_language(header: str | None) -> str:
    """
    Best supported language from an Accept-Language header ("cs-CZ,cs;q=0.9,en;q=0.8").

    Entries are ranked by q-value, ties keep header order. Region subtags are ignored.
    """
    if not header:
        return DEFAULT_LANG
    ranked: list[tuple[float, int, str]] = []
    for position, entry in enumerate(header.split(",")):
        tag, _, params = entry.strip().partition(";")
        quality = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        ranked.append((-quality, position, tag.split("-")[0]))
    for _, _, tag in sorted(ranked):
        lang = normalize_lang(tag)
        if lang:
            return lang
    return DEFAULT_LANG


def strip_lang_segment(path: str) -> str:
    """Drop the first path segment: "/xx/app/parts" -> "/app/parts", "/xx" -> "/"."""
    segments = path.split("/")
    if len(segments) <= 2:
        return "/"
    return "/" + "/".join(segments[2:])


def build_lang_path(lang: str, path: str, query: str = "") -> str:
    """
    Prefix ``path`` with ``lang``; ``path`` must not carry a language segment already.
    """
    path = path if path.startswith("/") else f"/{path}"
    suffix = "" if path == "/" else path
    query = query.lstrip("?")
    return f"/{lang}{suffix}" + (f"?{query}" if query else "")


def negotiate_lang(path: str, stored: str | None = None, accept_language: str | None = None, query: str = "") -> tuple[str, str | None]:
    """
    Decide the UI language for a request path.

    The language segment of the path wins. Without a valid one the stored
    preference is used, then the browser locale, then the default.

    Args:
        path (str): Request path, e.g. "/cs/app/parts" or "/app/parts".
        stored (str | None): Language the user picked earlier.
        accept_language (str | None): Accept-Language header of the request.
        query (str): Query string to carry over to the redirect.

    Returns:
        tuple[str, str | None]: The language, and the path to redirect to when
        the request path had no valid language segment (None otherwise).
    """
    segments = path.split("/")
    first = segments[1] if len(segments) > 1 else ""
    from_path = normalize_lang(first)
    if from_path and first == from_path:
        return from_path, None

    # a two-letter first segment is a stale or unsupported language prefix
    rest = strip_lang_segment(path) if len(first) == 2 else (path or "/")
    lang = from_path or normalize_lang(stored) or detect_accept_language(accept_language)
    return lang, build_lang_path(lang, rest, query)
