"""URL canonicalization and scope matching for the crawler."""

from urllib.parse import urljoin, urlsplit, urlunsplit

# Strings longer than this are page content mistaken for a URL, not a URL
MAX_URL_LENGTH = 2000

# Non-content file extensions never worth rendering
SKIP_EXTENSIONS = frozenset(
    [
        # Documents
        ".pdf",
        ".doc",
        ".docx",
        ".xls",
        ".xlsx",
        ".xlsm",
        ".ppt",
        ".pptx",
        ".odt",
        ".ods",
        ".odp",
        # Archives
        ".zip",
        ".tar",
        ".gz",
        ".rar",
        ".7z",
        ".bz2",
        # Design files
        ".psd",
        ".ai",
        ".eps",
        # Video
        ".mp4",
        ".avi",
        ".mov",
        ".wmv",
        ".flv",
        ".webm",
        ".mkv",
        # Audio
        ".mp3",
        ".wav",
        ".flac",
        ".aac",
        ".ogg",
        # Binaries / installers
        ".exe",
        ".dmg",
        ".pkg",
        ".deb",
        ".rpm",
        ".apk",
        # Data
        ".csv",
        ".xml",
        ".json",
        ".sql",
        ".db",
    ]
)

# Hrefs with these prefixes never point at a crawlable page
SKIP_PREFIXES = ("mailto:", "tel:", "javascript:", "data:", "#")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonicalize_url(url: str, remove_query: bool = True) -> str | None:
    """
    Normalize a URL to its canonical frontier key.

    The scheme is forced to https, the host lowercased and stripped of
    ``www.``, default ports dropped, trailing slashes removed (except on
    the root path) and the fragment discarded. Query strings are dropped
    unless ``remove_query`` is False.

    Args:
        url: Absolute URL to normalize
        remove_query: Whether to strip the query string

    Returns:
        Canonical URL string, or None if the input is not a usable URL
    """
    if not isinstance(url, str):
        return None
    if len(url) > MAX_URL_LENGTH:
        return None

    url = url.strip()
    if not url:
        return None

    try:
        parsed = urlsplit(url)
        port = parsed.port
    except ValueError:
        return None

    if parsed.scheme.lower() not in ("http", "https"):
        return None

    host = (parsed.hostname or "").lower()
    if not host:
        return None
    if host.startswith("www."):
        host = host[4:]

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port not in _DEFAULT_PORTS.values():
        netloc = f"{netloc}:{port}"

    path = parsed.path.rstrip("/") or "/"

    query = "" if remove_query else parsed.query

    return urlunsplit(("https", netloc, path, query, ""))


def resolve_url(href: str, base_url: str) -> str | None:
    """Resolve a possibly-relative href against the page it appeared on."""
    try:
        return urljoin(base_url, href.strip())
    except ValueError:
        return None


def is_http_url(url: str) -> bool:
    """Check that a URL has an http(s) scheme and a host."""
    try:
        parsed = urlsplit(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in ("http", "https") and bool(parsed.netloc)


def has_skip_extension(url: str) -> bool:
    """Check whether a URL points at a known non-content file."""
    try:
        path = urlsplit(url).path.lower()
    except ValueError:
        return True
    return any(path.endswith(ext) for ext in SKIP_EXTENSIONS)


def is_under_base_path(url: str, base_url: str, strict: bool = True) -> bool:
    """
    Check if a canonical URL is inside a target's base path.

    Both URLs must be canonical. Strict mode requires the path to equal the
    base path or continue with ``/``, so ``/api`` matches ``/api/users`` but
    not ``/api-docs``. Loose mode only requires a path prefix. A base path of
    ``/`` matches everything on its host.

    Args:
        url: Canonical URL to check
        base_url: Canonical target URL
        strict: Whether to enforce path hierarchy

    Returns:
        True if the URL falls under the base path
    """
    try:
        url_parts = urlsplit(url)
        base_parts = urlsplit(base_url)
    except ValueError:
        return False

    if url_parts.netloc != base_parts.netloc:
        return False

    url_path = url_parts.path or "/"
    base_path = base_parts.path or "/"

    if not url_path.startswith(base_path):
        return False

    if not strict or url_path == base_path or base_path == "/":
        return True

    return url_path[len(base_path)] == "/"


def is_internal_url(url: str, base_urls: list[str], strict: bool = True) -> bool:
    """Check if a URL is under any of the targets."""
    return any(is_under_base_path(url, base, strict) for base in base_urls)


def match_base_url(url: str, base_urls: list[str], strict: bool = True) -> str | None:
    """Return the first target a URL belongs to, if any."""
    for base in base_urls:
        if is_under_base_path(url, base, strict):
            return base
    return None
