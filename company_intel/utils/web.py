from __future__ import annotations

from urllib.parse import urljoin, urlparse, urlunparse

ASSET_EXTENSIONS = (
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".gz",
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico", ".bmp",
    ".mp3", ".mp4", ".avi", ".mov", ".css", ".js", ".json", ".xml", ".woff", ".woff2",
)


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def normalize_domain(value: str) -> str:
    """Reduce a domain or URL to its bare lowercase host without `www.`."""
    value = value.strip()
    if "://" not in value:
        value = f"https://{value}"
    host = (urlparse(value).hostname or "").lower().rstrip(".")
    if host.startswith("www."):
        host = host[4:]
    return host


def normalize_url(url: str, base: str | None = None) -> str:
    """Absolute URL without fragment and without a trailing slash on non-root paths."""
    if base:
        url = urljoin(base, url)
    parsed = urlparse(url.strip())
    path = parsed.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, "")
    )


def same_site(url: str, domain: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    bare = normalize_domain(domain)
    return host == bare or host == f"www.{bare}" or host.endswith(f".{bare}")


def is_asset_url(url: str) -> bool:
    path = urlparse(url).path.lower()
    return path.endswith(ASSET_EXTENSIONS)


def path_depth(url: str) -> int:
    return len([segment for segment in urlparse(url).path.split("/") if segment])
