"""URL helpers for catalog pages."""
import logging
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

from catalog_crawler.errors import ConfigError

logger = logging.getLogger(__name__)


def validate_target_url(url: str) -> str:
    """Return the stripped URL or raise ConfigError if it is not absolute http(s)."""
    if not url or not isinstance(url, str):
        raise ConfigError("URL is required")
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise ConfigError(f"Invalid URL format: {url}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"Invalid URL format: {url}")
    return url


def get_origin(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def page_url(base_url: str, page: int, param: str = "page") -> str:
    """URL of catalog page N. Page 1 is the base URL itself."""
    if page <= 1:
        return base_url
    parsed = urlparse(base_url)
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != param]
    query.append((param, str(page)))
    return urlunparse(parsed._replace(query=urlencode(query)))


def resolve_url(url: str, base: str) -> Optional[str]:
    """Make url absolute against base. Returns None if it cannot be resolved."""
    if not url:
        return None
    url = url.strip()
    if url.startswith("#") or url.lower().startswith("javascript:"):
        return None
    if url.startswith("http://") or url.startswith("https://"):
        return url
    try:
        return urljoin(base, url)
    except ValueError:
        logger.warning(f"Failed to resolve relative URL {url!r} against {base}")
        return None
