"""
Feed fetcher module for the JMA Warning Checker.

Handles data retrieval from the JMA XML distribution:
- The extra.xml feed (conditional GET with If-Modified-Since)
- VPWW54 warning bulletins (local cache first, download on miss)

Transport failures are reported as FetchError; retries for transient
HTTP errors are handled by the session adapter.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .parser import UNKNOWN_DOCUMENT_NAME

logger = logging.getLogger(__name__)

# Configuration constants
DEFAULT_TIMEOUT = 15  # seconds
MAX_RETRIES = 3
RETRY_BACKOFF = 0.5
USER_AGENT = "JMAWarningChecker/1.0 (municipal warning monitor)"

JMA_FEED_URL = "https://www.data.jma.go.jp/developer/xml/feed/extra.xml"
FEED_CACHE_NAME = "extra.xml"


class FetchError(Exception):
    """Custom exception for document fetching errors."""
    pass


class NotModified:
    """Marker returned when the feed has not changed since the last fetch."""

    def __repr__(self) -> str:
        return "NotModified"


NOT_MODIFIED = NotModified()


@dataclass
class FeedDocument:
    """A freshly downloaded feed body and its cache validator."""
    content: bytes
    last_modified: Optional[str]


class JMAFetcher:
    """
    Fetcher for JMA feed and bulletin documents.

    Bulletins are immutable once published, so a cached copy under
    data_dir is always served in preference to the network.
    """

    def __init__(
        self,
        data_dir: Union[str, Path],
        feed_url: str = JMA_FEED_URL,
        timeout: int = DEFAULT_TIMEOUT
    ):
        self.data_dir = Path(data_dir)
        self.feed_url = feed_url
        self.timeout = timeout
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with retry strategy for availability."""
        session = requests.Session()

        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=RETRY_BACKOFF,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            "User-Agent": USER_AGENT,
            "Accept": "application/atom+xml, application/xml, text/xml, */*"
        })

        return session

    def _get(self, url: str, headers: Optional[dict] = None) -> Tuple[requests.Response, int]:
        """GET with timing; HTTP errors other than 304 raise FetchError."""
        start_time = datetime.utcnow()

        try:
            response = self._session.get(url, headers=headers, timeout=self.timeout, allow_redirects=True)
            if response.status_code != 304:
                response.raise_for_status()
        except requests.Timeout:
            raise FetchError(f"Request timed out after {self.timeout}s: {url}")
        except requests.ConnectionError as e:
            raise FetchError(f"Connection error - source unavailable: {e}")
        except requests.HTTPError as e:
            raise FetchError(f"HTTP error {e.response.status_code}: {url}")
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {e}")

        response_time = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        return response, response_time

    # =========================================================================
    # Feed (extra.xml)
    # =========================================================================

    def fetch_feed_document(self, last_modified: Optional[str] = None) -> Union[NotModified, FeedDocument]:
        """
        Fetch the feed, conditionally when a Last-Modified token is known.

        Returns:
            NOT_MODIFIED on HTTP 304, otherwise a FeedDocument
        """
        headers = {"If-Modified-Since": last_modified} if last_modified else None
        response, response_time = self._get(self.feed_url, headers=headers)

        if response.status_code == 304:
            logger.debug(f"Feed not modified ({response_time}ms)")
            return NOT_MODIFIED

        logger.info(f"Fetched feed: {len(response.content)} bytes in {response_time}ms")
        return FeedDocument(
            content=response.content,
            last_modified=response.headers.get("Last-Modified"),
        )

    def feed_cache_path(self) -> Path:
        return self.data_dir / FEED_CACHE_NAME

    def read_cached_feed(self) -> Optional[bytes]:
        """Last stored feed body, if any."""
        path = self.feed_cache_path()
        if not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning(f"Could not read cached feed {path}: {e}")
            return None

    def store_feed(self, content: bytes) -> None:
        self._write_cache(self.feed_cache_path(), content)

    # =========================================================================
    # Bulletins (VPWW54)
    # =========================================================================

    def bulletin_path(self, name: str) -> Path:
        return self.data_dir / name

    def fetch_bulletin_document(self, url: str, name: str) -> bytes:
        """
        Bytes of a bulletin, served from the local cache when present.

        Bulletins without a usable file name are always downloaded and never
        cached, since they would all share one cache file.
        """
        cacheable = name != UNKNOWN_DOCUMENT_NAME
        path = self.bulletin_path(name)

        if cacheable and path.is_file():
            logger.debug(f"Using cached bulletin: {name}")
            try:
                return path.read_bytes()
            except OSError as e:
                raise FetchError(f"Could not read cached bulletin {path}: {e}")

        if not url:
            raise FetchError(f"No URL for bulletin {name}")

        response, response_time = self._get(url)
        logger.info(f"Downloaded bulletin {name} in {response_time}ms")
        if cacheable:
            self._write_cache(path, response.content)
        return response.content

    def _write_cache(self, path: Path, content: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise FetchError(f"Could not write cache file {path}: {e}")

    def close(self) -> None:
        """Close HTTP session."""
        self._session.close()
