"""Document transport for HTTP(S), S3 and local catalog files."""

from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import requests
from dagster import get_dagster_logger

from stac_extraction.config.constants import USER_AGENT
from stac_extraction.connectors.s3_client import S3Resource
from stac_extraction.connectors.settings import SettingsResource
from stac_extraction.errors import FetchError

logger = get_dagster_logger(__name__)

_MISSING: Any = object()


class DocumentClient:
    """Fetch raw document bytes by URL scheme.

    ``http``/``https`` go through a shared ``requests.Session``, ``s3`` through boto3
    and ``file`` URLs or bare paths are read from disk.

    :param settings: Settings resource
    :param s3: Optional S3 resource, created from settings when needed
    :param session: Optional requests session
    """

    def __init__(
        self,
        settings: SettingsResource | None = None,
        s3: S3Resource | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings or SettingsResource.create(swallow_errors=True)
        self._s3 = s3
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)

    @property
    def s3(self) -> S3Resource:
        if self._s3 is None:
            self._s3 = S3Resource(settings=self.settings)
        return self._s3

    def fetch(self, url: str, timeout: float | None = _MISSING) -> bytes:
        """Fetch document content.

        :param url: Absolute URL or local path
        :param timeout: Timeout in seconds for this call; defaults to the configured one
        :returns: Raw bytes
        :raises FetchError: On network failure, non-2xx status, timeout or missing file
        """
        if timeout is _MISSING:
            timeout = self.settings.request_timeout

        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise FetchError(f"Malformed URL {url!r}: {e}") from e
        scheme = parsed.scheme.lower()
        if scheme in ("http", "https"):
            return self._fetch_http(url, timeout)
        if scheme == "s3":
            return self.s3.read_object(url, timeout=timeout)
        if scheme == "file":
            return self._read_file(unquote(parsed.path))
        if scheme and len(scheme) > 1:
            raise FetchError(f"Unsupported URL scheme '{scheme}' for {url}")
        return self._read_file(url)

    def _fetch_http(self, url: str, timeout: float | None) -> bytes:
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            raise FetchError(f"Timed out after {timeout}s fetching {url}") from e
        except requests.HTTPError as e:
            raise FetchError(f"HTTP {e.response.status_code} fetching {url}") from e
        except requests.RequestException as e:
            raise FetchError(f"Error fetching {url}: {e}") from e
        return response.content

    @staticmethod
    def _read_file(path: str) -> bytes:
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise FetchError(f"Cannot read {path}: {e.strerror or e}") from e

    def close(self) -> None:
        self.session.close()
