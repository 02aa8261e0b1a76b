"""CTAN JSON API client and mirror resolution."""

from __future__ import annotations

import re
import time
from typing import Any

import httpx
import structlog

from setup_texlive.core.config import NetworkConfig

logger = structlog.get_logger()

REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})

# Fields dropped from /pkg responses; only version and texlive are used.
_DROP_FIELDS = (
    "aliases", "announce", "bugs", "ctan", "descriptions", "development",
    "documentation", "home", "index", "install", "repository", "support",
    "topics",
)


class CTANClient:
    """Client for the CTAN package API and the CTAN mirror redirector.

    The resolved mirror is memoised per client so that every repository URL
    built during one run points at the same host.
    """

    def __init__(
        self,
        config: NetworkConfig | None = None,
        client: httpx.Client | None = None,
    ):
        """Initialize CTAN client.

        Args:
            config: Optional network configuration
            client: Optional pre-built HTTP client (tests inject a mock transport)
        """
        self.config = config or NetworkConfig()
        self._client = client
        self._mirror: str | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _get_with_retry(self, url: str, params: dict[str, str] | None = None) -> httpx.Response:
        """GET a URL with exponential backoff.

        Raises:
            httpx.HTTPError: If all retries fail
        """
        last_error: httpx.HTTPError | None = None

        for attempt in range(self.config.max_retries + 1):
            try:
                response = self.client.get(url, params=params, follow_redirects=True)
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                last_error = e
                if attempt < self.config.max_retries:
                    wait_time = 2 ** attempt
                    logger.debug(
                        "ctan_retry",
                        url=url,
                        attempt=attempt + 1,
                        wait=wait_time,
                        error=str(e)
                    )
                    time.sleep(wait_time)
                    continue
                break

        logger.debug("ctan_fetch_failed", url=url, error=str(last_error))
        if last_error:
            raise last_error
        raise httpx.HTTPError(f"Failed to fetch {url}")

    def pkg(self, name: str) -> dict[str, Any]:
        """Fetch package metadata from the CTAN JSON API.

        Args:
            name: CTAN package name

        Returns:
            Decoded JSON object (``version.number``, ``texlive`` are used)
        """
        url = f"{self.config.ctan_api}{name}"
        response = self._get_with_retry(url, params={"drop": ",".join(_DROP_FIELDS)})
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected response for {name}: {data!r}")
        return data

    def head(self, url: str) -> httpx.Headers | None:
        """HEAD a URL, returning its headers or None if unreachable."""
        try:
            response = self.client.head(url, follow_redirects=True)
            response.raise_for_status()
            return response.headers
        except httpx.HTTPError as e:
            logger.debug("head_failed", url=url, error=str(e))
            return None

    def resolve_mirror(self, *, master: bool = False) -> str:
        """Resolve the CTAN root to use.

        Args:
            master: Return the high-availability origin instead of a mirror

        Returns:
            CTAN root URL ending with a slash

        Raises:
            RuntimeError: If the redirector fails or only unstable mirrors are offered
        """
        if master:
            return self.config.ctan_master
        if self._mirror is not None:
            return self._mirror

        unstable = re.compile(self.config.unstable_mirror_pattern, re.IGNORECASE)
        tries = self.config.mirror_max_tries
        for i in range(tries):
            try:
                response = self.client.head(self.config.ctan_mirrors, follow_redirects=False)
            except httpx.HTTPError as e:
                raise RuntimeError("Failed to resolve the CTAN mirror location") from e
            location = response.headers.get("location")
            if response.status_code not in REDIRECT_CODES or not location:
                raise RuntimeError(
                    f"Failed to resolve the CTAN mirror location: "
                    f"{self.config.ctan_mirrors} returned {response.status_code}"
                )
            mirror = location if location.endswith("/") else location + "/"
            host = httpx.URL(mirror).host
            logger.debug("ctan_mirror_resolved", attempt=i + 1, tries=tries, mirror=mirror)
            # These mirrors often cause package checksum mismatches.
            if unstable.search(host):
                logger.debug("ctan_mirror_skipped", mirror=mirror)
                time.sleep(0.5)
                continue
            self._mirror = mirror
            return mirror

        raise RuntimeError("Failed to find a suitable CTAN mirror")
