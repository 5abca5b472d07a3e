"""
Client for the public randomness HTTP API served by each node.

The round is always pinned in the URL, so a lagging node answers for the
round asked rather than for its latest one.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import ssl
from dataclasses import dataclass
from pathlib import Path

import httpx
from pydantic import ValidationError

from beacon_harness.chain.config import AFTER_PERIOD_WAIT, PUBLIC_CHECK_ATTEMPTS
from beacon_harness.containers import BeaconValue
from beacon_harness.metrics import beacon_check_retries
from beacon_harness.types import PublicApiError

logger = logging.getLogger(__name__)

PUBLIC_ENDPOINT = "/public/{round}"
"""Path of the per-round randomness endpoint."""

REQUEST_HEADERS = {"Context-type": "application/json"}
"""Headers sent with every request, matching what node operators document."""

DEFAULT_TIMEOUT = 10.0
"""HTTP request timeout in seconds."""


@dataclass(frozen=True, slots=True)
class PublicApiClient:
    """Fetches beacon values over HTTP(S) with retries."""

    use_tls: bool = False
    """Whether nodes serve their public API over https."""

    attempts: int = PUBLIC_CHECK_ATTEMPTS
    """Requests per fetch before giving up."""

    retry_delay: float = AFTER_PERIOD_WAIT
    """Pause after a failed or empty response, about one beacon cadence."""

    timeout: float = DEFAULT_TIMEOUT
    """Per-request timeout."""

    def url_for(self, public_addr: str, round: int) -> str:
        """URL of `round` on the node serving at `public_addr`."""
        scheme = "https" if self.use_tls else "http"
        return f"{scheme}://{public_addr}{PUBLIC_ENDPOINT.format(round=round)}"

    def example_command(self, url: str, cert_path: Path | None = None) -> str:
        """A curl command line reproducing the request by hand."""
        args = ["curl", "-k", "-s"]
        if cert_path is not None:
            args += ["--cacert", str(cert_path)]
        for name, value in REQUEST_HEADERS.items():
            args += ["-H", f"{name}: {value}"]
        return shlex.join([*args, url])

    def _verify(self, cert_path: Path | None) -> ssl.SSLContext | bool:
        if cert_path is None:
            return True
        return ssl.create_default_context(cafile=str(cert_path))

    async def fetch(
        self,
        public_addr: str,
        round: int,
        cert_path: Path | None = None,
    ) -> BeaconValue:
        """
        Fetch and parse the beacon value for `round`.

        Transport failures and empty bodies are retried. Anything else is final.

        Args:
            public_addr: host:port of the node's public API.
            round: Round to ask for.
            cert_path: Certificate to trust when the node serves TLS.

        Raises:
            PublicApiError: If retries run out, the status is an error, or the
                body is not a beacon value.
        """
        url = self.url_for(public_addr, round)
        verify = self._verify(cert_path)
        async with httpx.AsyncClient(timeout=self.timeout, verify=verify) as client:
            for attempt in range(1, self.attempts + 1):
                try:
                    response = await client.get(url, headers=REQUEST_HEADERS)
                except httpx.TransportError as exc:
                    logger.warning(
                        "Request to %s failed (attempt %d/%d): %s", url, attempt, self.attempts, exc
                    )
                    beacon_check_retries.labels(path="public").inc()
                    await asyncio.sleep(self.retry_delay)
                    continue

                if not response.content.strip():
                    logger.warning(
                        "Received empty response from %s (attempt %d/%d). Retrying ...",
                        url,
                        attempt,
                        self.attempts,
                    )
                    beacon_check_retries.labels(path="public").inc()
                    await asyncio.sleep(self.retry_delay)
                    continue

                if response.is_error:
                    raise PublicApiError(
                        f"HTTP error {response.status_code} from {url}: {response.text[:200]}"
                    )
                try:
                    return BeaconValue.model_validate_json(response.content)
                except ValidationError as exc:
                    raise PublicApiError(
                        f"Invalid beacon from {url}: {response.text[:200]}"
                    ) from exc

        raise PublicApiError(f"No usable response from {url} after {self.attempts} attempts")
