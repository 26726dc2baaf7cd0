"""
Attestation Client

Read-only client for the attestation oracle. Looks up the messages emitted
by a burn transaction and their signed attestations.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from aiohttp import ClientTimeout

from . import errors
from .config import ATTESTATION_API_URLS
from .models import AttestationMessage

logger = logging.getLogger(__name__)


def decode_messages(body: Any) -> List[AttestationMessage]:
    """Decode ``{"messages": [...]}`` into AttestationMessage objects."""
    if not isinstance(body, dict):
        raise errors.ExternalServiceError("Unexpected attestation response shape")
    messages = body.get("messages") or []
    if not isinstance(messages, list):
        raise errors.ExternalServiceError("Attestation response 'messages' is not a list")

    decoded = []
    for item in messages:
        if not isinstance(item, dict):
            raise errors.ExternalServiceError("Attestation message entry is not an object")
        version = item.get("cctpVersion")
        try:
            cctp_version = int(version) if version is not None else None
        except (TypeError, ValueError):
            raise errors.ExternalServiceError(f"Invalid cctpVersion in attestation response: {version!r}")
        decoded.append(AttestationMessage(
            message=item.get("message") or "",
            attestation=item.get("attestation") or "",
            status=str(item.get("status", "pending")).lower(),
            event_nonce=item.get("eventNonce"),
            cctp_version=cctp_version,
        ))
    return decoded


class AttestationClient:
    """Attestation oracle client"""

    def __init__(
        self,
        base_url: str = ATTESTATION_API_URLS["testnet"],
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AttestationClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=ClientTimeout(total=30, connect=10))
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def get_messages(self, source_domain: int, tx_hash: str) -> Optional[List[AttestationMessage]]:
        """Fetch the messages for a burn transaction.

        Returns:
            The decoded messages, or None when the oracle has not seen the
            transaction yet (HTTP 404)

        Raises:
            errors.ExternalServiceError: any other failure
        """
        url = f"{self.base_url}/{source_domain}"
        params: Dict[str, Any] = {"transactionHash": tx_hash}
        logger.debug(f"Checking attestation at: {url}?transactionHash={tx_hash}")

        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status == 404:
                    return None
                if response.status >= 400:
                    text = await response.text()
                    logger.error(f"Attestation lookup failed ({response.status}): {text}")
                    raise errors.ExternalServiceError(
                        f"Attestation service error {response.status}",
                        status_code=response.status,
                        details={"source_domain": source_domain, "tx_hash": tx_hash}
                    )
                try:
                    body = await response.json(content_type=None)
                except ValueError as e:
                    raise errors.ExternalServiceError(f"Invalid attestation response: {e}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Attestation service unreachable: {e}")
            raise errors.ExternalServiceError(f"Attestation service unreachable: {e}") from e

        return decode_messages(body)
