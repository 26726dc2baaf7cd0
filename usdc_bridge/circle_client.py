"""
Circle Wallet Client

Execution client for the custodial transaction-signing service.

Features:
- Contract execution requests signed by a developer-controlled wallet
- Per-request entity secret ciphertext (RSA-OAEP under the service public key)
- Transaction lookup and bounded confirmation polling

API docs: https://developers.circle.com/w3s
"""

import asyncio
import base64
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp
from aiohttp import ClientTimeout
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from . import errors
from .config import CIRCLE_API_URL
from .models import TransactionRecord
from .polling import PollPolicy

logger = logging.getLogger(__name__)

DEFAULT_FEE_LEVEL = "HIGH"

Envelope = Dict[str, Any]
TransactionDecoder = Callable[[Envelope], Optional[Dict[str, Any]]]


def _nested_transaction(payload: Envelope) -> Optional[Dict[str, Any]]:
    """{"data": {"transaction": {...}}}"""
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("transaction"), dict):
        return data["transaction"]
    return None


def _data_transaction(payload: Envelope) -> Optional[Dict[str, Any]]:
    """{"data": {"id": ..., "state": ...}}"""
    data = payload.get("data")
    if isinstance(data, dict) and "id" in data:
        return data
    return None


def _bare_transaction(payload: Envelope) -> Optional[Dict[str, Any]]:
    """{"transaction": {...}}"""
    tx = payload.get("transaction")
    if isinstance(tx, dict):
        return tx
    return None


def _flat_transaction(payload: Envelope) -> Optional[Dict[str, Any]]:
    """{"id": ..., "state": ...}"""
    if "id" in payload:
        return payload
    return None


# Known response envelopes, most specific first
TRANSACTION_SCHEMAS: Sequence[Tuple[str, TransactionDecoder]] = (
    ("data.transaction", _nested_transaction),
    ("data", _data_transaction),
    ("transaction", _bare_transaction),
    ("flat", _flat_transaction),
)


def decode_transaction(payload: Any) -> TransactionRecord:
    """Decode a signing service response into a TransactionRecord.

    Raises:
        errors.ExternalServiceError: no known schema matches
    """
    if isinstance(payload, dict):
        for name, decoder in TRANSACTION_SCHEMAS:
            tx = decoder(payload)
            if tx is None:
                continue
            if not tx.get("id") or not tx.get("state"):
                raise errors.ExternalServiceError(
                    f"Transaction envelope '{name}' is missing id or state",
                    details={"schema": name}
                )
            return TransactionRecord(
                id=str(tx["id"]),
                state=str(tx["state"]).upper(),
                tx_hash=tx.get("txHash") or None,
                error_reason=tx.get("errorReason") or tx.get("errorDetails") or None,
            )

    logger.error(f"Unrecognised transaction response shape: {type(payload).__name__}")
    raise errors.ExternalServiceError(
        "Could not extract transaction from signing service response",
        details={"keys": sorted(payload.keys()) if isinstance(payload, dict) else None}
    )


def _error_message(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        if body.get("message"):
            return str(body["message"])
        nested = body.get("error")
        if isinstance(nested, dict) and nested.get("message"):
            return str(nested["message"])
    return fallback


class CircleWalletClient:
    """Custodial signing service client

    The service public key is fetched once and cached for the lifetime of
    this client. The entity secret ciphertext is regenerated for every
    state-changing request.
    """

    def __init__(
        self,
        api_key: str,
        entity_secret: str,
        base_url: str = CIRCLE_API_URL,
        poll_policy: Optional[PollPolicy] = None,
        fee_level: str = DEFAULT_FEE_LEVEL,
        session: Optional[aiohttp.ClientSession] = None
    ):
        if not api_key:
            raise errors.ValidationError("CIRCLE_API_KEY is required")
        if not entity_secret:
            raise errors.ValidationError("CIRCLE_ENTITY_SECRET is required")
        try:
            self._entity_secret = bytes.fromhex(entity_secret)
        except ValueError:
            raise errors.ValidationError("CIRCLE_ENTITY_SECRET must be hex encoded")

        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_policy = poll_policy or PollPolicy(max_attempts=60, interval=3.0)
        self.fee_level = fee_level
        self._session = session
        self._owns_session = session is None
        self._public_key_pem: Optional[str] = None
        self._public_key_lock = asyncio.Lock()

    async def __aenter__(self) -> "CircleWalletClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = ClientTimeout(total=30, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        session = await self._get_session()
        try:
            async with session.request(
                method,
                url,
                headers=headers,
                json=json_data,
                params=params
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = await response.text()

                if response.status >= 400:
                    message = _error_message(body, f"HTTP {response.status}")
                    logger.error(f"[CIRCLE] {method} {path} failed ({response.status}): {message}")
                    raise errors.ExternalServiceError(
                        message,
                        status_code=response.status,
                        details={"path": path}
                    )
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[CIRCLE] {method} {path} connection error: {e}")
            raise errors.ExternalServiceError(
                f"Signing service unreachable: {e}",
                details={"path": path}
            ) from e

    async def get_public_key(self) -> str:
        """Fetch the service's RSA public key (PEM), cached after the first call."""
        if self._public_key_pem:
            return self._public_key_pem
        async with self._public_key_lock:
            if self._public_key_pem is None:
                body = await self._request("GET", "/config/entity/publicKey")
                try:
                    pem = body["data"]["publicKey"]
                except (KeyError, TypeError):
                    raise errors.ExternalServiceError("Public key missing from signing service response")
                if not isinstance(pem, str) or not pem:
                    raise errors.ExternalServiceError("Public key missing from signing service response")
                self._public_key_pem = pem
                logger.debug("Fetched signing service public key")
        return self._public_key_pem

    async def entity_secret_ciphertext(self) -> str:
        """Encrypt the entity secret for a single request."""
        pem = await self.get_public_key()
        try:
            public_key = serialization.load_pem_public_key(pem.encode())
        except (TypeError, ValueError, UnsupportedAlgorithm) as e:
            raise errors.ExternalServiceError(f"Invalid signing service public key: {e}") from e
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise errors.ExternalServiceError("Signing service public key is not an RSA key")
        ciphertext = public_key.encrypt(
            self._entity_secret,
            padding.OAEP(
                mgf=padding.MGF1(algorithm=hashes.SHA256()),
                algorithm=hashes.SHA256(),
                label=None
            )
        )
        return base64.b64encode(ciphertext).decode()

    async def execute(
        self,
        wallet_id: str,
        contract_address: str,
        function_signature: str,
        parameters: List[Any]
    ) -> TransactionRecord:
        """Submit a contract call from a custodial wallet.

        Args:
            wallet_id: Signing service wallet id
            contract_address: Target contract
            function_signature: ABI signature, e.g. ``approve(address,uint256)``
            parameters: ABI parameters (integers as decimal strings)

        Returns:
            The created transaction (usually still pending)
        """
        request_body = {
            "idempotencyKey": str(uuid.uuid4()),
            "walletId": wallet_id,
            "contractAddress": contract_address,
            "abiFunctionSignature": function_signature,
            "abiParameters": parameters,
            "feeLevel": self.fee_level,
            "entitySecretCiphertext": await self.entity_secret_ciphertext(),
        }

        logger.info(f"[CIRCLE] Executing: {function_signature}")
        logger.debug(f"[CIRCLE] Contract: {contract_address} wallet: {wallet_id}")

        try:
            body = await self._request(
                "POST",
                "/developer/transactions/contractExecution",
                json_data=request_body
            )
        except errors.ExternalServiceError as e:
            raise errors.ExternalServiceError(
                f"Contract execution failed: {e.message}",
                status_code=e.status_code,
                details={"function": function_signature, "contract": contract_address}
            ) from e

        transaction = decode_transaction(body)
        logger.info(f"[CIRCLE] Transaction created: {transaction.id} - State: {transaction.state}")
        return transaction

    async def get_transaction(self, transaction_id: str) -> TransactionRecord:
        body = await self._request("GET", f"/transactions/{transaction_id}")
        return decode_transaction(body)

    async def wait_for_transaction(
        self,
        transaction_id: str,
        deadline: Optional[float] = None
    ) -> TransactionRecord:
        """Poll a transaction until it reaches a terminal state.

        Raises:
            errors.ExternalServiceError: FAILED or DENIED
            errors.TimeoutError: poll budget exhausted
        """
        async def probe() -> Optional[TransactionRecord]:
            transaction = await self.get_transaction(transaction_id)
            logger.debug(f"[CIRCLE] Tx {transaction_id}: {transaction.state}")
            if transaction.is_success:
                return transaction
            if transaction.is_failure:
                reason = f" ({transaction.error_reason})" if transaction.error_reason else ""
                raise errors.ExternalServiceError(
                    f"Transaction {transaction.state}{reason}",
                    details={"transaction_id": transaction_id, "state": transaction.state}
                )
            return None

        return await self.poll_policy.poll(
            probe,
            description=f"transaction {transaction_id}",
            deadline=deadline
        )
