"""
Shared fixtures for the bridge tests.
External services are replaced by in-process fakes.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from . import errors
from .chains import default_registry
from .models import AttestationMessage, TransactionRecord
from .orchestrator import BridgeOrchestrator
from .polling import PollPolicy
from .store import InMemoryTransferStore
from .wallets import InMemoryWalletDirectory

USER_ID = "user-1"
SOURCE_WALLET_ADDRESS = "0x1111111111111111111111111111111111111111"
DEST_WALLET_ADDRESS = "0x2222222222222222222222222222222222222222"
MESSAGE = "0x" + "ab" * 64
ATTESTATION = "0x" + "cd" * 65


class SimulatedClock:
    """Replaces asyncio.sleep / time.monotonic in poll policies"""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)

    def time(self) -> float:
        return self.now

    def policy(self, max_attempts: int = 5, interval: float = 1.0, **kwargs) -> PollPolicy:
        return PollPolicy(
            max_attempts=max_attempts,
            interval=interval,
            sleep=self.sleep,
            clock=self.time,
            **kwargs
        )


class FakeExecutionClient:
    """Signing service stand-in

    Every submitted call confirms on the first poll unless a failure is
    registered for its function signature.
    """

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.waits: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self.execute_failures: Dict[str, Exception] = {}
        self.wait_delay = 0.0
        self._signatures: Dict[str, str] = {}
        self.closed = False

    def fail_on(self, signature_prefix: str, error: Exception) -> None:
        self.failures[signature_prefix] = error

    def calls_for(self, signature_prefix: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["function_signature"].startswith(signature_prefix)]

    async def execute(self, wallet_id: str, contract_address: str, function_signature: str,
                      parameters: List[Any]) -> TransactionRecord:
        for prefix, error in self.execute_failures.items():
            if function_signature.startswith(prefix):
                raise error
        tx_id = f"tx-{len(self.calls) + 1}"
        self.calls.append({
            "id": tx_id,
            "wallet_id": wallet_id,
            "contract_address": contract_address,
            "function_signature": function_signature,
            "parameters": parameters,
        })
        self._signatures[tx_id] = function_signature
        return TransactionRecord(id=tx_id, state="INITIATED")

    async def wait_for_transaction(self, transaction_id: str,
                                   deadline: Optional[float] = None) -> TransactionRecord:
        self.waits.append(transaction_id)
        if self.wait_delay:
            await asyncio.sleep(self.wait_delay)
        signature = self._signatures[transaction_id]
        for prefix, error in self.failures.items():
            if signature.startswith(prefix):
                raise error
        return TransactionRecord(
            id=transaction_id,
            state="COMPLETE",
            tx_hash="0x" + transaction_id.encode().hex().rjust(64, "0")
        )

    async def close(self):
        self.closed = True


class FakeAttestationClient:
    """Attestation oracle stand-in returning queued responses"""

    def __init__(self):
        self.responses: List[Any] = []
        self.default: Optional[List[AttestationMessage]] = None
        self.queries: List[Any] = []
        self.closed = False

    def queue(self, *responses: Any) -> None:
        self.responses.extend(responses)

    async def get_messages(self, source_domain: int, tx_hash: str) -> Optional[List[AttestationMessage]]:
        self.queries.append((source_domain, tx_hash))
        response = self.responses.pop(0) if self.responses else self.default
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


def complete_messages(message: str = MESSAGE, attestation: str = ATTESTATION) -> List[AttestationMessage]:
    return [AttestationMessage(message=message, attestation=attestation, status="complete")]


def pending_messages() -> List[AttestationMessage]:
    return [AttestationMessage(message=MESSAGE, attestation="PENDING", status="pending")]


@pytest.fixture
def clock():
    return SimulatedClock()


@pytest.fixture
def registry():
    return default_registry()


@pytest.fixture
def wallets(registry):
    directory = InMemoryWalletDirectory()
    for chain in registry:
        directory.add_wallet(USER_ID, chain.blockchain, f"wallet-{chain.key.lower()}", DEST_WALLET_ADDRESS)
    directory.add_wallet(USER_ID, registry.get("ETH_SEPOLIA").blockchain, "wallet-eth_sepolia", SOURCE_WALLET_ADDRESS)
    return directory


@pytest.fixture
def store():
    return InMemoryTransferStore()


@pytest.fixture
def execution():
    return FakeExecutionClient()


@pytest.fixture
def attestations():
    return FakeAttestationClient()


@pytest.fixture
def orchestrator(registry, execution, attestations, store, wallets, clock):
    return BridgeOrchestrator(
        registry=registry,
        execution_client=execution,
        attestation_client=attestations,
        store=store,
        wallets=wallets,
        attestation_policy=clock.policy(max_attempts=5, interval=30.0),
    )


def already_received_error() -> errors.ExternalServiceError:
    return errors.ExternalServiceError("Transaction FAILED (Nonce already used)")
