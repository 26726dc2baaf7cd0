"""
Bridge Orchestrator

Central coordinator for cross-chain USDC transfers.
Drives the burn -> attestation -> mint flow against the custodial signing
service and the attestation oracle, persisting every transition.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from . import errors
from .attestation_client import AttestationClient
from .chains import ChainDescriptor, ChainRegistry, default_registry
from .circle_client import CircleWalletClient
from .config import BridgeConfig
from .encoding import (
    ANY_CALLER,
    FINALITY_STANDARD,
    MIN_FEE_UNITS,
    address_to_bytes32,
    check_fee,
    compute_max_fee,
    parse_usdc_amount,
)
from .models import AttestationMessage, Transfer, TransferStatus
from .polling import PollPolicy
from .store import SQLiteTransferStore, TransferStore
from .wallets import WalletDirectory

logger = logging.getLogger(__name__)

APPROVE_SIGNATURE = "approve(address,uint256)"
DEPOSIT_FOR_BURN_SIGNATURE = (
    "depositForBurn(uint256,uint32,bytes32,address,bytes32,uint256,uint32)"
)
RECEIVE_MESSAGE_SIGNATURE = "receiveMessage(bytes,bytes)"

ProgressCallback = Callable[[TransferStatus, str], Any]


@dataclass
class BridgeInitResult:
    transfer_id: str
    transaction_id: str
    status: TransferStatus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "transactionId": self.transaction_id,
            "status": self.status.value,
        }


@dataclass
class MintResult:
    mint_tx_hash: str


@dataclass
class BridgeStatusResult:
    """Snapshot of a transfer returned to callers"""
    transfer_id: str
    status: TransferStatus
    burn_tx_hash: Optional[str]
    mint_tx_hash: Optional[str]
    message: Optional[str]
    attestation: Optional[str]
    source_chain: str
    destination_chain: str
    amount: str
    burn_tx_url: Optional[str] = None
    mint_tx_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transferId": self.transfer_id,
            "status": self.status.value,
            "burnTxHash": self.burn_tx_hash,
            "mintTxHash": self.mint_tx_hash,
            "message": self.message,
            "attestation": self.attestation,
            "sourceChain": self.source_chain,
            "destinationChain": self.destination_chain,
            "amount": self.amount,
            "burnTxUrl": self.burn_tx_url,
            "mintTxUrl": self.mint_tx_url,
        }


class BridgeOrchestrator:
    """Runs transfers through pending -> burning -> waiting_attestation ->
    ready_to_mint -> minting -> completed, with failed reachable from any
    non-terminal state.

    Args:
        registry: Supported chains
        execution_client: Custodial signing service client (None for a read-only orchestrator)
        attestation_client: Attestation oracle client
        store: Transfer record store
        wallets: User wallet lookup
        attestation_policy: Poll policy for attestation waits
        min_fee_units: Fee floor in base units
        finality_threshold: Minimum finality the oracle must observe before attesting
    """

    def __init__(
        self,
        registry: ChainRegistry,
        execution_client: Optional[CircleWalletClient],
        attestation_client: AttestationClient,
        store: TransferStore,
        wallets: WalletDirectory,
        attestation_policy: Optional[PollPolicy] = None,
        min_fee_units: int = MIN_FEE_UNITS,
        finality_threshold: int = FINALITY_STANDARD
    ):
        self.registry = registry
        self.execution = execution_client
        self.attestations = attestation_client
        self.store = store
        self.wallets = wallets
        self.attestation_policy = attestation_policy or PollPolicy(max_attempts=60, interval=30.0)
        self.min_fee_units = min_fee_units
        self.finality_threshold = finality_threshold
        self._observer_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Burn phase
    # ------------------------------------------------------------------

    async def initiate_bridge(
        self,
        user_id: str,
        source_chain: str,
        destination_chain: str,
        amount: str,
        recipient_address: Optional[str] = None,
        deadline: Optional[float] = None
    ) -> BridgeInitResult:
        """Approve and burn USDC on the source chain.

        Raises:
            errors.ValidationError: read-only orchestrator, unknown chain, bad amount,
                amount below fee
            errors.NotFoundError: no source wallet or destination address
            errors.ExternalServiceError / errors.TimeoutError: approve or burn
                failed; the transfer is marked failed
        """
        execution = self._require_execution()
        if not user_id:
            raise errors.ValidationError("user_id is required")
        source = self.registry.get(source_chain)
        destination = self.registry.get(destination_chain)
        if source.key == destination.key:
            raise errors.ValidationError("Source and destination chains must differ")

        amount_units = parse_usdc_amount(amount)
        max_fee = compute_max_fee(amount_units, self.min_fee_units)
        check_fee(amount_units, max_fee)

        source_wallet = await self.wallets.get_wallet(user_id, source.blockchain)
        if source_wallet is None:
            raise errors.NotFoundError(
                f"No wallet found for source chain: {source.key}",
                {"user_id": user_id, "chain": source.key}
            )

        destination_address = recipient_address
        if not destination_address:
            destination_wallet = await self.wallets.get_wallet(user_id, destination.blockchain)
            destination_address = destination_wallet.address if destination_wallet else None
        if not destination_address:
            raise errors.NotFoundError(
                "No destination address available",
                {"user_id": user_id, "chain": destination.key}
            )
        mint_recipient = address_to_bytes32(destination_address)

        amount = amount.strip()
        transfer = await self.store.create(user_id, source.key, destination.key, amount)
        await self._transition(transfer.id, [TransferStatus.PENDING], TransferStatus.BURNING)

        logger.info(
            f"Initiating bridge {transfer.id}: {amount} USDC from {source.key} to {destination.key}"
        )

        try:
            logger.info(f"Step 1: Approving USDC for transfer {transfer.id}")
            approval = await execution.execute(
                source_wallet.wallet_id,
                source.token_address,
                APPROVE_SIGNATURE,
                [source.messenger_address, str(amount_units)]
            )
            await execution.wait_for_transaction(approval.id, deadline=deadline)
            logger.info(f"USDC approval confirmed for transfer {transfer.id}")

            logger.info(
                f"Step 2: Burning USDC for transfer {transfer.id} "
                f"(amount={amount_units}, maxFee={max_fee}, domain={destination.domain_id})"
            )
            burn = await execution.execute(
                source_wallet.wallet_id,
                source.messenger_address,
                DEPOSIT_FOR_BURN_SIGNATURE,
                [
                    str(amount_units),
                    str(destination.domain_id),
                    mint_recipient,
                    source.token_address,
                    ANY_CALLER,
                    str(max_fee),
                    str(self.finality_threshold),
                ]
            )
            burn_tx = await execution.wait_for_transaction(burn.id, deadline=deadline)
            if not burn_tx.tx_hash:
                raise errors.ExternalServiceError(
                    "Burn transaction confirmed without a transaction hash",
                    details={"transaction_id": burn.id}
                )

            await self._transition(
                transfer.id,
                [TransferStatus.BURNING],
                TransferStatus.WAITING_ATTESTATION,
                burn_tx_hash=burn_tx.tx_hash
            )
            logger.info(f"Bridge burn completed for {transfer.id}: {burn_tx.tx_hash}")

        except (Exception, asyncio.CancelledError) as e:
            logger.error(f"Bridge initiation failed for {transfer.id}: {e!r}")
            await self._mark_failed(transfer.id, e)
            raise

        return BridgeInitResult(
            transfer_id=transfer.id,
            transaction_id=burn.id,
            status=TransferStatus.WAITING_ATTESTATION
        )

    # ------------------------------------------------------------------
    # Attestation phase
    # ------------------------------------------------------------------

    async def check_attestation(self, burn_tx_hash: str, source_domain: int) -> Optional[AttestationMessage]:
        """Single oracle lookup.

        Returns:
            The first message for the burn, or None when the oracle has not
            seen it yet. Check ``is_complete`` on the result.
        """
        messages = await self.attestations.get_messages(source_domain, burn_tx_hash)
        if not messages:
            return None
        return messages[0]

    async def wait_for_attestation(
        self,
        burn_tx_hash: str,
        source_domain: int,
        deadline: Optional[float] = None
    ) -> AttestationMessage:
        """Poll the oracle until the burn is attested. Does not touch the store.

        Raises:
            errors.TimeoutError: poll budget exhausted or deadline reached
        """
        async def probe() -> Optional[AttestationMessage]:
            attestation = await self.check_attestation(burn_tx_hash, source_domain)
            if attestation is not None and attestation.is_complete:
                return attestation
            return None

        return await self.attestation_policy.poll(
            probe,
            description=f"attestation of {burn_tx_hash}",
            deadline=deadline
        )

    async def record_attestation(self, transfer_id: str, attestation: AttestationMessage) -> Transfer:
        """Persist waiting_attestation -> ready_to_mint with the attestation payload.

        Raises:
            errors.TransferStateError: the transfer failed before the record was written
        """
        updated = await self._store_attestation(transfer_id, attestation)
        if updated is None:
            # Someone else already recorded it (or moved further)
            current = await self._require_transfer(transfer_id)
            if current.status == TransferStatus.FAILED:
                raise errors.TransferStateError(
                    f"Transfer {transfer_id} has failed",
                    {"transfer_id": transfer_id}
                )
            return current
        return updated

    async def _store_attestation(self, transfer_id: str, attestation: AttestationMessage) -> Optional[Transfer]:
        updated = await self.store.transition(
            transfer_id,
            [TransferStatus.WAITING_ATTESTATION],
            TransferStatus.READY_TO_MINT,
            message=attestation.message,
            attestation=attestation.attestation
        )
        if updated is not None:
            logger.info(f"Attestation received for transfer {transfer_id}")
        return updated

    # ------------------------------------------------------------------
    # Mint phase
    # ------------------------------------------------------------------

    async def complete_bridge(
        self,
        transfer_id: str,
        user_id: str,
        message: str,
        attestation: str,
        deadline: Optional[float] = None
    ) -> MintResult:
        """Submit the attested message on the destination chain.

        Calling this again for a completed transfer returns the stored mint
        hash without submitting anything.

        Raises:
            errors.NotFoundError: unknown transfer or no destination wallet
            errors.TransferStateError: transfer cannot be minted from its status
            errors.MessageAlreadyReceivedError: destination reports the message
                as already consumed; the transfer is marked failed
        """
        transfer = await self._require_transfer(transfer_id)
        if transfer.status == TransferStatus.COMPLETED and transfer.mint_tx_hash:
            logger.info(f"Transfer {transfer_id} already completed with txHash: {transfer.mint_tx_hash}")
            return MintResult(mint_tx_hash=transfer.mint_tx_hash)

        execution = self._require_execution()
        if not message or not attestation:
            raise errors.ValidationError("message and attestation are required")

        destination = self.registry.get(transfer.destination_chain)
        destination_wallet = await self.wallets.get_wallet(user_id, destination.blockchain)
        if destination_wallet is None:
            raise errors.NotFoundError(
                f"No wallet found for destination chain: {destination.key}",
                {"user_id": user_id, "chain": destination.key}
            )

        if transfer.status == TransferStatus.WAITING_ATTESTATION:
            await self.record_attestation(
                transfer_id,
                AttestationMessage(message=message, attestation=attestation, status="complete")
            )

        claimed = await self.store.transition(
            transfer_id,
            [TransferStatus.READY_TO_MINT],
            TransferStatus.MINTING,
            message=message,
            attestation=attestation
        )
        if claimed is None:
            current = await self._require_transfer(transfer_id)
            if current.status == TransferStatus.COMPLETED and current.mint_tx_hash:
                return MintResult(mint_tx_hash=current.mint_tx_hash)
            raise errors.TransferStateError(
                f"Transfer {transfer_id} cannot be minted from status {current.status.value}",
                {"transfer_id": transfer_id, "status": current.status.value}
            )

        logger.info(
            f"Step 3: Minting USDC on {destination.name} for transfer {transfer_id} "
            f"(message {len(message)} chars, attestation {len(attestation)} chars)"
        )
        try:
            mint = await execution.execute(
                destination_wallet.wallet_id,
                destination.receiver_address,
                RECEIVE_MESSAGE_SIGNATURE,
                [message, attestation]
            )
            mint_tx = await execution.wait_for_transaction(mint.id, deadline=deadline)
            mint_tx_hash = mint_tx.tx_hash
            if not mint_tx_hash:
                raise errors.ExternalServiceError(
                    "Mint transaction confirmed without a transaction hash",
                    details={"transaction_id": mint.id}
                )
        except errors.ExternalServiceError as e:
            await self._mark_failed(transfer_id, e)
            if errors.is_already_received(e) and not isinstance(e, errors.MessageAlreadyReceivedError):
                logger.warning(f"Message for transfer {transfer_id} may have been already processed")
                raise errors.MessageAlreadyReceivedError(
                    e.message,
                    status_code=e.status_code,
                    details={"transfer_id": transfer_id, **e.details}
                ) from e
            raise
        except (Exception, asyncio.CancelledError) as e:
            await self._mark_failed(transfer_id, e)
            raise

        await self._transition(
            transfer_id,
            [TransferStatus.MINTING],
            TransferStatus.COMPLETED,
            mint_tx_hash=mint_tx_hash
        )
        logger.info(f"Bridge completed for {transfer_id}: {mint_tx_hash}")
        return MintResult(mint_tx_hash=mint_tx_hash)

    # ------------------------------------------------------------------
    # Status and composition
    # ------------------------------------------------------------------

    async def get_bridge_status(self, transfer_id: str) -> BridgeStatusResult:
        """Return the stored transfer, recording a newly completed attestation first."""
        transfer = await self._require_transfer(transfer_id)

        if transfer.status == TransferStatus.WAITING_ATTESTATION and transfer.burn_tx_hash:
            source = self.registry.find(transfer.source_chain)
            if source is not None:
                try:
                    attestation = await self.check_attestation(transfer.burn_tx_hash, source.domain_id)
                except errors.ExternalServiceError as e:
                    # Status reads stay available while the oracle is down
                    logger.warning(f"Failed to check attestation status for {transfer_id}: {e}")
                    attestation = None
                if attestation is not None and attestation.is_complete:
                    updated = await self._store_attestation(transfer_id, attestation)
                    # Lost the race: report whatever the record says now
                    transfer = updated or await self._require_transfer(transfer_id)

        return self._status_result(transfer)

    async def get_transfer_history(self, user_id: str) -> Dict[str, List[BridgeStatusResult]]:
        pending = await self.store.get_pending(user_id)
        finished = await self.store.get_finished(user_id)
        return {
            "pending": [self._status_result(t) for t in pending],
            "completed": [self._status_result(t) for t in finished],
        }

    async def execute_bridge_flow(
        self,
        user_id: str,
        source_chain: str,
        destination_chain: str,
        amount: str,
        on_progress: Optional[ProgressCallback] = None,
        recipient_address: Optional[str] = None,
        deadline: Optional[float] = None
    ) -> BridgeStatusResult:
        """initiate -> wait for attestation -> ready_to_mint -> complete."""
        self._notify(on_progress, TransferStatus.BURNING, "Initiating burn on source chain...")
        init = await self.initiate_bridge(
            user_id, source_chain, destination_chain, amount,
            recipient_address=recipient_address, deadline=deadline
        )
        return await self._finish(init.transfer_id, user_id, on_progress, deadline)

    async def resume_bridge(
        self,
        transfer_id: str,
        user_id: str,
        on_progress: Optional[ProgressCallback] = None,
        deadline: Optional[float] = None
    ) -> BridgeStatusResult:
        """Continue a stored transfer from where it stopped."""
        transfer = await self._require_transfer(transfer_id)
        if transfer.status not in (
            TransferStatus.WAITING_ATTESTATION,
            TransferStatus.READY_TO_MINT,
            TransferStatus.COMPLETED,
        ):
            raise errors.TransferStateError(
                f"Transfer {transfer_id} cannot be resumed from status {transfer.status.value}",
                {"transfer_id": transfer_id, "status": transfer.status.value}
            )
        logger.info(f"Resuming transfer {transfer_id} from {transfer.status.value}")
        return await self._finish(transfer_id, user_id, on_progress, deadline)

    async def _finish(
        self,
        transfer_id: str,
        user_id: str,
        on_progress: Optional[ProgressCallback],
        deadline: Optional[float]
    ) -> BridgeStatusResult:
        transfer = await self._require_transfer(transfer_id)

        if transfer.status == TransferStatus.WAITING_ATTESTATION:
            if not transfer.burn_tx_hash:
                raise errors.ExternalServiceError("Burn transaction hash not available")
            source = self.registry.get(transfer.source_chain)
            self._notify(
                on_progress,
                TransferStatus.WAITING_ATTESTATION,
                "Waiting for attestation (this may take ~15-25 minutes)..."
            )
            attestation = await self.wait_for_attestation(
                transfer.burn_tx_hash, source.domain_id, deadline=deadline
            )
            transfer = await self.record_attestation(transfer_id, attestation)

        if transfer.status == TransferStatus.READY_TO_MINT:
            self._notify(on_progress, TransferStatus.MINTING, "Minting on destination chain...")
            await self.complete_bridge(
                transfer_id, user_id, transfer.message, transfer.attestation, deadline=deadline
            )

        result = await self.get_bridge_status(transfer_id)
        if result.status == TransferStatus.COMPLETED:
            self._notify(on_progress, TransferStatus.COMPLETED, "Bridge completed successfully!")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_transfer(self, transfer_id: str) -> Transfer:
        transfer = await self.store.get_by_id(transfer_id)
        if transfer is None:
            raise errors.NotFoundError(f"Transfer not found: {transfer_id}", {"transfer_id": transfer_id})
        return transfer

    async def _transition(self, transfer_id: str, expected, status: TransferStatus, **fields) -> Transfer:
        updated = await self.store.transition(transfer_id, expected, status, **fields)
        if updated is None:
            current = await self._require_transfer(transfer_id)
            raise errors.TransferStateError(
                f"Transfer {transfer_id} moved to {current.status.value} concurrently",
                {"transfer_id": transfer_id, "status": current.status.value}
            )
        return updated

    async def _mark_failed(self, transfer_id: str, error: BaseException) -> None:
        non_terminal = [s for s in TransferStatus if not s.is_terminal]
        await self.store.transition(
            transfer_id,
            non_terminal,
            TransferStatus.FAILED,
            error_message=str(error) or type(error).__name__
        )

    def _status_result(self, transfer: Transfer) -> BridgeStatusResult:
        source = self.registry.find(transfer.source_chain)
        destination = self.registry.find(transfer.destination_chain)
        return BridgeStatusResult(
            transfer_id=transfer.id,
            status=transfer.status,
            burn_tx_hash=transfer.burn_tx_hash,
            mint_tx_hash=transfer.mint_tx_hash,
            message=transfer.message,
            attestation=transfer.attestation,
            source_chain=transfer.source_chain,
            destination_chain=transfer.destination_chain,
            amount=transfer.amount,
            burn_tx_url=self._tx_url(source, transfer.burn_tx_hash),
            mint_tx_url=self._tx_url(destination, transfer.mint_tx_hash),
        )

    @staticmethod
    def _tx_url(chain: Optional[ChainDescriptor], tx_hash: Optional[str]) -> Optional[str]:
        if chain is None or not tx_hash:
            return None
        return f"{chain.explorer_url}/tx/{tx_hash}"

    def _notify(self, callback: Optional[ProgressCallback], status: TransferStatus, text: str) -> None:
        """Fire-and-forget progress notification"""
        logger.info(f"Bridge {status.value}: {text}")
        if callback is None:
            return
        try:
            result = callback(status, text)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._observer_tasks.add(task)
            task.add_done_callback(self._observer_done)

    def _observer_done(self, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Progress callback failed: {task.exception()}")

    def _require_execution(self) -> CircleWalletClient:
        if self.execution is None:
            raise errors.ValidationError("Signing service credentials are required for this operation")
        return self.execution

    async def close(self) -> None:
        """Cancel outstanding progress callbacks, close HTTP sessions and the store"""
        pending = list(self._observer_tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._observer_tasks.clear()

        if self.execution is not None:
            await self.execution.close()
        await self.attestations.close()
        await self.store.close()


# Factory function
def create_bridge_orchestrator(
    config: BridgeConfig,
    wallets: WalletDirectory,
    store: Optional[TransferStore] = None,
    registry: Optional[ChainRegistry] = None,
    read_only: bool = False
) -> BridgeOrchestrator:
    """Wire clients, store and registry from a BridgeConfig

    With ``read_only`` no signing service client is built, so status and
    history work without credentials; initiate and complete are refused.
    """

    execution = None
    if not read_only:
        execution = CircleWalletClient(
            api_key=config.circle_api_key,
            entity_secret=config.circle_entity_secret,
            base_url=config.circle_api_url,
            poll_policy=PollPolicy(
                max_attempts=config.tx_poll_attempts,
                interval=config.tx_poll_interval
            )
        )
    return BridgeOrchestrator(
        registry=registry or default_registry(config.rpc_overrides),
        execution_client=execution,
        attestation_client=AttestationClient(config.attestation_api_url),
        store=store or SQLiteTransferStore(config.database_path),
        wallets=wallets,
        attestation_policy=PollPolicy(
            max_attempts=config.attestation_poll_attempts,
            interval=config.attestation_poll_interval
        ),
        min_fee_units=config.min_fee_units,
        finality_threshold=config.finality_threshold
    )
