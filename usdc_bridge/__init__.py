"""
USDC Cross-Chain Bridge

Moves USDC between chains by burning on the source chain, waiting for the
attestation oracle, and minting on the destination chain through a
custodial signing service.
"""

from .chains import ChainDescriptor, ChainRegistry, default_registry
from .config import BridgeConfig
from .models import Transfer, TransferStatus, TransactionRecord, AttestationMessage
from .orchestrator import (
    BridgeOrchestrator,
    BridgeInitResult,
    BridgeStatusResult,
    MintResult,
    create_bridge_orchestrator,
)

__all__ = [
    "ChainDescriptor",
    "ChainRegistry",
    "default_registry",
    "BridgeConfig",
    "Transfer",
    "TransferStatus",
    "TransactionRecord",
    "AttestationMessage",
    "BridgeOrchestrator",
    "BridgeInitResult",
    "BridgeStatusResult",
    "MintResult",
    "create_bridge_orchestrator",
]
