"""
Chain Registry

Static per-chain descriptors for the burn-and-mint protocol.
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

from web3 import Web3

from . import errors

logger = logging.getLogger(__name__)

# Testnet contracts share the same messenger and receiver addresses
TOKEN_MESSENGER_V2 = "0x8FE6B999Dc680CcFDD5Bf7EB0974218be2542DAA"
MESSAGE_TRANSMITTER_V2 = "0xE737e5cEBEEBa77EFE34D4aa090756590b1CE275"


@dataclass(frozen=True)
class ChainDescriptor:
    """Immutable description of one supported chain"""
    key: str
    name: str
    chain_id: int
    domain_id: int
    blockchain: str  # signing service identifier, e.g. ETH-SEPOLIA
    token_address: str
    messenger_address: str
    receiver_address: str
    rpc_endpoint: str
    explorer_url: str
    protocol_version: int = 2

    def __post_init__(self):
        if not 0 <= self.domain_id < 2 ** 32:
            raise errors.ValidationError(
                f"Domain id out of uint32 range for {self.key}",
                {"domain_id": self.domain_id}
            )
        for field_name in ("token_address", "messenger_address", "receiver_address"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not Web3.is_address(value.lower()):
                raise errors.ValidationError(
                    f"Invalid {field_name} for {self.key}: {value}"
                )
            object.__setattr__(self, field_name, Web3.to_checksum_address(value))


class ChainRegistry:
    """Lookup table of chain descriptors keyed by short chain identifier"""

    def __init__(self, chains: Iterable[ChainDescriptor]):
        self._chains: Dict[str, ChainDescriptor] = {}
        domains: Dict[int, str] = {}
        for chain in chains:
            if chain.key in self._chains:
                raise errors.ValidationError(f"Duplicate chain key: {chain.key}")
            if chain.domain_id in domains:
                raise errors.ValidationError(
                    f"Duplicate domain id {chain.domain_id} for {chain.key} and {domains[chain.domain_id]}"
                )
            self._chains[chain.key] = chain
            domains[chain.domain_id] = chain.key

    def __iter__(self) -> Iterator[ChainDescriptor]:
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)

    def __contains__(self, key: object) -> bool:
        return key in self._chains

    def keys(self) -> List[str]:
        return list(self._chains.keys())

    def find(self, key: str) -> Optional[ChainDescriptor]:
        return self._chains.get(key)

    def get(self, key: str) -> ChainDescriptor:
        """Get a chain by key, raising ValidationError if unknown"""
        chain = self._chains.get(key)
        if chain is None:
            raise errors.ValidationError(
                f"Unknown chain: {key}",
                {"chain": key, "supported": self.keys()}
            )
        return chain

    def by_domain(self, domain_id: int) -> Optional[ChainDescriptor]:
        for chain in self._chains.values():
            if chain.domain_id == domain_id:
                return chain
        return None

    def by_blockchain(self, blockchain: str) -> Optional[ChainDescriptor]:
        for chain in self._chains.values():
            if chain.blockchain == blockchain:
                return chain
        return None

    def explorer_tx_url(self, key: str, tx_hash: Optional[str]) -> Optional[str]:
        if not tx_hash:
            return None
        return f"{self.get(key).explorer_url}/tx/{tx_hash}"


def default_registry(rpc_overrides: Optional[Mapping[str, str]] = None) -> ChainRegistry:
    """Build the registry of supported testnets.

    Args:
        rpc_overrides: chain key -> RPC URL. Falls back to ``<KEY>_RPC``
            environment variables, then to a public endpoint.
    """
    overrides = dict(rpc_overrides or {})

    def rpc(key: str, env_name: str, default: str) -> str:
        return overrides.get(key) or os.getenv(env_name) or default

    chains = [
        ChainDescriptor(
            key="ETH_SEPOLIA",
            name="Ethereum Sepolia",
            chain_id=11155111,
            domain_id=0,
            blockchain="ETH-SEPOLIA",
            token_address="0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
            messenger_address=TOKEN_MESSENGER_V2,
            receiver_address=MESSAGE_TRANSMITTER_V2,
            rpc_endpoint=rpc("ETH_SEPOLIA", "ETH_SEPOLIA_RPC", "https://ethereum-sepolia-rpc.publicnode.com"),
            explorer_url="https://sepolia.etherscan.io",
        ),
        ChainDescriptor(
            key="OP_SEPOLIA",
            name="Optimism Sepolia",
            chain_id=11155420,
            domain_id=2,
            blockchain="OP-SEPOLIA",
            token_address="0x5fd84259d66Cd46123540766Be93DFE6D43130D7",
            messenger_address=TOKEN_MESSENGER_V2,
            receiver_address=MESSAGE_TRANSMITTER_V2,
            rpc_endpoint=rpc("OP_SEPOLIA", "OPT_SEPOLIA_RPC", "https://sepolia.optimism.io"),
            explorer_url="https://sepolia-optimism.etherscan.io",
        ),
        ChainDescriptor(
            key="ARB_SEPOLIA",
            name="Arbitrum Sepolia",
            chain_id=421614,
            domain_id=3,
            blockchain="ARB-SEPOLIA",
            token_address="0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d",
            messenger_address=TOKEN_MESSENGER_V2,
            receiver_address=MESSAGE_TRANSMITTER_V2,
            rpc_endpoint=rpc("ARB_SEPOLIA", "ARB_SEPOLIA_RPC", "https://sepolia-rollup.arbitrum.io/rpc"),
            explorer_url="https://sepolia.arbiscan.io",
        ),
        ChainDescriptor(
            key="BASE_SEPOLIA",
            name="Base Sepolia",
            chain_id=84532,
            domain_id=6,
            blockchain="BASE-SEPOLIA",
            token_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            messenger_address=TOKEN_MESSENGER_V2,
            receiver_address=MESSAGE_TRANSMITTER_V2,
            rpc_endpoint=rpc("BASE_SEPOLIA", "BASE_SEPOLIA_RPC", "https://sepolia.base.org"),
            explorer_url="https://sepolia.basescan.org",
        ),
        ChainDescriptor(
            key="ARC_TESTNET",
            name="Arc Testnet",
            chain_id=5042002,
            domain_id=26,
            blockchain="ARC-TESTNET",
            token_address="0x3600000000000000000000000000000000000000",
            messenger_address=TOKEN_MESSENGER_V2,
            receiver_address=MESSAGE_TRANSMITTER_V2,
            rpc_endpoint=rpc("ARC_TESTNET", "ARC_TESTNET_RPC", "https://rpc.testnet.arc.network/"),
            explorer_url="https://testnet.arcscan.app",
        ),
    ]
    logger.debug(f"Loaded {len(chains)} chain descriptors")
    return ChainRegistry(chains)
