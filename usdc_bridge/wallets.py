"""
Wallet Directory

Lookup of the custodial wallets a user holds on each blockchain.
Wallet provisioning itself happens in the signing service.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from . import errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletRef:
    """Custodial wallet held by a user on one blockchain"""
    wallet_id: str
    address: str
    blockchain: str

    def to_dict(self) -> Dict[str, str]:
        return {"walletId": self.wallet_id, "address": self.address, "blockchain": self.blockchain}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "WalletRef":
        return cls(wallet_id=data["walletId"], address=data["address"], blockchain=data["blockchain"])


class WalletDirectory(ABC):
    """Read contract for user wallets"""

    @abstractmethod
    async def get_wallet(self, user_id: str, blockchain: str) -> Optional[WalletRef]:
        ...

    async def list_wallets(self, user_id: str) -> List[WalletRef]:
        return []


class InMemoryWalletDirectory(WalletDirectory):
    def __init__(self):
        self._wallets: Dict[str, Dict[str, WalletRef]] = {}

    def add_wallet(self, user_id: str, blockchain: str, wallet_id: str, address: str) -> WalletRef:
        wallet = WalletRef(wallet_id=wallet_id, address=address, blockchain=blockchain)
        self._wallets.setdefault(user_id, {})[blockchain] = wallet
        return wallet

    async def get_wallet(self, user_id: str, blockchain: str) -> Optional[WalletRef]:
        return self._wallets.get(user_id, {}).get(blockchain)

    async def list_wallets(self, user_id: str) -> List[WalletRef]:
        return list(self._wallets.get(user_id, {}).values())


class JsonWalletDirectory(InMemoryWalletDirectory):
    """Wallet directory loaded from a JSON file

    Format::

        {"users": {"<user_id>": [{"blockchain": "ETH-SEPOLIA", "walletId": "...", "address": "0x..."}]}}
    """

    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            logger.info(f"No wallet file found at {self.path}")
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            for user_id, wallets in data.get("users", {}).items():
                for entry in wallets:
                    wallet = WalletRef.from_dict(entry)
                    self.add_wallet(user_id, wallet.blockchain, wallet.wallet_id, wallet.address)
        except (OSError, ValueError, KeyError, AttributeError, TypeError) as e:
            raise errors.ValidationError(f"Invalid wallet file {self.path}: {e}")
        logger.info(f"Loaded wallets for {len(self._wallets)} users from {self.path}")
