"""Bridge configuration.

Values come from the process environment, optionally seeded from a ``.env``
file found by searching up from the current directory.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

from dotenv import load_dotenv

from . import errors
from .encoding import FINALITY_STANDARD, MIN_FEE_UNITS

logger = logging.getLogger(__name__)

CIRCLE_API_URL = "https://api.circle.com/v1/w3s"

ATTESTATION_API_URLS = {
    "testnet": "https://iris-api-sandbox.circle.com/v2/messages",
    "mainnet": "https://iris-api.circle.com/v2/messages",
}

# Chain key -> environment variable holding an RPC override
RPC_ENV_VARS = {
    "ETH_SEPOLIA": "ETH_SEPOLIA_RPC",
    "OP_SEPOLIA": "OPT_SEPOLIA_RPC",
    "ARB_SEPOLIA": "ARB_SEPOLIA_RPC",
    "BASE_SEPOLIA": "BASE_SEPOLIA_RPC",
    "ARC_TESTNET": "ARC_TESTNET_RPC",
}


def find_dotenv() -> Optional[str]:
    """Find .env file, searching up from current directory."""
    current = Path.cwd()
    while current != current.parent:
        env_path = current / ".env"
        if env_path.exists():
            return str(env_path)
        current = current.parent
    return None


def init_environment(override: bool = False) -> Optional[str]:
    """Load the nearest .env file into os.environ.

    Returns:
        Path of the loaded file, or None when no file was found.
    """
    env_path = find_dotenv()
    if env_path:
        load_dotenv(env_path, override=override)
        logger.debug(f"Loaded environment from {env_path}")
    return env_path


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise errors.ValidationError(f"{name} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise errors.ValidationError(f"{name} must be a number, got {raw!r}")


@dataclass
class BridgeConfig:
    """Runtime settings for the bridge"""
    circle_api_key: str = ""
    circle_entity_secret: str = ""
    environment: str = "testnet"
    circle_api_url: str = CIRCLE_API_URL
    attestation_api_url: str = ATTESTATION_API_URLS["testnet"]
    min_fee_units: int = MIN_FEE_UNITS
    finality_threshold: int = FINALITY_STANDARD
    tx_poll_attempts: int = 60
    tx_poll_interval: float = 3.0
    attestation_poll_attempts: int = 60
    attestation_poll_interval: float = 30.0
    database_path: str = "data/bridge.db"
    log_level: str = "INFO"
    rpc_overrides: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, load_file: bool = True) -> "BridgeConfig":
        """Build a config from environment variables.

        Args:
            env: Mapping to read instead of os.environ (tests)
            load_file: Load the nearest .env file first
        """
        if env is None:
            if load_file:
                init_environment()
            env = os.environ

        environment = env.get("CIRCLE_ENV", "testnet").lower()
        if environment not in ATTESTATION_API_URLS:
            raise errors.ValidationError(
                f"CIRCLE_ENV must be one of {sorted(ATTESTATION_API_URLS)}, got {environment!r}"
            )

        rpc_overrides = {
            key: env[var] for key, var in RPC_ENV_VARS.items() if env.get(var)
        }

        return cls(
            circle_api_key=env.get("CIRCLE_API_KEY", ""),
            circle_entity_secret=env.get("CIRCLE_ENTITY_SECRET", ""),
            environment=environment,
            circle_api_url=env.get("CIRCLE_API_URL") or CIRCLE_API_URL,
            attestation_api_url=env.get("ATTESTATION_API_URL") or ATTESTATION_API_URLS[environment],
            min_fee_units=_int(env, "BRIDGE_MIN_FEE_UNITS", MIN_FEE_UNITS),
            finality_threshold=_int(env, "BRIDGE_FINALITY_THRESHOLD", FINALITY_STANDARD),
            tx_poll_attempts=_int(env, "BRIDGE_TX_POLL_ATTEMPTS", 60),
            tx_poll_interval=_float(env, "BRIDGE_TX_POLL_INTERVAL", 3.0),
            attestation_poll_attempts=_int(env, "BRIDGE_ATTESTATION_POLL_ATTEMPTS", 60),
            attestation_poll_interval=_float(env, "BRIDGE_ATTESTATION_POLL_INTERVAL", 30.0),
            database_path=env.get("BRIDGE_DB_PATH") or "data/bridge.db",
            log_level=(env.get("BRIDGE_LOG_LEVEL") or "INFO").upper(),
            rpc_overrides=rpc_overrides,
        )
