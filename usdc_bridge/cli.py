#!/usr/bin/env python3
"""
USDC Bridge CLI
Drive cross-chain transfers from the command line

Usage:
    usdc-bridge chains
    usdc-bridge bridge USER SOURCE DEST AMOUNT [--recipient ADDRESS]
    usdc-bridge initiate USER SOURCE DEST AMOUNT [--recipient ADDRESS]
    usdc-bridge status TRANSFER_ID
    usdc-bridge complete TRANSFER_ID USER
    usdc-bridge resume TRANSFER_ID USER
    usdc-bridge history USER
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Awaitable, Callable

from . import errors
from .chains import default_registry
from .config import BridgeConfig
from .models import TransferStatus
from .orchestrator import BridgeOrchestrator, BridgeStatusResult, create_bridge_orchestrator
from .store import SQLiteTransferStore
from .wallets import JsonWalletDirectory

logger = logging.getLogger(__name__)

DEFAULT_WALLETS_PATH = "data/wallets.json"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - [%(levelname)s] - %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def print_status(result: BridgeStatusResult, as_json: bool = False) -> None:
    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return
    print(f"Transfer {result.transfer_id}")
    print(f"   Status: {result.status.value}")
    print(f"   Route: {result.amount} USDC {result.source_chain} -> {result.destination_chain}")
    if result.burn_tx_hash:
        print(f"   Burn tx: {result.burn_tx_url or result.burn_tx_hash}")
    if result.mint_tx_hash:
        print(f"   Mint tx: {result.mint_tx_url or result.mint_tx_hash}")


def print_progress(status: TransferStatus, text: str) -> None:
    print(f"⏳ [{status.value}] {text}")


def cmd_chains(args, config: BridgeConfig) -> int:
    """List supported chains"""
    registry = default_registry(config.rpc_overrides)
    for chain in registry:
        print(f"{chain.key:<14} domain={chain.domain_id:<3} {chain.name} ({chain.blockchain})")
    return 0


def cmd_history(args, config: BridgeConfig) -> int:
    """Show pending and finished transfers for a user"""
    async def run() -> int:
        store = SQLiteTransferStore(args.db or config.database_path)
        pending = await store.get_pending(args.user)
        finished = await store.get_finished(args.user)
        if args.json:
            print(json.dumps({
                "pending": [t.to_dict() for t in pending],
                "completed": [t.to_dict() for t in finished],
            }, indent=2))
            return 0
        print(f"Pending ({len(pending)}):")
        for t in pending:
            print(f"   {t.id}  {t.status.value:<20} {t.amount} USDC {t.source_chain} -> {t.destination_chain}")
        print(f"Finished ({len(finished)}):")
        for t in finished:
            print(f"   {t.id}  {t.status.value:<20} {t.amount} USDC {t.source_chain} -> {t.destination_chain}")
        return 0

    return asyncio.run(run())


def _with_orchestrator(
    args,
    config: BridgeConfig,
    action: Callable[[BridgeOrchestrator], Awaitable[int]],
    read_only: bool = False
) -> int:
    async def run() -> int:
        wallets = JsonWalletDirectory(args.wallets or DEFAULT_WALLETS_PATH)
        store = SQLiteTransferStore(args.db or config.database_path)
        orchestrator = create_bridge_orchestrator(config, wallets, store=store, read_only=read_only)
        try:
            return await action(orchestrator)
        finally:
            await orchestrator.close()

    return asyncio.run(run())


def cmd_bridge(args, config: BridgeConfig) -> int:
    """Run the full automated flow"""
    async def action(orchestrator: BridgeOrchestrator) -> int:
        result = await orchestrator.execute_bridge_flow(
            args.user, args.source, args.dest, args.amount,
            on_progress=print_progress,
            recipient_address=args.recipient
        )
        print(f"✅ Bridge finished")
        print_status(result, args.json)
        return 0

    return _with_orchestrator(args, config, action)


def cmd_initiate(args, config: BridgeConfig) -> int:
    """Burn on the source chain only"""
    async def action(orchestrator: BridgeOrchestrator) -> int:
        result = await orchestrator.initiate_bridge(
            args.user, args.source, args.dest, args.amount,
            recipient_address=args.recipient
        )
        if args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            print(f"✅ Burn confirmed for transfer {result.transfer_id}")
            print(f"   Status: {result.status.value}")
            print(f"   Run 'status {result.transfer_id}' to check the attestation")
        return 0

    return _with_orchestrator(args, config, action)


def cmd_status(args, config: BridgeConfig) -> int:
    """Show a transfer, recording a completed attestation"""
    async def action(orchestrator: BridgeOrchestrator) -> int:
        print_status(await orchestrator.get_bridge_status(args.transfer_id), args.json)
        return 0

    return _with_orchestrator(args, config, action, read_only=True)


def cmd_complete(args, config: BridgeConfig) -> int:
    """Mint a transfer whose attestation is recorded"""
    async def action(orchestrator: BridgeOrchestrator) -> int:
        status = await orchestrator.get_bridge_status(args.transfer_id)
        if status.status not in (TransferStatus.READY_TO_MINT, TransferStatus.COMPLETED):
            print(f"❌ Error: Transfer is {status.status.value}, attestation not ready")
            return 1
        result = await orchestrator.complete_bridge(
            args.transfer_id, args.user, status.message or "", status.attestation or ""
        )
        print(f"✅ Mint confirmed: {result.mint_tx_hash}")
        return 0

    return _with_orchestrator(args, config, action)


def cmd_resume(args, config: BridgeConfig) -> int:
    """Continue a transfer after a restart"""
    async def action(orchestrator: BridgeOrchestrator) -> int:
        result = await orchestrator.resume_bridge(
            args.transfer_id, args.user, on_progress=print_progress
        )
        print_status(result, args.json)
        return 0

    return _with_orchestrator(args, config, action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="usdc-bridge",
        description="USDC Bridge CLI - Move USDC between chains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s chains                                         # List supported chains
    %(prog)s bridge user-1 ETH_SEPOLIA BASE_SEPOLIA 10.5    # Full automated transfer
    %(prog)s initiate user-1 ETH_SEPOLIA ARB_SEPOLIA 1      # Burn only
    %(prog)s status <transfer-id>                           # Check / record attestation
    %(prog)s complete <transfer-id> user-1                  # Mint after attestation
    %(prog)s resume <transfer-id> user-1                    # Continue after a restart
    %(prog)s history user-1                                 # List transfers
        """
    )
    parser.add_argument("--db", help="SQLite database path (default: BRIDGE_DB_PATH)")
    parser.add_argument("--wallets", help=f"Wallet directory JSON (default: {DEFAULT_WALLETS_PATH})")
    parser.add_argument("--json", action="store_true", help="Print JSON output")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("chains", help="List supported chains")

    for name, help_text in (("bridge", "Run a full transfer"), ("initiate", "Burn on the source chain")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("user", help="User id")
        sub.add_argument("source", help="Source chain key")
        sub.add_argument("dest", help="Destination chain key")
        sub.add_argument("amount", help="Amount in USDC, e.g. 10.5")
        sub.add_argument("--recipient", "-r", help="Destination address (default: user's wallet)")

    status_parser = subparsers.add_parser("status", help="Show transfer status")
    status_parser.add_argument("transfer_id")

    for name, help_text in (("complete", "Mint an attested transfer"), ("resume", "Resume a transfer")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("transfer_id")
        sub.add_argument("user", help="User id")

    history_parser = subparsers.add_parser("history", help="List a user's transfers")
    history_parser.add_argument("user", help="User id")

    return parser


COMMANDS = {
    "chains": cmd_chains,
    "bridge": cmd_bridge,
    "initiate": cmd_initiate,
    "status": cmd_status,
    "complete": cmd_complete,
    "resume": cmd_resume,
    "history": cmd_history,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = BridgeConfig.from_env()
        setup_logging(config.log_level)
        return COMMANDS[args.command](args, config)
    except errors.BridgeError as e:
        print(f"❌ Error: {e.message}")
        logger.debug(f"{e.error_code}: {e.details}")
        return 1
    except KeyboardInterrupt:
        print("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
