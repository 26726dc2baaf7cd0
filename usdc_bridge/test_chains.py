#!/usr/bin/env python3
"""
Chain registry tests
"""

from dataclasses import replace

import pytest
from web3 import Web3

from usdc_bridge import errors
from usdc_bridge.chains import TOKEN_MESSENGER_V2, ChainRegistry, default_registry


class TestDefaultRegistry:

    def test_supported_chains(self, registry):
        assert registry.keys() == ["ETH_SEPOLIA", "OP_SEPOLIA", "ARB_SEPOLIA", "BASE_SEPOLIA", "ARC_TESTNET"]
        assert [c.domain_id for c in registry] == [0, 2, 3, 6, 26]
        assert len(registry) == 5

    def test_addresses_are_checksummed(self, registry):
        chain = registry.get("ARC_TESTNET")
        assert chain.token_address == "0x3600000000000000000000000000000000000000"
        assert Web3.is_checksum_address(chain.messenger_address)
        assert chain.messenger_address.lower() == TOKEN_MESSENGER_V2.lower()

    def test_lookups(self, registry):
        assert "BASE_SEPOLIA" in registry
        assert registry.find("NOPE") is None
        assert registry.by_domain(6).key == "BASE_SEPOLIA"
        assert registry.by_domain(99) is None
        assert registry.by_blockchain("ARB-SEPOLIA").key == "ARB_SEPOLIA"

    def test_unknown_chain(self, registry):
        with pytest.raises(errors.ValidationError) as exc_info:
            registry.get("SOLANA")
        assert "ETH_SEPOLIA" in exc_info.value.details["supported"]

    def test_explorer_url(self, registry):
        assert registry.explorer_tx_url("BASE_SEPOLIA", "0xabc") == "https://sepolia.basescan.org/tx/0xabc"
        assert registry.explorer_tx_url("BASE_SEPOLIA", None) is None

    def test_rpc_overrides(self, monkeypatch):
        monkeypatch.setenv("ARB_SEPOLIA_RPC", "https://arb.example")
        registry = default_registry({"ETH_SEPOLIA": "https://eth.example"})

        assert registry.get("ETH_SEPOLIA").rpc_endpoint == "https://eth.example"
        assert registry.get("ARB_SEPOLIA").rpc_endpoint == "https://arb.example"


class TestValidation:

    def test_duplicate_key(self, registry):
        eth = registry.get("ETH_SEPOLIA")
        with pytest.raises(errors.ValidationError):
            ChainRegistry([eth, replace(eth, domain_id=100)])

    def test_duplicate_domain(self, registry):
        eth = registry.get("ETH_SEPOLIA")
        with pytest.raises(errors.ValidationError):
            ChainRegistry([eth, replace(eth, key="OTHER")])

    def test_bad_address(self, registry):
        with pytest.raises(errors.ValidationError):
            replace(registry.get("ETH_SEPOLIA"), token_address="0x1234")

    def test_domain_out_of_range(self, registry):
        with pytest.raises(errors.ValidationError):
            replace(registry.get("ETH_SEPOLIA"), domain_id=2 ** 32)
