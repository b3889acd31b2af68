# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import unittest
from typing import Optional

from .account_address import AccountAddress
from .transactions import EntryFunction, RawTransaction, TransactionPayload


class ClientConfig:
    """Common configuration for building transactions"""

    expiration_ttl: int = 600
    gas_unit_price: int = 100
    max_gas_amount: int = 100_000
    chain_id: int = 4


class KeylessConfig:
    """Endpoints of the pepper and prover services used by keyless accounts"""

    pepper_url: str = "https://api.devnet.aptoslabs.com/keyless/pepper/v0"
    prover_url: str = "https://api.devnet.aptoslabs.com/keyless/prover/v0"
    timeout: float = 60.0
    http2: bool = False
    # JSON file with the circuit Poseidon parameters, loaded when a client is created.
    poseidon_params: Optional[str] = None


def build_raw_transaction(
    sender: AccountAddress,
    sequence_number: int,
    payload: TransactionPayload,
    config: ClientConfig,
    now: int,
) -> RawTransaction:
    """Fills gas, chain and expiration from `config` and validates against `now`."""
    raw_transaction = RawTransaction(
        sender,
        sequence_number,
        payload,
        config.max_gas_amount,
        config.gas_unit_price,
        now + config.expiration_ttl,
        config.chain_id,
    )
    raw_transaction.validate(now)
    return raw_transaction


class Test(unittest.TestCase):
    def test_build_raw_transaction(self):
        payload = TransactionPayload(EntryFunction.natural("0x1::m", "f", [], []))
        raw_transaction = build_raw_transaction(
            AccountAddress.ONE, 3, payload, ClientConfig(), 1_000
        )
        self.assertEqual(raw_transaction.expiration_timestamps_secs, 1_600)
        self.assertEqual(raw_transaction.max_gas_amount, 100_000)
        self.assertEqual(raw_transaction.gas_unit_price, 100)
        self.assertEqual(raw_transaction.chain_id, 4)

        config = ClientConfig()
        config.chain_id = 1
        config.gas_unit_price = 150
        raw_transaction = build_raw_transaction(
            AccountAddress.ONE, 3, payload, config, 1_000
        )
        self.assertEqual(raw_transaction.chain_id, 1)
        self.assertEqual(raw_transaction.gas_unit_price, 150)
        self.assertEqual(ClientConfig.chain_id, 4)
