# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Combines the authenticators collected for a transaction into a signed transaction. The topology
follows from the transaction's shape and every signer slot of that topology must be filled,
except in simulation where empty slots become `NoAccountAuthenticator`.
"""

from __future__ import annotations

import logging
import unittest
from typing import List, Optional, Sequence

from . import ed25519, secp256k1_ecdsa, single_key
from .account_address import AccountAddress
from .authenticator import (
    AccountAuthenticator,
    Authenticator,
    FeePayerAuthenticator,
    MultiAgentAuthenticator,
    NoAccountAuthenticator,
)
from .bcs import Serializer
from .errors import MissingAuthenticator, SchemeMismatch, TopologyMismatch
from .transactions import (
    EntryFunction,
    FeePayerRawTransaction,
    MultiAgentRawTransaction,
    Multisig,
    MultisigTransactionPayload,
    RawTransaction,
    RawTransactionInternal,
    SignedTransaction,
    TransactionArgument,
    TransactionPayload,
)


class Topology:
    SINGLE_SENDER: str = "single_sender"
    MULTI_AGENT: str = "multi_agent"
    FEE_PAYER: str = "fee_payer"
    MULTISIG: str = "multisig"

    @staticmethod
    def of(transaction: RawTransactionInternal) -> str:
        if isinstance(transaction, FeePayerRawTransaction):
            return Topology.FEE_PAYER
        if isinstance(transaction, MultiAgentRawTransaction):
            return Topology.MULTI_AGENT
        if transaction.inner().payload.variant == TransactionPayload.MULTISIG:
            return Topology.MULTISIG
        return Topology.SINGLE_SENDER


class SimulatedTransaction(SignedTransaction):
    """Has the wire shape of a signed transaction but carries placeholder authenticators."""

    def verify(self) -> bool:
        return False


def _slot(
    name: str, authenticator: Optional[AccountAuthenticator], simulation: bool
) -> AccountAuthenticator:
    if authenticator is not None:
        return authenticator
    if not simulation:
        raise MissingAuthenticator(f"No authenticator for the {name}")
    logging.debug("Filling the %s slot with a simulation placeholder", name)
    return AccountAuthenticator(NoAccountAuthenticator())


def assemble(
    transaction: RawTransactionInternal,
    sender: Optional[AccountAuthenticator],
    secondary_signers: Optional[Sequence[Optional[AccountAuthenticator]]] = None,
    fee_payer: Optional[AccountAuthenticator] = None,
    simulation: bool = False,
) -> SignedTransaction:
    """
    Assembles a signed transaction. `secondary_signers` are matched positionally with the
    transaction's secondary addresses.

    Raises TopologyMismatch when authenticators do not fit the topology, MissingAuthenticator when
    a slot is empty outside of simulation and SchemeMismatch when the result does not verify.
    """
    topology = Topology.of(transaction)
    addresses = transaction.secondary_addresses()
    has_secondary_slots = topology in (Topology.MULTI_AGENT, Topology.FEE_PAYER)

    if not has_secondary_slots and secondary_signers:
        raise TopologyMismatch(f"A {topology} transaction has no secondary signers")
    if topology != Topology.FEE_PAYER and fee_payer is not None:
        raise TopologyMismatch(f"A {topology} transaction has no fee payer")

    if secondary_signers is None:
        secondary_signers = [None] * len(addresses)
    if len(secondary_signers) != len(addresses):
        raise TopologyMismatch(
            f"{len(addresses)} secondary addresses but {len(secondary_signers)} "
            "secondary authenticators"
        )

    sender_authenticator = _slot("sender", sender, simulation)
    secondaries: List[AccountAuthenticator] = [
        _slot(f"secondary signer {address}", authenticator, simulation)
        for address, authenticator in zip(addresses, secondary_signers)
    ]

    if topology == Topology.FEE_PAYER:
        assert isinstance(transaction, FeePayerRawTransaction)
        if transaction.fee_payer is None and not simulation:
            raise MissingAuthenticator("A fee payer transaction needs a fee payer address")
        fee_payer_address = transaction.fee_payer or AccountAddress.ZERO
        authenticator = Authenticator(
            FeePayerAuthenticator(
                sender_authenticator,
                list(zip(addresses, secondaries)),
                (fee_payer_address, _slot("fee payer", fee_payer, simulation)),
            )
        )
    elif topology == Topology.MULTI_AGENT:
        authenticator = Authenticator(
            MultiAgentAuthenticator(sender_authenticator, list(zip(addresses, secondaries)))
        )
    else:
        # A multisig owner authenticates like a lone sender.
        authenticator = Authenticator.from_sender(sender_authenticator)

    if simulation:
        logging.info("Assembled %s simulation transaction", topology)
        return SimulatedTransaction(transaction.inner(), authenticator)

    signed = SignedTransaction(transaction.inner(), authenticator)
    if not signed.verify():
        logging.error("Authenticators of a %s transaction do not verify", topology)
        raise SchemeMismatch(f"Authenticators do not verify for a {topology} transaction")
    logging.info("Assembled %s transaction", topology)
    return signed


class Test(unittest.TestCase):
    def raw_transaction(
        self, sender: AccountAddress, payload: Optional[TransactionPayload] = None
    ) -> RawTransaction:
        if payload is None:
            payload = TransactionPayload(
                EntryFunction.natural(
                    "0x1::aptos_account",
                    "transfer",
                    [],
                    [
                        TransactionArgument(1, Serializer.u64),
                        TransactionArgument(AccountAddress.from_str("0xb"), Serializer.struct),
                    ],
                )
            )
        return RawTransaction(sender, 1, payload, 2000, 100, 1_000, 4)

    def sign(self, transaction: RawTransactionInternal, key) -> AccountAuthenticator:
        return transaction.sign(key)

    def placeholder(self) -> AccountAuthenticator:
        return AccountAuthenticator.for_signature(
            ed25519.PublicKey.from_crypto_bytes(b"\x00" * 32),
            ed25519.Signature(b"\x00" * 64),
        )

    def test_single_sender_round_trip(self):
        sender_key = ed25519.PrivateKey.random()
        sender = AccountAddress.from_key(sender_key.public_key())
        receiver = AccountAddress.from_str("0xb")
        transaction = self.raw_transaction(sender)

        signed = assemble(transaction, self.sign(transaction, sender_key))
        self.assertEqual(signed.authenticator.variant, Authenticator.ED25519)

        decoded = SignedTransaction.from_bytes(signed.bytes())
        self.assertEqual(decoded, signed)
        self.assertEqual(decoded.transaction.sender, sender)
        self.assertEqual(decoded.transaction.sequence_number, 1)
        entry_function = decoded.transaction.payload.value
        self.assertEqual(entry_function.args, [(1).to_bytes(8, "little"), receiver.address])
        self.assertTrue(decoded.verify())

        again = assemble(transaction, self.sign(transaction, sender_key))
        self.assertEqual(again.bytes(), signed.bytes())

    def test_single_key_sender(self):
        sender_key = secp256k1_ecdsa.PrivateKey.random()
        sender = AccountAddress.from_key(single_key.AnyPublicKey(sender_key.public_key()))
        transaction = self.raw_transaction(sender)
        signed = assemble(transaction, self.sign(transaction, sender_key))
        self.assertEqual(signed.authenticator.variant, Authenticator.SINGLE_SENDER)

    def test_fee_payer_simulation(self):
        sender = AccountAddress.from_str("0xa")
        sponsor = AccountAddress.from_str("0xf")
        transaction = FeePayerRawTransaction(self.raw_transaction(sender), [], sponsor)

        simulated = assemble(
            transaction, self.placeholder(), [], self.placeholder(), simulation=True
        )
        self.assertIsInstance(simulated, SimulatedTransaction)
        self.assertEqual(simulated.authenticator.variant, Authenticator.FEE_PAYER)
        self.assertEqual(
            simulated.authenticator.authenticator.fee_payer_address(), sponsor
        )
        self.assertFalse(simulated.verify())
        self.assertEqual(SignedTransaction.from_bytes(simulated.bytes()), simulated)

        with self.assertRaises(MissingAuthenticator):
            assemble(transaction, self.placeholder(), [], None)

    def test_fee_payer_signed(self):
        sender_key = ed25519.PrivateKey.random()
        sponsor_key = ed25519.PrivateKey.random()
        sender = AccountAddress.from_key(sender_key.public_key())
        sponsor = AccountAddress.from_key(sponsor_key.public_key())
        transaction = FeePayerRawTransaction(self.raw_transaction(sender), [], sponsor)

        signed = assemble(
            transaction,
            self.sign(transaction, sender_key),
            [],
            self.sign(transaction, sponsor_key),
        )
        self.assertTrue(SignedTransaction.from_bytes(signed.bytes()).verify())

        # A signature over the plain message cannot authenticate a fee payer transaction.
        with self.assertRaises(SchemeMismatch):
            assemble(
                transaction,
                self.sign(transaction.inner(), sender_key),
                [],
                self.sign(transaction, sponsor_key),
            )

    def test_fee_payer_without_address(self):
        transaction = FeePayerRawTransaction(
            self.raw_transaction(AccountAddress.from_str("0xa")), [], None
        )
        simulated = assemble(transaction, self.placeholder(), simulation=True)
        self.assertEqual(
            simulated.authenticator.authenticator.fee_payer_address(), AccountAddress.ZERO
        )
        self.assertEqual(
            simulated.authenticator.authenticator.fee_payer[1].variant,
            AccountAuthenticator.NO_ACCOUNT_AUTHENTICATOR,
        )
        with self.assertRaises(MissingAuthenticator):
            assemble(transaction, self.placeholder(), [], self.placeholder())

    def test_multi_agent_cardinality(self):
        keys = [ed25519.PrivateKey.random() for _ in range(3)]
        addresses = [AccountAddress.from_key(key.public_key()) for key in keys]
        transaction = MultiAgentRawTransaction(
            self.raw_transaction(addresses[0]), addresses[1:]
        )

        with self.assertRaises(TopologyMismatch):
            assemble(
                transaction,
                self.sign(transaction, keys[0]),
                [self.sign(transaction, keys[1])],
            )

        signed = assemble(
            transaction,
            self.sign(transaction, keys[0]),
            [self.sign(transaction, keys[1]), self.sign(transaction, keys[2])],
        )
        self.assertEqual(signed.authenticator.variant, Authenticator.MULTI_AGENT)
        self.assertTrue(signed.verify())

        with self.assertRaises(MissingAuthenticator):
            assemble(
                transaction,
                self.sign(transaction, keys[0]),
                [self.sign(transaction, keys[1]), None],
            )

        with self.assertRaises(TopologyMismatch):
            assemble(
                transaction,
                self.sign(transaction, keys[0]),
                [self.sign(transaction, keys[1]), self.sign(transaction, keys[2])],
                self.sign(transaction, keys[2]),
            )

    def test_multi_agent_simulation_fills_slots(self):
        addresses = [AccountAddress.from_str("0xa"), AccountAddress.from_str("0xb")]
        transaction = MultiAgentRawTransaction(
            self.raw_transaction(addresses[0]), addresses[1:]
        )
        simulated = assemble(transaction, None, simulation=True)
        inner = simulated.authenticator.authenticator
        self.assertEqual(inner.sender.variant, AccountAuthenticator.NO_ACCOUNT_AUTHENTICATOR)
        self.assertEqual(inner.secondary_addresses(), addresses[1:])
        self.assertEqual(SignedTransaction.from_bytes(simulated.bytes()), simulated)

        with self.assertRaises(MissingAuthenticator):
            assemble(transaction, None)

    def test_single_sender_rejects_extra_slots(self):
        sender_key = ed25519.PrivateKey.random()
        transaction = self.raw_transaction(AccountAddress.from_key(sender_key.public_key()))
        authenticator = self.sign(transaction, sender_key)
        with self.assertRaises(TopologyMismatch):
            assemble(transaction, authenticator, [authenticator])
        with self.assertRaises(TopologyMismatch):
            assemble(transaction, authenticator, None, authenticator)

    def test_multisig(self):
        owner_key = ed25519.PrivateKey.random()
        owner = AccountAddress.from_key(owner_key.public_key())
        inner = EntryFunction.natural(
            "0x1::aptos_account",
            "transfer",
            [],
            [
                TransactionArgument(AccountAddress.from_str("0xb"), Serializer.struct),
                TransactionArgument(10, Serializer.u64),
            ],
        )
        payload = TransactionPayload(
            Multisig(AccountAddress.from_str_relaxed("0x1234"), MultisigTransactionPayload(inner))
        )
        transaction = self.raw_transaction(owner, payload)
        self.assertEqual(Topology.of(transaction), Topology.MULTISIG)

        signed = assemble(transaction, self.sign(transaction, owner_key))
        self.assertEqual(signed.authenticator.variant, Authenticator.ED25519)
        decoded = SignedTransaction.from_bytes(signed.bytes())
        self.assertEqual(
            decoded.transaction.payload.value.transaction_payload.payload, inner
        )

        simulated = assemble(transaction, None, simulation=True)
        self.assertEqual(simulated.authenticator.variant, Authenticator.SINGLE_SENDER)
