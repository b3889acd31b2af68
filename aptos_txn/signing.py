# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Signing messages, scheme dispatch for authenticators and the per-transaction signing session.

A transaction is signed over `sha3_256(salt) || BCS(transaction)`, where the salt and the body
depend on the transaction's shape:

    PLAIN        APTOS::RawTransaction          RawTransaction
    MULTI_AGENT  APTOS::RawTransactionWithData  0u8 || RawTransaction || secondary addresses
    FEE_PAYER    APTOS::RawTransactionWithData  1u8 || RawTransaction || secondary addresses
                                                    || fee payer address (0x0 when unknown)
"""

from __future__ import annotations

import logging
import unittest
from typing import Dict, List, Optional, Union

from . import asymmetric_crypto, assembler, ed25519, keyless, secp256k1_ecdsa, single_key
from .account_address import AccountAddress
from .authenticator import (
    AccountAuthenticator,
    Ed25519Authenticator,
    MultiEd25519Authenticator,
    MultiKeyAuthenticator,
    SingleKeyAuthenticator,
)
from .errors import InvalidState, MalformedInput, SchemeMismatch, TopologyMismatch
from .transactions import (
    EntryFunction,
    FeePayerRawTransaction,
    MultiAgentRawTransaction,
    RawTransaction,
    RawTransactionInternal,
    SignedTransaction,
    TransactionArgument,
    TransactionPayload,
)


class SigningVariant:
    PLAIN: int = 0
    MULTI_AGENT: int = 1
    FEE_PAYER: int = 2

    @staticmethod
    def of(transaction: RawTransactionInternal) -> int:
        if isinstance(transaction, FeePayerRawTransaction):
            return SigningVariant.FEE_PAYER
        if isinstance(transaction, MultiAgentRawTransaction):
            return SigningVariant.MULTI_AGENT
        return SigningVariant.PLAIN


class SignatureScheme:
    ED25519: str = "ed25519"
    MULTI_ED25519: str = "multi_ed25519"
    SINGLE_KEY: str = "single_key"
    MULTI_KEY: str = "multi_key"


def shape(
    transaction: RawTransactionInternal, variant: Optional[int] = None
) -> RawTransactionInternal:
    """
    Returns the transaction in the shape of `variant`. Secondary signers and the fee payer are
    carried over from the input where it has them.
    """
    if variant is None or variant == SigningVariant.of(transaction):
        return transaction

    raw = transaction.inner()
    secondary_signers = transaction.secondary_addresses()
    if variant == SigningVariant.PLAIN:
        return raw
    if variant == SigningVariant.MULTI_AGENT:
        return MultiAgentRawTransaction(raw, secondary_signers)
    if variant == SigningVariant.FEE_PAYER:
        return FeePayerRawTransaction(raw, secondary_signers, None)
    raise SchemeMismatch(f"Unknown signing variant: {variant}")


def derive_signing_message(
    transaction: RawTransactionInternal, variant: Optional[int] = None
) -> bytes:
    return shape(transaction, variant).keyed()


def sign(private_key: asymmetric_crypto.PrivateKey, message: bytes):
    return private_key.sign(message)


def verify(
    public_key: asymmetric_crypto.PublicKey,
    message: bytes,
    signature: asymmetric_crypto.Signature,
) -> bool:
    return public_key.verify(message, signature)


def _single_key(public_key) -> asymmetric_crypto.PublicKey:
    if not isinstance(public_key, (bytes, bytearray)):
        return public_key
    if len(public_key) == ed25519.PublicKey.LENGTH:
        return ed25519.PublicKey.from_crypto_bytes(bytes(public_key))
    if len(public_key) in (
        secp256k1_ecdsa.PublicKey.LENGTH,
        secp256k1_ecdsa.PublicKey.LENGTH_WITH_PREFIX_LENGTH,
    ):
        return secp256k1_ecdsa.PublicKey(bytes(public_key))
    raise SchemeMismatch(f"No single key scheme has {len(public_key)} byte keys")


def _single_signature(public_key, signature) -> asymmetric_crypto.Signature:
    if not isinstance(signature, (bytes, bytearray)):
        return signature
    inner = public_key
    if isinstance(public_key, single_key.AnyPublicKey):
        inner = public_key.public_key
    if isinstance(inner, ed25519.PublicKey):
        return ed25519.Signature(bytes(signature))
    if isinstance(inner, secp256k1_ecdsa.PublicKey):
        return secp256k1_ecdsa.Signature(bytes(signature))
    if isinstance(inner, keyless.KeylessPublicKey):
        return _from_bcs(keyless.KeylessSignature, bytes(signature))
    raise SchemeMismatch(f"Cannot parse a signature for {type(inner).__name__}")


def _from_bcs(cls, data: bytes):
    try:
        return cls.from_bytes(data)
    except MalformedInput as e:
        raise SchemeMismatch(f"Malformed {cls.__name__}: {e}") from e


def build_authenticator(
    scheme: str,
    public_key: Union[asymmetric_crypto.PublicKey, bytes],
    signature: Union[asymmetric_crypto.Signature, bytes],
) -> AccountAuthenticator:
    """
    Builds an account authenticator for `scheme`. Raw bytes are parsed as that scheme's key and
    signature. All-zero keys and signatures of the correct length are accepted.
    """
    if scheme == SignatureScheme.ED25519:
        if isinstance(public_key, (bytes, bytearray)):
            public_key = ed25519.PublicKey.from_crypto_bytes(bytes(public_key))
        if isinstance(signature, (bytes, bytearray)):
            signature = ed25519.Signature(bytes(signature))
        if not isinstance(public_key, ed25519.PublicKey) or not isinstance(
            signature, ed25519.Signature
        ):
            raise SchemeMismatch("Ed25519 requires an Ed25519 key and signature")
        return AccountAuthenticator(Ed25519Authenticator(public_key, signature))

    if scheme == SignatureScheme.MULTI_ED25519:
        if isinstance(public_key, (bytes, bytearray)):
            public_key = ed25519.MultiPublicKey.from_crypto_bytes(bytes(public_key))
        if isinstance(signature, (bytes, bytearray)):
            signature = _from_bcs(ed25519.MultiSignature, bytes(signature))
        if not isinstance(public_key, ed25519.MultiPublicKey) or not isinstance(
            signature, ed25519.MultiSignature
        ):
            raise SchemeMismatch("MultiEd25519 requires a MultiEd25519 key and signature")
        return AccountAuthenticator(MultiEd25519Authenticator(public_key, signature))

    if scheme == SignatureScheme.SINGLE_KEY:
        key = _single_key(public_key)
        if isinstance(key, (ed25519.MultiPublicKey, single_key.MultiKey)):
            raise SchemeMismatch("Multi keys cannot authenticate as a single key")
        return AccountAuthenticator(
            SingleKeyAuthenticator(key, _single_signature(key, signature))
        )

    if scheme == SignatureScheme.MULTI_KEY:
        if isinstance(public_key, (bytes, bytearray)):
            public_key = _from_bcs(single_key.MultiKey, bytes(public_key))
        if isinstance(signature, (bytes, bytearray)):
            signature = _from_bcs(single_key.MultiKeySignature, bytes(signature))
        if not isinstance(public_key, single_key.MultiKey) or not isinstance(
            signature, single_key.MultiKeySignature
        ):
            raise SchemeMismatch("MultiKey requires a MultiKey key and signature")
        return AccountAuthenticator(MultiKeyAuthenticator(public_key, signature))

    raise SchemeMismatch(f"Unknown signature scheme: {scheme}")


def _placeholder_signature(public_key: asymmetric_crypto.PublicKey):
    if isinstance(public_key, single_key.AnyPublicKey):
        public_key = public_key.public_key
    if isinstance(public_key, ed25519.PublicKey):
        return ed25519.Signature(b"\x00" * ed25519.Signature.LENGTH)
    if isinstance(public_key, secp256k1_ecdsa.PublicKey):
        return secp256k1_ecdsa.Signature(b"\x00" * secp256k1_ecdsa.Signature.LENGTH)
    if isinstance(public_key, keyless.KeylessPublicKey):
        return keyless.KeylessSignature.simulated()
    raise SchemeMismatch(f"No placeholder signature for {type(public_key).__name__}")


def simulated_authenticator(public_key: asymmetric_crypto.PublicKey) -> AccountAuthenticator:
    """
    An authenticator for simulation: the real public key with a zero signature of the
    correct length, enough for the ledger to estimate gas without a valid signature.
    """
    if isinstance(public_key, ed25519.MultiPublicKey):
        zero = ed25519.Signature(b"\x00" * ed25519.Signature.LENGTH)
        signature = ed25519.MultiSignature(
            [(idx, zero) for idx in range(public_key.threshold)]
        )
        return AccountAuthenticator(MultiEd25519Authenticator(public_key, signature))
    if isinstance(public_key, single_key.MultiKey):
        multi_signature = single_key.MultiKeySignature(
            [
                (idx, _placeholder_signature(public_key.keys[idx]))
                for idx in range(public_key.threshold)
            ]
        )
        return AccountAuthenticator(MultiKeyAuthenticator(public_key, multi_signature))
    return AccountAuthenticator.for_signature(
        public_key, _placeholder_signature(public_key)
    )


class SigningSession:
    """
    Tracks one transaction from construction to its assembled, signed form:

        BUILT -> MESSAGE_DERIVED -> SIGNED -> ASSEMBLED

    Signatures are attached by signer address and may be added in any order once the message
    is derived. ASSEMBLED is terminal.
    """

    BUILT: str = "built"
    MESSAGE_DERIVED: str = "message_derived"
    SIGNED: str = "signed"
    ASSEMBLED: str = "assembled"

    transaction: RawTransactionInternal
    simulation: bool
    state: str
    authenticators: Dict[AccountAddress, AccountAuthenticator]
    _message: Optional[bytes]
    _result: Optional[SignedTransaction]

    def __init__(self, transaction: RawTransactionInternal, simulation: bool = False):
        self.transaction = transaction
        self.simulation = simulation
        self.state = SigningSession.BUILT
        self.authenticators = {}
        self._message = None
        self._result = None

    def _require(self, *states: str):
        if self.state not in states:
            raise InvalidState(f"Operation not allowed in state {self.state}")

    def signers(self) -> List[AccountAddress]:
        signers = [self.transaction.inner().sender]
        signers.extend(self.transaction.secondary_addresses())
        if (
            isinstance(self.transaction, FeePayerRawTransaction)
            and self.transaction.fee_payer is not None
        ):
            signers.append(self.transaction.fee_payer)
        return signers

    def derive_message(self) -> bytes:
        self._require(SigningSession.BUILT)
        self._message = derive_signing_message(self.transaction)
        self.state = SigningSession.MESSAGE_DERIVED
        return self._message

    def message(self) -> bytes:
        self._require(SigningSession.MESSAGE_DERIVED, SigningSession.SIGNED)
        assert self._message is not None
        return self._message

    def add_authenticator(
        self, address: AccountAddress, authenticator: AccountAuthenticator
    ):
        self._require(SigningSession.MESSAGE_DERIVED, SigningSession.SIGNED)
        if address not in self.signers():
            raise TopologyMismatch(f"{address} is not a signer of this transaction")
        if address in self.authenticators:
            raise InvalidState(f"{address} has already signed")
        self.authenticators[address] = authenticator
        self.state = SigningSession.SIGNED

    def sign(self, address: AccountAddress, private_key: asymmetric_crypto.PrivateKey):
        signature = sign(private_key, self.message())
        self.add_authenticator(
            address,
            AccountAuthenticator.for_signature(private_key.public_key(), signature),
        )

    def assemble(self) -> SignedTransaction:
        self._require(SigningSession.SIGNED)
        secondary_signers: Optional[List[Optional[AccountAuthenticator]]] = None
        if SigningVariant.of(self.transaction) != SigningVariant.PLAIN:
            secondary_signers = [
                self.authenticators.get(address)
                for address in self.transaction.secondary_addresses()
            ]
        fee_payer = None
        if isinstance(self.transaction, FeePayerRawTransaction):
            if self.transaction.fee_payer is not None:
                fee_payer = self.authenticators.get(self.transaction.fee_payer)

        self._result = assembler.assemble(
            self.transaction,
            self.authenticators.get(self.transaction.inner().sender),
            secondary_signers,
            fee_payer,
            self.simulation,
        )
        self.state = SigningSession.ASSEMBLED
        logging.debug("Signing session assembled for %s", self.transaction.inner().sender)
        return self._result

    def result(self) -> SignedTransaction:
        self._require(SigningSession.ASSEMBLED)
        assert self._result is not None
        return self._result


class Test(unittest.TestCase):
    def raw_transaction(self, sender: AccountAddress, **overrides) -> RawTransaction:
        fields = dict(
            sender=sender,
            sequence_number=1,
            payload=TransactionPayload(
                EntryFunction.natural(
                    "0x1::aptos_account",
                    "transfer",
                    [],
                    [TransactionArgument(1, lambda ser, value: ser.u64(value))],
                )
            ),
            max_gas_amount=2000,
            gas_unit_price=100,
            expiration_timestamps_secs=1_000,
            chain_id=4,
        )
        fields.update(overrides)
        return RawTransaction(**fields)

    def test_signing_message_is_deterministic(self):
        sender = AccountAddress.from_str("0xa")
        base = derive_signing_message(self.raw_transaction(sender))
        self.assertEqual(base, derive_signing_message(self.raw_transaction(sender)))
        for field, value in [
            ("sequence_number", 2),
            ("max_gas_amount", 2001),
            ("expiration_timestamps_secs", 1_001),
            ("gas_unit_price", 101),
        ]:
            changed = self.raw_transaction(sender, **{field: value})
            self.assertNotEqual(base, derive_signing_message(changed), field)

        payload = TransactionPayload(
            EntryFunction.natural(
                "0x1::aptos_account",
                "transfer",
                [],
                [TransactionArgument(2, lambda ser, value: ser.u64(value))],
            )
        )
        changed = self.raw_transaction(sender, payload=payload)
        self.assertNotEqual(base, derive_signing_message(changed))

    def test_cross_variant_signatures_fail(self):
        private_key = ed25519.PrivateKey.random()
        raw = self.raw_transaction(AccountAddress.from_key(private_key.public_key()))
        plain = derive_signing_message(raw, SigningVariant.PLAIN)
        multi_agent = derive_signing_message(raw, SigningVariant.MULTI_AGENT)
        fee_payer = derive_signing_message(raw, SigningVariant.FEE_PAYER)
        self.assertEqual(len({plain, multi_agent, fee_payer}), 3)

        signature = sign(private_key, plain)
        public_key = private_key.public_key()
        self.assertTrue(verify(public_key, plain, signature))
        self.assertFalse(verify(public_key, multi_agent, signature))
        self.assertFalse(verify(public_key, fee_payer, signature))

    def test_signing_message_layout(self):
        raw = self.raw_transaction(AccountAddress.ONE)
        fee_payer = AccountAddress.from_str("0xf")
        message = derive_signing_message(FeePayerRawTransaction(raw, [], fee_payer))
        prehash = FeePayerRawTransaction(raw, [], fee_payer).prehash()
        self.assertEqual(message[:32], prehash)
        self.assertEqual(message[32:33], b"\x01")
        self.assertEqual(message[33:-33], raw.to_bytes())
        self.assertEqual(message[-33:], b"\x00" + fee_payer.address)

        unsponsored = derive_signing_message(raw, SigningVariant.FEE_PAYER)
        self.assertEqual(unsponsored[-32:], AccountAddress.ZERO.address)

    def test_build_authenticator_from_bytes(self):
        private_key = ed25519.PrivateKey.random()
        signature = private_key.sign(b"data")
        authenticator = build_authenticator(
            SignatureScheme.ED25519,
            private_key.public_key().to_crypto_bytes(),
            signature.data(),
        )
        self.assertEqual(authenticator.variant, AccountAuthenticator.ED25519)
        self.assertTrue(authenticator.verify(b"data"))

        authenticator = build_authenticator(
            SignatureScheme.SINGLE_KEY,
            private_key.public_key().to_crypto_bytes(),
            signature.data(),
        )
        self.assertEqual(authenticator.variant, AccountAuthenticator.SINGLE_KEY)
        self.assertTrue(authenticator.verify(b"data"))

        secp_key = secp256k1_ecdsa.PrivateKey.random()
        authenticator = build_authenticator(
            SignatureScheme.SINGLE_KEY,
            secp_key.public_key().to_crypto_bytes(),
            secp_key.sign(b"data").data(),
        )
        self.assertTrue(authenticator.verify(b"data"))

    def test_build_authenticator_scheme_mismatch(self):
        with self.assertRaises(SchemeMismatch):
            build_authenticator(SignatureScheme.ED25519, b"\x00" * 32, b"\x00" * 63)
        with self.assertRaises(SchemeMismatch):
            build_authenticator(SignatureScheme.ED25519, b"\x00" * 33, b"\x00" * 64)
        with self.assertRaises(SchemeMismatch):
            build_authenticator(
                SignatureScheme.ED25519,
                secp256k1_ecdsa.PrivateKey.random().public_key(),
                b"\x00" * 64,
            )
        with self.assertRaises(SchemeMismatch):
            build_authenticator(SignatureScheme.SINGLE_KEY, b"\x00" * 40, b"\x00" * 64)
        with self.assertRaises(SchemeMismatch):
            build_authenticator(SignatureScheme.MULTI_KEY, b"\xff", b"\x00")
        with self.assertRaises(SchemeMismatch):
            build_authenticator("rsa", b"\x00" * 32, b"\x00" * 64)

        key = single_key.AnyPublicKey(ed25519.PrivateKey.random().public_key())
        with self.assertRaises(SchemeMismatch):
            build_authenticator(
                SignatureScheme.MULTI_KEY, b"\x01" + key.to_bytes() + b"\x00", b"\x00"
            )
        raw_key = key.public_key.to_crypto_bytes()
        with self.assertRaises(SchemeMismatch):
            build_authenticator(
                SignatureScheme.MULTI_ED25519, raw_key + raw_key + b"\x00", b"\x00"
            )

    def test_zero_placeholders_accepted(self):
        authenticator = build_authenticator(
            SignatureScheme.ED25519, b"\x00" * 32, b"\x00" * 64
        )
        self.assertEqual(
            authenticator.to_bytes(),
            b"\x00\x20" + b"\x00" * 32 + b"\x40" + b"\x00" * 64,
        )
        self.assertFalse(authenticator.verify(b"data"))

        authenticator = build_authenticator(
            SignatureScheme.SINGLE_KEY, b"\x00" * 64, b"\x00" * 64
        )
        self.assertEqual(authenticator.variant, AccountAuthenticator.SINGLE_KEY)

    def test_simulated_authenticators(self):
        ed_key = ed25519.PrivateKey.random().public_key()
        self.assertEqual(
            simulated_authenticator(ed_key).authenticator.signature.data(), b"\x00" * 64
        )

        secp_key = secp256k1_ecdsa.PrivateKey.random().public_key()
        authenticator = simulated_authenticator(secp_key)
        self.assertEqual(authenticator.variant, AccountAuthenticator.SINGLE_KEY)

        multi = ed25519.MultiPublicKey(
            [ed25519.PrivateKey.random().public_key() for _ in range(3)], 2
        )
        authenticator = simulated_authenticator(multi)
        self.assertEqual(len(authenticator.authenticator.signature.signatures), 2)

        multi_key = single_key.MultiKey([ed_key, secp_key], 2)
        authenticator = simulated_authenticator(multi_key)
        self.assertEqual(authenticator.variant, AccountAuthenticator.MULTI_KEY)
        self.assertEqual(
            AccountAuthenticator.from_bytes(authenticator.to_bytes()), authenticator
        )

        keyless_key = keyless.KeylessPublicKey("iss", keyless.IdCommitment(bytes(32)))
        authenticator = simulated_authenticator(keyless_key)
        self.assertEqual(
            AccountAuthenticator.from_bytes(authenticator.to_bytes()), authenticator
        )

    def test_session_state_machine(self):
        sender_key = ed25519.PrivateKey.random()
        sender = AccountAddress.from_key(sender_key.public_key())
        session = SigningSession(self.raw_transaction(sender))

        with self.assertRaises(InvalidState):
            session.sign(sender, sender_key)
        with self.assertRaises(InvalidState):
            session.assemble()

        message = session.derive_message()
        self.assertEqual(session.state, SigningSession.MESSAGE_DERIVED)
        with self.assertRaises(InvalidState):
            session.derive_message()
        with self.assertRaises(InvalidState):
            session.assemble()

        with self.assertRaises(TopologyMismatch):
            session.sign(AccountAddress.ONE, sender_key)
        session.sign(sender, sender_key)
        self.assertEqual(session.state, SigningSession.SIGNED)
        with self.assertRaises(InvalidState):
            session.sign(sender, sender_key)

        signed = session.assemble()
        self.assertEqual(session.state, SigningSession.ASSEMBLED)
        self.assertEqual(session.result(), signed)
        self.assertTrue(signed.verify())
        self.assertTrue(
            sender_key.public_key().verify(
                message, signed.authenticator.authenticator.signature
            )
        )

        with self.assertRaises(InvalidState):
            session.assemble()
        with self.assertRaises(InvalidState):
            session.message()

    def test_session_multi_agent(self):
        sender_key = ed25519.PrivateKey.random()
        second_key = secp256k1_ecdsa.PrivateKey.random()
        sender = AccountAddress.from_key(sender_key.public_key())
        second = AccountAddress.from_key(single_key.AnyPublicKey(second_key.public_key()))

        session = SigningSession(
            MultiAgentRawTransaction(self.raw_transaction(sender), [second])
        )
        session.derive_message()
        # Signers attach in any order.
        session.sign(second, second_key)
        session.sign(sender, sender_key)
        self.assertTrue(session.assemble().verify())
