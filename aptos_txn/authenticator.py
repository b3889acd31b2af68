# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import typing
import unittest
from typing import List

from . import asymmetric_crypto, ed25519, secp256k1_ecdsa, single_key
from .account_address import AccountAddress
from .bcs import Deserializable, Deserializer, Serializable, Serializer, decode
from .errors import InvalidDiscriminant, SchemeMismatch, TopologyMismatch


class Authenticator(Deserializable, Serializable):
    """
    Each transaction submitted to the ledger contains a `TransactionAuthenticator`. During
    execution, every `AccountAuthenticator`'s signature over the signing message is checked,
    as is whether its public key matches the authentication key stored under the
    participating signer's account address.
    """

    ED25519: int = 0
    MULTI_ED25519: int = 1
    MULTI_AGENT: int = 2
    FEE_PAYER: int = 3
    SINGLE_SENDER: int = 4

    variant: int
    authenticator: typing.Any

    def __init__(self, authenticator: typing.Any):
        if isinstance(authenticator, Ed25519Authenticator):
            self.variant = Authenticator.ED25519
        elif isinstance(authenticator, MultiEd25519Authenticator):
            self.variant = Authenticator.MULTI_ED25519
        elif isinstance(authenticator, MultiAgentAuthenticator):
            self.variant = Authenticator.MULTI_AGENT
        elif isinstance(authenticator, FeePayerAuthenticator):
            self.variant = Authenticator.FEE_PAYER
        elif isinstance(authenticator, SingleSenderAuthenticator):
            self.variant = Authenticator.SINGLE_SENDER
        else:
            raise SchemeMismatch(
                f"{type(authenticator).__name__} is not a transaction authenticator"
            )
        self.authenticator = authenticator

    @staticmethod
    def from_sender(sender: AccountAuthenticator) -> Authenticator:
        """
        A lone sender keeps the legacy top-level variants for Ed25519 and MultiEd25519, every
        other scheme is wrapped in a SingleSender authenticator.
        """
        if sender.variant in (
            AccountAuthenticator.ED25519,
            AccountAuthenticator.MULTI_ED25519,
        ):
            return Authenticator(sender.authenticator)
        return Authenticator(SingleSenderAuthenticator(sender))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Authenticator):
            return NotImplemented
        return (
            self.variant == other.variant and self.authenticator == other.authenticator
        )

    def __str__(self) -> str:
        return self.authenticator.__str__()

    def verify(self, data: bytes) -> bool:
        return self.authenticator.verify(data)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Authenticator:
        variant = deserializer.uleb128()

        if variant == Authenticator.ED25519:
            authenticator: typing.Any = Ed25519Authenticator.deserialize(deserializer)
        elif variant == Authenticator.MULTI_ED25519:
            authenticator = MultiEd25519Authenticator.deserialize(deserializer)
        elif variant == Authenticator.MULTI_AGENT:
            authenticator = MultiAgentAuthenticator.deserialize(deserializer)
        elif variant == Authenticator.FEE_PAYER:
            authenticator = FeePayerAuthenticator.deserialize(deserializer)
        elif variant == Authenticator.SINGLE_SENDER:
            authenticator = SingleSenderAuthenticator.deserialize(deserializer)
        else:
            raise InvalidDiscriminant(
                f"Invalid transaction authenticator: {variant}", variant
            )

        return Authenticator(authenticator)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        serializer.struct(self.authenticator)


class AccountAuthenticator(Deserializable, Serializable):
    ED25519: int = 0
    MULTI_ED25519: int = 1
    SINGLE_KEY: int = 2
    MULTI_KEY: int = 3
    NO_ACCOUNT_AUTHENTICATOR: int = 4

    variant: int
    authenticator: typing.Any

    def __init__(self, authenticator: typing.Any):
        if isinstance(authenticator, Ed25519Authenticator):
            self.variant = AccountAuthenticator.ED25519
        elif isinstance(authenticator, MultiEd25519Authenticator):
            self.variant = AccountAuthenticator.MULTI_ED25519
        elif isinstance(authenticator, SingleKeyAuthenticator):
            self.variant = AccountAuthenticator.SINGLE_KEY
        elif isinstance(authenticator, MultiKeyAuthenticator):
            self.variant = AccountAuthenticator.MULTI_KEY
        elif isinstance(authenticator, NoAccountAuthenticator):
            self.variant = AccountAuthenticator.NO_ACCOUNT_AUTHENTICATOR
        else:
            raise SchemeMismatch(
                f"{type(authenticator).__name__} is not an account authenticator"
            )
        self.authenticator = authenticator

    @staticmethod
    def for_signature(
        public_key: asymmetric_crypto.PublicKey, signature: asymmetric_crypto.Signature
    ) -> AccountAuthenticator:
        """Picks the authenticator variant from the type of the public key."""
        if isinstance(public_key, ed25519.PublicKey):
            if not isinstance(signature, ed25519.Signature):
                raise SchemeMismatch("An Ed25519 key requires an Ed25519 signature")
            return AccountAuthenticator(Ed25519Authenticator(public_key, signature))
        if isinstance(public_key, ed25519.MultiPublicKey):
            if not isinstance(signature, ed25519.MultiSignature):
                raise SchemeMismatch("A MultiEd25519 key requires a MultiEd25519 signature")
            return AccountAuthenticator(MultiEd25519Authenticator(public_key, signature))
        if isinstance(public_key, single_key.MultiKey):
            if not isinstance(signature, single_key.MultiKeySignature):
                raise SchemeMismatch("A MultiKey requires a MultiKey signature")
            return AccountAuthenticator(MultiKeyAuthenticator(public_key, signature))
        return AccountAuthenticator(SingleKeyAuthenticator(public_key, signature))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAuthenticator):
            return NotImplemented
        return (
            self.variant == other.variant and self.authenticator == other.authenticator
        )

    def __repr__(self) -> str:
        return self.__str__()

    def __str__(self) -> str:
        return self.authenticator.__str__()

    def public_key(self) -> typing.Optional[asymmetric_crypto.PublicKey]:
        return getattr(self.authenticator, "public_key", None)

    def verify(self, data: bytes) -> bool:
        return self.authenticator.verify(data)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AccountAuthenticator:
        variant = deserializer.uleb128()

        if variant == AccountAuthenticator.ED25519:
            authenticator: typing.Any = Ed25519Authenticator.deserialize(deserializer)
        elif variant == AccountAuthenticator.MULTI_ED25519:
            authenticator = MultiEd25519Authenticator.deserialize(deserializer)
        elif variant == AccountAuthenticator.SINGLE_KEY:
            authenticator = SingleKeyAuthenticator.deserialize(deserializer)
        elif variant == AccountAuthenticator.MULTI_KEY:
            authenticator = MultiKeyAuthenticator.deserialize(deserializer)
        elif variant == AccountAuthenticator.NO_ACCOUNT_AUTHENTICATOR:
            authenticator = NoAccountAuthenticator()
        else:
            raise InvalidDiscriminant(f"Invalid account authenticator: {variant}", variant)

        return AccountAuthenticator(authenticator)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        serializer.struct(self.authenticator)


class Ed25519Authenticator(Deserializable, Serializable):
    public_key: ed25519.PublicKey
    signature: ed25519.Signature

    def __init__(self, public_key: ed25519.PublicKey, signature: ed25519.Signature):
        self.public_key = public_key
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ed25519Authenticator):
            return NotImplemented

        return self.public_key == other.public_key and self.signature == other.signature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Ed25519Authenticator:
        key = deserializer.struct(ed25519.PublicKey)
        signature = deserializer.struct(ed25519.Signature)
        return Ed25519Authenticator(key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


class MultiEd25519Authenticator(Deserializable, Serializable):
    public_key: ed25519.MultiPublicKey
    signature: ed25519.MultiSignature

    def __init__(
        self, public_key: ed25519.MultiPublicKey, signature: ed25519.MultiSignature
    ):
        self.public_key = public_key
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiEd25519Authenticator):
            return NotImplemented
        return self.public_key == other.public_key and self.signature == other.signature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiEd25519Authenticator:
        public_key = deserializer.struct(ed25519.MultiPublicKey)
        signature = deserializer.struct(ed25519.MultiSignature)
        return MultiEd25519Authenticator(public_key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


class SingleKeyAuthenticator(Deserializable, Serializable):
    public_key: single_key.AnyPublicKey
    signature: single_key.AnySignature

    def __init__(
        self,
        public_key: asymmetric_crypto.PublicKey,
        signature: asymmetric_crypto.Signature,
    ):
        if isinstance(public_key, single_key.AnyPublicKey):
            self.public_key = public_key
        else:
            self.public_key = single_key.AnyPublicKey(public_key)

        if isinstance(signature, single_key.AnySignature):
            self.signature = signature
        else:
            self.signature = single_key.AnySignature(signature)

        if not self.signature.matches(self.public_key):
            raise SchemeMismatch(
                f"A {type(self.signature.signature).__name__} cannot authenticate a "
                f"{type(self.public_key.public_key).__name__}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SingleKeyAuthenticator):
            return NotImplemented
        return self.public_key == other.public_key and self.signature == other.signature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SingleKeyAuthenticator:
        public_key = deserializer.struct(single_key.AnyPublicKey)
        signature = deserializer.struct(single_key.AnySignature)
        return SingleKeyAuthenticator(public_key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


class MultiKeyAuthenticator(Deserializable, Serializable):
    public_key: single_key.MultiKey
    signature: single_key.MultiKeySignature

    def __init__(
        self, public_key: single_key.MultiKey, signature: single_key.MultiKeySignature
    ):
        self.public_key = public_key
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiKeyAuthenticator):
            return NotImplemented
        return self.public_key == other.public_key and self.signature == other.signature

    def __str__(self) -> str:
        return f"PublicKey: {self.public_key}, Signature: {self.signature}"

    def verify(self, data: bytes) -> bool:
        return self.public_key.verify(data, self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiKeyAuthenticator:
        public_key = deserializer.struct(single_key.MultiKey)
        signature = deserializer.struct(single_key.MultiKeySignature)
        return MultiKeyAuthenticator(public_key, signature)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


class NoAccountAuthenticator(Serializable):
    """Marks a signer slot left empty during simulation. It never verifies."""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, NoAccountAuthenticator):
            return NotImplemented
        return True

    def __str__(self) -> str:
        return "NoAccountAuthenticator"

    def verify(self, data: bytes) -> bool:
        return False

    def serialize(self, serializer: Serializer):
        pass


def _zip_signers(
    addresses: List[AccountAddress], authenticators: List[AccountAuthenticator]
) -> List[typing.Tuple[AccountAddress, AccountAuthenticator]]:
    if len(addresses) != len(authenticators):
        raise TopologyMismatch(
            f"{len(addresses)} secondary addresses but {len(authenticators)} "
            "secondary authenticators"
        )
    return list(zip(addresses, authenticators))


class FeePayerAuthenticator(Deserializable, Serializable):
    sender: AccountAuthenticator
    secondary_signers: List[typing.Tuple[AccountAddress, AccountAuthenticator]]
    fee_payer: typing.Tuple[AccountAddress, AccountAuthenticator]

    def __init__(
        self,
        sender: AccountAuthenticator,
        secondary_signers: List[typing.Tuple[AccountAddress, AccountAuthenticator]],
        fee_payer: typing.Tuple[AccountAddress, AccountAuthenticator],
    ):
        self.sender = sender
        self.secondary_signers = secondary_signers
        self.fee_payer = fee_payer

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeePayerAuthenticator):
            return NotImplemented
        return (
            self.sender == other.sender
            and self.secondary_signers == other.secondary_signers
            and self.fee_payer == other.fee_payer
        )

    def __str__(self) -> str:
        return f"FeePayer: \n\tSender: {self.sender}\n\tSecondary Signers: {self.secondary_signers}\n\t{self.fee_payer}"

    def fee_payer_address(self) -> AccountAddress:
        return self.fee_payer[0]

    def secondary_addresses(self) -> List[AccountAddress]:
        return [x[0] for x in self.secondary_signers]

    def verify(self, data: bytes) -> bool:
        return self.verify_signers(data, data)

    def verify_signers(self, data: bytes, fee_payer_data: bytes) -> bool:
        """
        The fee payer always signs over its own address, while the sender and secondary
        signers may have signed before the sponsor was known, with 0x0 in its place.
        """
        if not self.fee_payer[1].verify(fee_payer_data):
            return False
        if not self.sender.verify(data):
            return False
        return all([x[1].verify(data) for x in self.secondary_signers])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> FeePayerAuthenticator:
        sender = deserializer.struct(AccountAuthenticator)
        secondary_addresses = deserializer.sequence(AccountAddress.deserialize)
        secondary_authenticators = deserializer.sequence(
            AccountAuthenticator.deserialize
        )
        fee_payer_address = deserializer.struct(AccountAddress)
        fee_payer_authenticator = deserializer.struct(AccountAuthenticator)
        return FeePayerAuthenticator(
            sender,
            _zip_signers(secondary_addresses, secondary_authenticators),
            (fee_payer_address, fee_payer_authenticator),
        )

    def serialize(self, serializer: Serializer):
        serializer.struct(self.sender)
        serializer.sequence([x[0] for x in self.secondary_signers], Serializer.struct)
        serializer.sequence([x[1] for x in self.secondary_signers], Serializer.struct)
        serializer.struct(self.fee_payer[0])
        serializer.struct(self.fee_payer[1])


class MultiAgentAuthenticator(Deserializable, Serializable):
    sender: AccountAuthenticator
    secondary_signers: List[typing.Tuple[AccountAddress, AccountAuthenticator]]

    def __init__(
        self,
        sender: AccountAuthenticator,
        secondary_signers: List[typing.Tuple[AccountAddress, AccountAuthenticator]],
    ):
        self.sender = sender
        self.secondary_signers = secondary_signers

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiAgentAuthenticator):
            return NotImplemented
        return (
            self.sender == other.sender
            and self.secondary_signers == other.secondary_signers
        )

    def __str__(self) -> str:
        return f"MultiAgent: \n\tSender: {self.sender}\n\tSecondary Signers: {self.secondary_signers}"

    def secondary_addresses(self) -> List[AccountAddress]:
        return [x[0] for x in self.secondary_signers]

    def verify(self, data: bytes) -> bool:
        if not self.sender.verify(data):
            return False
        return all([x[1].verify(data) for x in self.secondary_signers])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiAgentAuthenticator:
        sender = deserializer.struct(AccountAuthenticator)
        secondary_addresses = deserializer.sequence(AccountAddress.deserialize)
        secondary_authenticators = deserializer.sequence(
            AccountAuthenticator.deserialize
        )
        return MultiAgentAuthenticator(
            sender, _zip_signers(secondary_addresses, secondary_authenticators)
        )

    def serialize(self, serializer: Serializer):
        serializer.struct(self.sender)
        serializer.sequence([x[0] for x in self.secondary_signers], Serializer.struct)
        serializer.sequence([x[1] for x in self.secondary_signers], Serializer.struct)


class SingleSenderAuthenticator(Deserializable, Serializable):
    sender: AccountAuthenticator

    def __init__(
        self,
        sender: AccountAuthenticator,
    ):
        self.sender = sender

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SingleSenderAuthenticator):
            return NotImplemented
        return self.sender == other.sender

    def __str__(self) -> str:
        return f"SingleSender: {self.sender}"

    def verify(self, data: bytes) -> bool:
        return self.sender.verify(data)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SingleSenderAuthenticator:
        sender = deserializer.struct(AccountAuthenticator)
        return SingleSenderAuthenticator(sender)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.sender)


class Test(unittest.TestCase):
    def test_legacy_sender_variants(self):
        private_key = ed25519.PrivateKey.random()
        sender = AccountAuthenticator(
            Ed25519Authenticator(private_key.public_key(), private_key.sign(b"data"))
        )
        authenticator = Authenticator.from_sender(sender)
        self.assertEqual(authenticator.variant, Authenticator.ED25519)
        self.assertEqual(authenticator.to_bytes()[0], Authenticator.ED25519)
        self.assertTrue(authenticator.verify(b"data"))
        self.assertEqual(Authenticator.from_bytes(authenticator.to_bytes()), authenticator)

        keys = [ed25519.PrivateKey.random() for _ in range(2)]
        multi_key = ed25519.MultiPublicKey([key.public_key() for key in keys], 1)
        multi = AccountAuthenticator(
            MultiEd25519Authenticator(
                multi_key, ed25519.MultiSignature([(1, keys[1].sign(b"data"))])
            )
        )
        authenticator = Authenticator.from_sender(multi)
        self.assertEqual(authenticator.variant, Authenticator.MULTI_ED25519)
        self.assertTrue(authenticator.verify(b"data"))
        self.assertEqual(Authenticator.from_bytes(authenticator.to_bytes()), authenticator)

    def test_single_sender_variants(self):
        private_key = secp256k1_ecdsa.PrivateKey.random()
        sender = AccountAuthenticator(
            SingleKeyAuthenticator(private_key.public_key(), private_key.sign(b"data"))
        )
        authenticator = Authenticator.from_sender(sender)
        self.assertEqual(authenticator.variant, Authenticator.SINGLE_SENDER)
        self.assertEqual(authenticator.to_bytes()[:3], b"\x04\x02\x01")
        self.assertTrue(authenticator.verify(b"data"))
        self.assertEqual(Authenticator.from_bytes(authenticator.to_bytes()), authenticator)

        keys = [ed25519.PrivateKey.random(), secp256k1_ecdsa.PrivateKey.random()]
        multi_key = single_key.MultiKey([key.public_key() for key in keys], 2)
        signature = single_key.MultiKeySignature(
            [(0, keys[0].sign(b"data")), (1, keys[1].sign(b"data"))]
        )
        sender = AccountAuthenticator(MultiKeyAuthenticator(multi_key, signature))
        self.assertEqual(sender.variant, AccountAuthenticator.MULTI_KEY)
        authenticator = Authenticator.from_sender(sender)
        self.assertTrue(authenticator.verify(b"data"))
        self.assertEqual(Authenticator.from_bytes(authenticator.to_bytes()), authenticator)

    def test_single_key_scheme_mismatch(self):
        with self.assertRaises(SchemeMismatch):
            SingleKeyAuthenticator(
                ed25519.PrivateKey.random().public_key(),
                secp256k1_ecdsa.Signature(b"\x00" * 64),
            )

    def test_no_account_authenticator(self):
        authenticator = AccountAuthenticator(NoAccountAuthenticator())
        self.assertEqual(authenticator.to_bytes(), b"\x04")
        self.assertEqual(AccountAuthenticator.from_bytes(b"\x04"), authenticator)
        self.assertFalse(authenticator.verify(b"data"))

    def test_unknown_variants(self):
        with self.assertRaises(InvalidDiscriminant):
            AccountAuthenticator.from_bytes(b"\x05")
        with self.assertRaises(InvalidDiscriminant):
            Authenticator.from_bytes(b"\x05")

    def test_secondary_count_mismatch(self):
        sender = AccountAuthenticator(NoAccountAuthenticator())
        ser = Serializer()
        ser.struct(sender)
        ser.sequence([AccountAddress.ONE, AccountAddress.ZERO], Serializer.struct)
        ser.sequence([sender], Serializer.struct)
        with self.assertRaises(TopologyMismatch):
            decode(ser.output(), MultiAgentAuthenticator.deserialize)
