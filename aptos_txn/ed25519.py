# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import unittest
from typing import List, Tuple, cast

from nacl.exceptions import CryptoError
from nacl.signing import SigningKey, VerifyKey

from . import asymmetric_crypto
from .account_address import AuthKeyScheme
from .bcs import Deserializer, Serializer
from .errors import InvalidLength, MalformedInput, OutOfRange, SchemeMismatch


class PrivateKey(asymmetric_crypto.PrivateKey):
    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self):
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        if value[0:2] == "0x":
            value = value[2:]
        if len(value) != PrivateKey.LENGTH * 2:
            raise SchemeMismatch("Ed25519 private keys are 32 bytes")
        return PrivateKey(SigningKey(bytes.fromhex(value)))

    def hex(self) -> str:
        return f"0x{self.key.encode().hex()}"

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verify_key)

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate())

    def sign(self, data: bytes) -> Signature:
        return Signature(self.key.sign(data).signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PrivateKey:
        key = deserializer.to_bytes()
        if len(key) != PrivateKey.LENGTH:
            raise InvalidLength(f"Ed25519 private key of length {len(key)}")

        return PrivateKey(SigningKey(key))

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.key.encode())


class PublicKey(asymmetric_crypto.PublicKey):
    LENGTH: int = 32

    key: VerifyKey

    def __init__(self, key: VerifyKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __hash__(self):
        return hash(self.key.encode())

    def __str__(self) -> str:
        return f"0x{self.key.encode().hex()}"

    @staticmethod
    def from_crypto_bytes(data: bytes) -> PublicKey:
        """Raw 32 byte keys, including the all-zero placeholder used for simulation."""
        if len(data) != PublicKey.LENGTH:
            raise SchemeMismatch(
                f"Ed25519 public keys are {PublicKey.LENGTH} bytes, found {len(data)}"
            )
        return PublicKey(VerifyKey(bytes(data)))

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, Signature):
            return False
        try:
            self.key.verify(data, signature.data())
        except (CryptoError, ValueError):
            return False
        return True

    def to_crypto_bytes(self) -> bytes:
        return self.key.encode()

    def auth_key_scheme(self) -> bytes:
        return AuthKeyScheme.Ed25519

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PublicKey:
        key = deserializer.to_bytes()
        if len(key) != PublicKey.LENGTH:
            raise InvalidLength(f"Ed25519 public key of length {len(key)}")

        return PublicKey(VerifyKey(key))

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.key.encode())


class MultiPublicKey(asymmetric_crypto.PublicKey):
    keys: List[PublicKey]
    threshold: int

    MIN_KEYS = 2
    MAX_KEYS = 32
    MIN_THRESHOLD = 1

    def __init__(self, keys: List[PublicKey], threshold: int):
        if not self.MIN_KEYS <= len(keys) <= self.MAX_KEYS:
            raise OutOfRange(
                f"Must have between {self.MIN_KEYS} and {self.MAX_KEYS} keys."
            )
        if not self.MIN_THRESHOLD <= threshold <= len(keys):
            raise OutOfRange(
                f"Threshold must be between {self.MIN_THRESHOLD} and {len(keys)}."
            )

        self.keys = keys
        self.threshold = threshold

    def __eq__(self, other: object):
        if not isinstance(other, MultiPublicKey):
            return NotImplemented
        return self.keys == other.keys and self.threshold == other.threshold

    def __str__(self) -> str:
        return f"{self.threshold}-of-{len(self.keys)} Multi-Ed25519 public key"

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, MultiSignature):
            return False
        if len({idx for idx, _ in signature.signatures}) < self.threshold:
            return False

        for idx, inner in signature.signatures:
            if idx >= len(self.keys) or not self.keys[idx].verify(data, inner):
                return False
        return True

    @staticmethod
    def from_crypto_bytes(indata: bytes) -> MultiPublicKey:
        if len(indata) % PublicKey.LENGTH != 1:
            raise SchemeMismatch(
                f"MultiEd25519 public key of length {len(indata)} is not N * 32 + 1"
            )
        total_keys = len(indata) // PublicKey.LENGTH
        keys: List[PublicKey] = []
        for idx in range(total_keys):
            start = idx * PublicKey.LENGTH
            end = (idx + 1) * PublicKey.LENGTH
            keys.append(PublicKey(VerifyKey(indata[start:end])))
        threshold = indata[-1]
        try:
            return MultiPublicKey(keys, threshold)
        except OutOfRange as e:
            raise SchemeMismatch(f"Invalid MultiEd25519 public key: {e}") from e

    def to_crypto_bytes(self) -> bytes:
        key_bytes = bytearray()
        for key in self.keys:
            key_bytes.extend(key.to_crypto_bytes())
        key_bytes.append(self.threshold)
        return bytes(key_bytes)

    def auth_key_scheme(self) -> bytes:
        return AuthKeyScheme.MultiEd25519

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiPublicKey:
        indata = deserializer.to_bytes()
        try:
            return MultiPublicKey.from_crypto_bytes(indata)
        except SchemeMismatch as e:
            raise MalformedInput(str(e)) from e

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.to_crypto_bytes())


class Signature(asymmetric_crypto.Signature):
    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        if len(signature) != Signature.LENGTH:
            raise SchemeMismatch(
                f"Ed25519 signatures are {Signature.LENGTH} bytes, found {len(signature)}"
            )
        self.signature = bytes(signature)

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return f"0x{self.signature.hex()}"

    def data(self) -> bytes:
        return self.signature

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Signature:
        signature = deserializer.to_bytes()
        if len(signature) != Signature.LENGTH:
            raise InvalidLength(f"Ed25519 signature of length {len(signature)}")

        return Signature(signature)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.signature)


class MultiSignature(asymmetric_crypto.Signature):
    """Signatures ordered by key index, plus a 4 byte big-endian bitmap of the signers."""

    signatures: List[Tuple[int, Signature]]
    BITMAP_NUM_OF_BYTES: int = 4

    def __init__(self, signatures: List[Tuple[int, Signature]]):
        seen = set()
        for idx, _ in signatures:
            if not 0 <= idx < self.BITMAP_NUM_OF_BYTES * 8:
                raise OutOfRange("bitmap value exceeds maximum value")
            if idx in seen:
                raise OutOfRange(f"Key index {idx} signed more than once")
            seen.add(idx)
        self.signatures = sorted(signatures, key=lambda entry: entry[0])

    def __eq__(self, other: object):
        if not isinstance(other, MultiSignature):
            return NotImplemented
        return self.signatures == other.signatures

    def __str__(self) -> str:
        return f"{self.signatures}"

    @staticmethod
    def from_key_map(
        public_key: MultiPublicKey,
        signatures_map: List[Tuple[PublicKey, Signature]],
    ) -> MultiSignature:
        signatures = []

        for key, signature in signatures_map:
            signatures.append((public_key.keys.index(key), signature))
        return MultiSignature(signatures)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiSignature:
        signature_bytes = deserializer.to_bytes()
        count = len(signature_bytes) // Signature.LENGTH
        if count * Signature.LENGTH + MultiSignature.BITMAP_NUM_OF_BYTES != len(
            signature_bytes
        ):
            raise InvalidLength("MultiSignature length is invalid")

        bitmap = int.from_bytes(signature_bytes[-4:], "big")
        if bin(bitmap).count("1") != count:
            raise InvalidLength("MultiSignature bitmap does not match signature count")

        current = 0
        position = 0
        signatures = []
        while current < count:
            to_check = 1 << (31 - position)
            if to_check & bitmap:
                left = current * Signature.LENGTH
                signature = Signature(signature_bytes[left : left + Signature.LENGTH])
                signatures.append((position, signature))
                current += 1
            position += 1

        return MultiSignature(signatures)

    def serialize(self, serializer: Serializer):
        signature_bytes = bytearray()
        bitmap = 0

        for idx, signature in self.signatures:
            bitmap = bitmap | (1 << (31 - idx))
            signature_bytes.extend(signature.data())

        signature_bytes.extend(
            bitmap.to_bytes(MultiSignature.BITMAP_NUM_OF_BYTES, "big")
        )
        serializer.to_bytes(bytes(signature_bytes))


class Test(unittest.TestCase):
    def test_sign_and_verify(self):
        in_value = b"test_message"

        private_key = PrivateKey.random()
        public_key = private_key.public_key()

        signature = private_key.sign(in_value)
        self.assertTrue(public_key.verify(in_value, signature))
        self.assertFalse(public_key.verify(b"other_message", signature))

    def test_private_key_serialization(self):
        private_key = PrivateKey.random()
        self.assertEqual(private_key, PrivateKey.from_bytes(private_key.to_bytes()))

    def test_public_key_serialization(self):
        public_key = PrivateKey.random().public_key()

        ser = Serializer()
        public_key.serialize(ser)
        ser_public_key = PublicKey.deserialize(Deserializer(ser.output()))
        self.assertEqual(public_key, ser_public_key)

    def test_signature_serialization(self):
        signature = PrivateKey.random().sign(b"another_message")
        self.assertEqual(signature, Signature.from_bytes(signature.to_bytes()))

    def test_length_checks(self):
        with self.assertRaises(SchemeMismatch):
            PublicKey.from_crypto_bytes(b"\x01" * 33)
        with self.assertRaises(SchemeMismatch):
            Signature(b"\x01" * 65)
        with self.assertRaises(InvalidLength):
            PublicKey.from_bytes(b"\x1f" + b"\x01" * 31)

    def test_zero_placeholders(self):
        public_key = PublicKey.from_crypto_bytes(b"\x00" * 32)
        signature = Signature(b"\x00" * 64)
        self.assertEqual(public_key.to_bytes(), b"\x20" + b"\x00" * 32)
        self.assertFalse(public_key.verify(b"message", signature))

    def test_multisig(self):
        private_key_1 = PrivateKey.from_str(
            "4e5e3be60f4bbd5e98d086d932f3ce779ff4b58da99bf9e5241ae1212a29e5fe"
        )
        private_key_2 = PrivateKey.from_str(
            "1e70e49b78f976644e2c51754a2f049d3ff041869c669523ba95b172c7329901"
        )
        multisig_public_key = MultiPublicKey(
            [private_key_1.public_key(), private_key_2.public_key()], 1
        )

        expected_public_key_bcs = (
            "41754bb6a4720a658bdd5f532995955db0971ad3519acbde2f1149c3857348006c"
            "1634cd4607073f2be4a6f2aadc2b866ddb117398a675f2096ed906b20e0bf2c901"
        )
        self.assertEqual(multisig_public_key.to_bytes().hex(), expected_public_key_bcs)
        multisig_public_key = MultiPublicKey.from_bytes(
            bytes.fromhex(expected_public_key_bcs)
        )
        self.assertEqual(multisig_public_key.to_bytes().hex(), expected_public_key_bcs)

        signature = private_key_2.sign(b"multisig")
        multisig_signature = MultiSignature.from_key_map(
            multisig_public_key, [(private_key_2.public_key(), signature)]
        )
        expected_multisig_signature_bcs = (
            "4402e90d8f300d79963cb7159ffa6f620f5bba4af5d32a7176bfb5480b43897cf"
            "4886bbb4042182f4647c9b04f02dbf989966f0facceec52d22bdcc7ce631bfc0c"
            "40000000"
        )
        self.assertEqual(
            multisig_signature.to_bytes().hex(), expected_multisig_signature_bcs
        )
        self.assertEqual(
            MultiSignature.from_bytes(bytes.fromhex(expected_multisig_signature_bcs)),
            multisig_signature,
        )

        self.assertTrue(multisig_public_key.verify(b"multisig", multisig_signature))
        self.assertFalse(multisig_public_key.verify(b"other", multisig_signature))

    def test_multisig_below_threshold(self):
        keys = [PrivateKey.random() for _ in range(3)]
        multisig_public_key = MultiPublicKey([key.public_key() for key in keys], 2)
        one_signature = MultiSignature([(0, keys[0].sign(b"data"))])
        self.assertFalse(multisig_public_key.verify(b"data", one_signature))

        two_signatures = MultiSignature(
            [(2, keys[2].sign(b"data")), (0, keys[0].sign(b"data"))]
        )
        self.assertEqual(two_signatures.signatures[0][0], 0)
        self.assertTrue(multisig_public_key.verify(b"data", two_signatures))

    def test_multisig_range_checks(self):
        keys = [
            PrivateKey.random().public_key() for x in range(MultiPublicKey.MAX_KEYS + 1)
        ]
        with self.assertRaisesRegex(OutOfRange, "Must have between 2 and 32 keys."):
            MultiPublicKey([keys[0]], 1)
        with self.assertRaisesRegex(OutOfRange, "Must have between 2 and 32 keys."):
            MultiPublicKey(keys, 1)
        with self.assertRaisesRegex(OutOfRange, "Threshold must be between 1 and 4."):
            MultiPublicKey(keys[0:4], 0)
        with self.assertRaisesRegex(OutOfRange, "Threshold must be between 1 and 4."):
            MultiPublicKey(keys[0:4], 5)
        with self.assertRaises(OutOfRange):
            MultiSignature([(32, Signature(b"\x00" * 64))])

    def test_multisig_duplicate_signer(self):
        keys = [PrivateKey.random() for _ in range(3)]
        multisig_public_key = MultiPublicKey([key.public_key() for key in keys], 2)
        signature = keys[0].sign(b"data")
        with self.assertRaises(OutOfRange):
            MultiSignature([(0, signature), (0, signature)])

        repeated = MultiSignature([(0, signature)])
        repeated.signatures.append((0, signature))
        self.assertFalse(multisig_public_key.verify(b"data", repeated))

        unknown_key = MultiSignature([(0, signature), (3, keys[1].sign(b"data"))])
        self.assertFalse(multisig_public_key.verify(b"data", unknown_key))

    def test_multisig_invalid_public_key_bytes(self):
        key = PrivateKey.random().public_key().to_crypto_bytes()
        for threshold in [0, 3]:
            encoded = key + key + bytes([threshold])
            with self.assertRaises(SchemeMismatch):
                MultiPublicKey.from_crypto_bytes(encoded)
            with self.assertRaises(MalformedInput):
                MultiPublicKey.from_bytes(bytes([len(encoded)]) + encoded)
        with self.assertRaises(MalformedInput):
            MultiPublicKey.from_bytes(b"\x21" + key + b"\x01")
