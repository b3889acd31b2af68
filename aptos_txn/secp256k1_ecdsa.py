# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import hashlib
import unittest

from ecdsa import SECP256k1, BadSignatureError, MalformedPointError, SigningKey
from ecdsa import VerifyingKey, util

from . import asymmetric_crypto
from .bcs import Deserializer, Serializer
from .errors import InvalidLength, MalformedInput, SchemeMismatch

CURVE_ORDER = SECP256k1.generator.order()


class PrivateKey(asymmetric_crypto.PrivateKey):
    LENGTH: int = 32

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key.to_string() == other.key.to_string()

    def __str__(self):
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        if value[0:2] == "0x":
            value = value[2:]
        if len(value) != PrivateKey.LENGTH * 2:
            raise SchemeMismatch("Secp256k1 private keys are 32 bytes")
        return PrivateKey(
            SigningKey.from_string(bytes.fromhex(value), SECP256k1, hashlib.sha3_256)
        )

    def hex(self) -> str:
        return f"0x{self.key.to_string().hex()}"

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verifying_key.to_string())

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(
            SigningKey.generate(curve=SECP256k1, hashfunc=hashlib.sha3_256)
        )

    def sign(self, data: bytes) -> Signature:
        sig = self.key.sign_deterministic(data, hashfunc=hashlib.sha3_256)
        r, s = util.sigdecode_string(sig, CURVE_ORDER)
        # Both s and -s are valid, only the low form is accepted by the ledger.
        if s > (CURVE_ORDER // 2):
            sig = util.sigencode_string(r, CURVE_ORDER - s, CURVE_ORDER)
        return Signature(sig)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PrivateKey:
        key = deserializer.to_bytes()
        if len(key) != PrivateKey.LENGTH:
            raise InvalidLength(f"Secp256k1 private key of length {len(key)}")

        return PrivateKey(SigningKey.from_string(key, SECP256k1, hashlib.sha3_256))

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.key.to_string())


class PublicKey(asymmetric_crypto.PublicKey):
    """
    An uncompressed point. The raw coordinates are kept as given and only parsed into a
    curve point on verification, so all-zero simulation placeholders can be carried.
    """

    LENGTH: int = 64
    LENGTH_WITH_PREFIX_LENGTH: int = 65

    key_bytes: bytes

    def __init__(self, key_bytes: bytes):
        if len(key_bytes) == PublicKey.LENGTH_WITH_PREFIX_LENGTH:
            if key_bytes[0] != 0x04:
                raise SchemeMismatch(
                    "Secp256k1 public keys must be uncompressed (0x04 prefix)"
                )
            key_bytes = key_bytes[1:]
        if len(key_bytes) != PublicKey.LENGTH:
            raise SchemeMismatch(
                f"Secp256k1 public keys are {PublicKey.LENGTH} or "
                f"{PublicKey.LENGTH_WITH_PREFIX_LENGTH} bytes, found {len(key_bytes)}"
            )
        self.key_bytes = bytes(key_bytes)

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key_bytes == other.key_bytes

    def __str__(self) -> str:
        return self.hex()

    @staticmethod
    def from_str(value: str) -> PublicKey:
        if value[0:2] == "0x":
            value = value[2:]
        return PublicKey(bytes.fromhex(value))

    def hex(self) -> str:
        return f"0x{self.to_crypto_bytes().hex()}"

    def verifying_key(self) -> VerifyingKey:
        return VerifyingKey.from_string(self.key_bytes, SECP256k1, hashlib.sha3_256)

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, Signature) or not signature.is_low_s():
            return False
        try:
            return self.verifying_key().verify(signature.data(), data)
        except (BadSignatureError, MalformedPointError):
            return False

    def to_crypto_bytes(self) -> bytes:
        return b"\x04" + self.key_bytes

    def auth_key_scheme(self) -> bytes:
        raise SchemeMismatch("Secp256k1 keys are only addressable as single keys")

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PublicKey:
        key = deserializer.to_bytes()
        if len(key) != PublicKey.LENGTH_WITH_PREFIX_LENGTH:
            raise InvalidLength(f"Secp256k1 public key of length {len(key)}")
        if key[0] != 0x04:
            raise MalformedInput(f"Secp256k1 public key prefix 0x{key[0]:02x}")
        return PublicKey(key)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.to_crypto_bytes())


class Signature(asymmetric_crypto.Signature):
    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        if len(signature) != Signature.LENGTH:
            raise SchemeMismatch(
                f"Secp256k1 signatures are {Signature.LENGTH} bytes, "
                f"found {len(signature)}"
            )
        self.signature = bytes(signature)

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return self.hex()

    def hex(self) -> str:
        return f"0x{self.signature.hex()}"

    @staticmethod
    def from_str(value: str) -> Signature:
        if value[0:2] == "0x":
            value = value[2:]
        return Signature(bytes.fromhex(value))

    def data(self) -> bytes:
        return self.signature

    def is_low_s(self) -> bool:
        _, s = util.sigdecode_string(self.signature, CURVE_ORDER)
        return s <= CURVE_ORDER // 2

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Signature:
        signature = deserializer.to_bytes()
        if len(signature) != Signature.LENGTH:
            raise InvalidLength(f"Secp256k1 signature of length {len(signature)}")

        return Signature(signature)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.signature)


class Test(unittest.TestCase):
    def test_vectors(self):
        private_key_hex = (
            "0x306fa009600e27c09d2659145ce1785249360dd5fb992da01a578fe67ed607f4"
        )
        public_key_hex = "0x04210c9129e35337ff5d6488f90f18d842cf985f06e0baeff8df4bfb2ac4221863e2631b971a237b5db0aa71188e33250732dd461d56ee623cbe0426a5c2db79ef"
        signature_hex = "0xa539b0973e76fa99b2a864eebd5da950b4dfb399c7afe57ddb34130e454fc9db04dceb2c3d4260b8cc3d3952ab21b5d36c7dc76277fe3747764e6762d12bd9a9"
        data = b"Hello world"

        private_key = PrivateKey.from_str(private_key_hex)
        local_public_key = private_key.public_key()
        local_signature = private_key.sign(data)
        self.assertTrue(local_public_key.verify(data, local_signature))

        original_public_key = PublicKey.from_str(public_key_hex)
        self.assertTrue(original_public_key.verify(data, local_signature))
        self.assertEqual(public_key_hex[2:], local_public_key.to_crypto_bytes().hex())

        original_signature = Signature.from_str(signature_hex)
        self.assertTrue(original_public_key.verify(data, original_signature))

    def test_high_s_rejected(self):
        private_key = PrivateKey.random()
        signature = private_key.sign(b"data")
        self.assertTrue(signature.is_low_s())

        r, s = util.sigdecode_string(signature.data(), CURVE_ORDER)
        high_s = Signature(util.sigencode_string(r, CURVE_ORDER - s, CURVE_ORDER))
        self.assertFalse(high_s.is_low_s())
        self.assertFalse(private_key.public_key().verify(b"data", high_s))

    def test_zero_placeholders(self):
        public_key = PublicKey(b"\x00" * 64)
        signature = Signature(b"\x00" * 64)
        self.assertEqual(public_key.to_bytes(), b"\x41\x04" + b"\x00" * 64)
        self.assertFalse(public_key.verify(b"data", signature))

    def test_length_checks(self):
        with self.assertRaises(SchemeMismatch):
            PublicKey(b"\x04" * 33)
        with self.assertRaises(SchemeMismatch):
            Signature(b"\x00" * 63)
        with self.assertRaises(SchemeMismatch):
            PublicKey(b"\x02" + b"\x00" * 64)

    def test_deserialize_requires_prefixed_key(self):
        key = PrivateKey.random().public_key().key_bytes
        with self.assertRaises(InvalidLength):
            PublicKey.from_bytes(b"\x40" + key)
        with self.assertRaises(MalformedInput):
            PublicKey.from_bytes(b"\x41\x03" + key)
        self.assertEqual(PublicKey.from_bytes(b"\x41\x04" + key), PublicKey(key))

    def test_serialization(self):
        private_key = PrivateKey.random()
        public_key = private_key.public_key()
        signature = private_key.sign(b"another_message")

        self.assertEqual(private_key, PrivateKey.from_bytes(private_key.to_bytes()))
        self.assertEqual(public_key, PublicKey.from_bytes(public_key.to_bytes()))
        self.assertEqual(signature, Signature.from_bytes(signature.to_bytes()))
