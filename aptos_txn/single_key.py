# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Scheme-tagged keys and signatures (SingleKey) and their threshold combination (MultiKey).
Both wrap any key of a supported scheme behind a ULEB128 variant index.
"""

from __future__ import annotations

import unittest
from typing import List, Tuple

from . import asymmetric_crypto, ed25519, keyless, secp256k1_ecdsa
from .account_address import AuthKeyScheme
from .bcs import Deserializer, Serializer
from .errors import (
    InvalidDiscriminant,
    InvalidLength,
    MalformedInput,
    OutOfRange,
    SchemeMismatch,
)


class AnyPublicKey(asymmetric_crypto.PublicKey):
    ED25519: int = 0
    SECP256K1_ECDSA: int = 1
    KEYLESS: int = 3

    variant: int
    public_key: asymmetric_crypto.PublicKey

    def __init__(self, public_key: asymmetric_crypto.PublicKey):
        if isinstance(public_key, ed25519.PublicKey):
            self.variant = AnyPublicKey.ED25519
        elif isinstance(public_key, secp256k1_ecdsa.PublicKey):
            self.variant = AnyPublicKey.SECP256K1_ECDSA
        elif isinstance(public_key, keyless.KeylessPublicKey):
            self.variant = AnyPublicKey.KEYLESS
        else:
            raise SchemeMismatch(
                f"{type(public_key).__name__} cannot be used as a single key"
            )
        self.public_key = public_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AnyPublicKey):
            return NotImplemented
        return self.variant == other.variant and self.public_key == other.public_key

    def __str__(self) -> str:
        return str(self.public_key)

    def to_crypto_bytes(self) -> bytes:
        return self.to_bytes()

    def auth_key_scheme(self) -> bytes:
        return AuthKeyScheme.SingleKey

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if isinstance(signature, AnySignature):
            if not signature.matches(self):
                return False
            signature = signature.signature
        return self.public_key.verify(data, signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AnyPublicKey:
        variant = deserializer.uleb128()

        if variant == AnyPublicKey.ED25519:
            public_key: asymmetric_crypto.PublicKey = ed25519.PublicKey.deserialize(
                deserializer
            )
        elif variant == AnyPublicKey.SECP256K1_ECDSA:
            public_key = secp256k1_ecdsa.PublicKey.deserialize(deserializer)
        elif variant == AnyPublicKey.KEYLESS:
            public_key = keyless.KeylessPublicKey.deserialize(deserializer)
        else:
            raise InvalidDiscriminant(f"Invalid public key variant: {variant}", variant)

        return AnyPublicKey(public_key)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        serializer.struct(self.public_key)


class AnySignature(asymmetric_crypto.Signature):
    ED25519: int = 0
    SECP256K1_ECDSA: int = 1
    KEYLESS: int = 3

    variant: int
    signature: asymmetric_crypto.Signature

    def __init__(self, signature: asymmetric_crypto.Signature):
        if isinstance(signature, ed25519.Signature):
            self.variant = AnySignature.ED25519
        elif isinstance(signature, secp256k1_ecdsa.Signature):
            self.variant = AnySignature.SECP256K1_ECDSA
        elif isinstance(signature, keyless.KeylessSignature):
            self.variant = AnySignature.KEYLESS
        else:
            raise SchemeMismatch(
                f"{type(signature).__name__} cannot be used as a single key signature"
            )
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AnySignature):
            return NotImplemented
        return self.variant == other.variant and self.signature == other.signature

    def __str__(self) -> str:
        return str(self.signature)

    def matches(self, public_key: AnyPublicKey) -> bool:
        return self.variant == public_key.variant

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AnySignature:
        variant = deserializer.uleb128()

        if variant == AnySignature.ED25519:
            signature: asymmetric_crypto.Signature = ed25519.Signature.deserialize(
                deserializer
            )
        elif variant == AnySignature.SECP256K1_ECDSA:
            signature = secp256k1_ecdsa.Signature.deserialize(deserializer)
        elif variant == AnySignature.KEYLESS:
            signature = keyless.KeylessSignature.deserialize(deserializer)
        else:
            raise InvalidDiscriminant(f"Invalid signature variant: {variant}", variant)

        return AnySignature(signature)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        serializer.struct(self.signature)


class MultiKey(asymmetric_crypto.PublicKey):
    """A threshold of heterogeneous single keys: Vec<AnyPublicKey> followed by a u8."""

    keys: List[AnyPublicKey]
    threshold: int

    MIN_KEYS = 1
    MAX_KEYS = 32
    MIN_THRESHOLD = 1

    def __init__(self, keys: List[asymmetric_crypto.PublicKey], threshold: int):
        if not self.MIN_KEYS <= len(keys) <= self.MAX_KEYS:
            raise OutOfRange(
                f"Must have between {self.MIN_KEYS} and {self.MAX_KEYS} keys."
            )
        if not self.MIN_THRESHOLD <= threshold <= len(keys):
            raise OutOfRange(
                f"Threshold must be between {self.MIN_THRESHOLD} and {len(keys)}."
            )

        self.keys = [
            key if isinstance(key, AnyPublicKey) else AnyPublicKey(key) for key in keys
        ]
        self.threshold = threshold

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiKey):
            return NotImplemented
        return self.keys == other.keys and self.threshold == other.threshold

    def __str__(self) -> str:
        return f"{self.threshold}-of-{len(self.keys)} MultiKey"

    def to_crypto_bytes(self) -> bytes:
        return self.to_bytes()

    def auth_key_scheme(self) -> bytes:
        return AuthKeyScheme.MultiKey

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, MultiKeySignature):
            return False
        if len({idx for idx, _ in signature.signatures}) < self.threshold:
            return False

        for idx, inner in signature.signatures:
            if idx >= len(self.keys) or not self.keys[idx].verify(data, inner):
                return False
        return True

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiKey:
        keys = deserializer.sequence(AnyPublicKey.deserialize)
        threshold = deserializer.u8()
        try:
            return MultiKey(keys, threshold)
        except OutOfRange as e:
            raise MalformedInput(f"Invalid MultiKey: {e}") from e

    def serialize(self, serializer: Serializer):
        serializer.sequence(self.keys, Serializer.struct)
        serializer.u8(self.threshold)


class MultiKeySignature(asymmetric_crypto.Signature):
    """Vec<AnySignature> ordered by key index, followed by a 4 byte bitmap of the signers."""

    signatures: List[Tuple[int, AnySignature]]
    BITMAP_NUM_OF_BYTES: int = 4

    def __init__(self, signatures: List[Tuple[int, asymmetric_crypto.Signature]]):
        wrapped = []
        seen = set()
        for idx, signature in signatures:
            if not 0 <= idx < self.BITMAP_NUM_OF_BYTES * 8:
                raise OutOfRange("bitmap value exceeds maximum value")
            if idx in seen:
                raise OutOfRange(f"Key index {idx} signed more than once")
            seen.add(idx)
            if not isinstance(signature, AnySignature):
                signature = AnySignature(signature)
            wrapped.append((idx, signature))
        self.signatures = sorted(wrapped, key=lambda entry: entry[0])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiKeySignature):
            return NotImplemented
        return self.signatures == other.signatures

    def __str__(self) -> str:
        return f"{self.signatures}"

    def bitmap(self) -> bytes:
        bitmap = 0
        for idx, _ in self.signatures:
            bitmap |= 1 << (self.BITMAP_NUM_OF_BYTES * 8 - 1 - idx)
        return bitmap.to_bytes(self.BITMAP_NUM_OF_BYTES, "big")

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultiKeySignature:
        signatures = deserializer.sequence(AnySignature.deserialize)
        bitmap_bytes = deserializer.to_bytes()
        if len(bitmap_bytes) != MultiKeySignature.BITMAP_NUM_OF_BYTES:
            raise InvalidLength(f"MultiKey bitmap of length {len(bitmap_bytes)}")

        bitmap = int.from_bytes(bitmap_bytes, "big")
        positions = [
            position
            for position in range(MultiKeySignature.BITMAP_NUM_OF_BYTES * 8)
            if bitmap & (1 << (31 - position))
        ]
        if len(positions) != len(signatures):
            raise InvalidLength("MultiKey bitmap does not match signature count")
        return MultiKeySignature(list(zip(positions, signatures)))

    def serialize(self, serializer: Serializer):
        serializer.sequence(
            [signature for _, signature in self.signatures], Serializer.struct
        )
        serializer.to_bytes(self.bitmap())


class Test(unittest.TestCase):
    def test_any_public_key_encoding(self):
        ed_key = ed25519.PublicKey.from_crypto_bytes(b"\x11" * 32)
        any_key = AnyPublicKey(ed_key)
        self.assertEqual(any_key.to_bytes(), b"\x00\x20" + b"\x11" * 32)
        self.assertEqual(AnyPublicKey.from_bytes(any_key.to_bytes()), any_key)

        secp_key = secp256k1_ecdsa.PrivateKey.random().public_key()
        any_key = AnyPublicKey(secp_key)
        self.assertEqual(any_key.to_bytes()[:3], b"\x01\x41\x04")
        self.assertEqual(AnyPublicKey.from_bytes(any_key.to_bytes()), any_key)

    def test_unknown_variant(self):
        with self.assertRaises(InvalidDiscriminant) as cm:
            AnyPublicKey.from_bytes(b"\x02\x20" + b"\x00" * 32)
        self.assertEqual(cm.exception.variant, 2)

    def test_legacy_keys_rejected(self):
        keys = [ed25519.PrivateKey.random().public_key() for _ in range(2)]
        with self.assertRaises(SchemeMismatch):
            AnyPublicKey(ed25519.MultiPublicKey(keys, 1))

    def test_cross_scheme_signature_rejected(self):
        message = b"message"
        ed_private = ed25519.PrivateKey.random()
        secp_private = secp256k1_ecdsa.PrivateKey.random()

        any_ed = AnyPublicKey(ed_private.public_key())
        self.assertTrue(any_ed.verify(message, AnySignature(ed_private.sign(message))))
        self.assertFalse(
            any_ed.verify(message, AnySignature(secp_private.sign(message)))
        )

    def test_multi_key(self):
        message = b"multikey"
        ed_private = ed25519.PrivateKey.random()
        secp_private = secp256k1_ecdsa.PrivateKey.random()
        other_private = ed25519.PrivateKey.random()

        multi_key = MultiKey(
            [
                ed_private.public_key(),
                secp_private.public_key(),
                other_private.public_key(),
            ],
            2,
        )
        self.assertEqual(MultiKey.from_bytes(multi_key.to_bytes()), multi_key)

        signature = MultiKeySignature(
            [(1, secp_private.sign(message)), (0, ed_private.sign(message))]
        )
        self.assertEqual(signature.bitmap(), b"\xc0\x00\x00\x00")
        self.assertTrue(multi_key.verify(message, signature))
        self.assertEqual(
            MultiKeySignature.from_bytes(signature.to_bytes()), signature
        )

        one_signature = MultiKeySignature([(2, other_private.sign(message))])
        self.assertEqual(one_signature.bitmap(), b"\x20\x00\x00\x00")
        self.assertFalse(multi_key.verify(message, one_signature))

        swapped = MultiKeySignature(
            [(0, secp_private.sign(message)), (1, ed_private.sign(message))]
        )
        self.assertFalse(multi_key.verify(message, swapped))

    def test_multi_key_bitmap_mismatch(self):
        signature = MultiKeySignature([(0, ed25519.Signature(b"\x00" * 64))])
        encoded = bytearray(signature.to_bytes())
        encoded[-4] = 0xC0
        with self.assertRaises(InvalidLength):
            MultiKeySignature.from_bytes(bytes(encoded))

    def test_multi_key_duplicate_signer(self):
        keys = [ed25519.PrivateKey.random() for _ in range(3)]
        multi_key = MultiKey([key.public_key() for key in keys], 2)
        signature = keys[0].sign(b"data")
        with self.assertRaises(OutOfRange):
            MultiKeySignature([(0, signature), (0, signature)])

        repeated = MultiKeySignature([(0, signature)])
        repeated.signatures.append((0, AnySignature(signature)))
        self.assertFalse(multi_key.verify(b"data", repeated))

        unknown_key = MultiKeySignature([(0, signature), (5, keys[1].sign(b"data"))])
        self.assertFalse(multi_key.verify(b"data", unknown_key))

    def test_multi_key_invalid_threshold_bytes(self):
        key = AnyPublicKey(ed25519.PrivateKey.random().public_key())
        for threshold in [0, 2]:
            encoded = b"\x01" + key.to_bytes() + bytes([threshold])
            with self.assertRaises(MalformedInput):
                MultiKey.from_bytes(encoded)
        with self.assertRaises(MalformedInput):
            MultiKey.from_bytes(b"\x00\x01")
