# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Keyless accounts are controlled by an OpenID identity instead of a long lived key. The account
address commits to the identity provider (`iss`), the application (`aud`) and the user id under
a secret pepper. Transactions are signed by a short lived ephemeral key that a zero-knowledge
proof binds to the user's JWT.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import unittest
from typing import Any, Dict, List, Optional
from unittest import mock

import jwt

from . import asymmetric_crypto, ed25519, poseidon, single_key
from .account_address import AccountAddress
from .bcs import Deserializable, Deserializer, Serializable, Serializer
from .errors import (
    DerivationFailure,
    InvalidDiscriminant,
    InvalidLength,
    OutOfRange,
    SchemeMismatch,
)

PEPPER_LENGTH = 32
BLINDER_LENGTH = 31
TRANSACTION_AND_PROOF_SALT = b"APTOS::TransactionAndProof"
# Byte budgets of the claims and the ephemeral key inside the circuits.
MAX_AUD_VAL_BYTES = 120
MAX_UID_KEY_BYTES = 30
MAX_UID_VAL_BYTES = 330
MAX_COMMITTED_EPK_BYTES = 93

# Default lifetime of an ephemeral key pair.
EPHEMERAL_KEY_TTL_SECS = 14 * 24 * 60 * 60


def _prehash(salt: bytes) -> bytes:
    return hashlib.sha3_256(salt).digest()


def _poseidon(inputs: List[int]) -> int:
    try:
        return poseidon.hash_scalars(inputs)
    except KeyError as e:
        raise DerivationFailure(str(e)) from e


def _hash_claim(value: str, max_size: int) -> int:
    try:
        return poseidon.hash_str_to_field(value, max_size)
    except OutOfRange as e:
        raise DerivationFailure(f"Claim '{value}' is too long: {e}") from e
    except KeyError as e:
        raise DerivationFailure(str(e)) from e


class EphemeralPublicKey(Deserializable, Serializable):
    ED25519: int = 0

    public_key: ed25519.PublicKey

    def __init__(self, public_key: ed25519.PublicKey):
        if not isinstance(public_key, ed25519.PublicKey):
            raise SchemeMismatch("Ephemeral keys must be Ed25519")
        self.public_key = public_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EphemeralPublicKey):
            return NotImplemented
        return self.public_key == other.public_key

    def __str__(self) -> str:
        return str(self.public_key)

    def verify(self, data: bytes, signature: EphemeralSignature) -> bool:
        return self.public_key.verify(data, signature.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> EphemeralPublicKey:
        variant = deserializer.uleb128()
        if variant != EphemeralPublicKey.ED25519:
            raise InvalidDiscriminant(f"Invalid ephemeral public key: {variant}", variant)
        return EphemeralPublicKey(ed25519.PublicKey.deserialize(deserializer))

    def serialize(self, serializer: Serializer):
        serializer.uleb128(EphemeralPublicKey.ED25519)
        serializer.struct(self.public_key)


class EphemeralSignature(Deserializable, Serializable):
    ED25519: int = 0

    signature: ed25519.Signature

    def __init__(self, signature: ed25519.Signature):
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EphemeralSignature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return str(self.signature)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> EphemeralSignature:
        variant = deserializer.uleb128()
        if variant != EphemeralSignature.ED25519:
            raise InvalidDiscriminant(f"Invalid ephemeral signature: {variant}", variant)
        return EphemeralSignature(ed25519.Signature.deserialize(deserializer))

    def serialize(self, serializer: Serializer):
        serializer.uleb128(EphemeralSignature.ED25519)
        serializer.struct(self.signature)


class EphemeralKeyPair:
    """A short lived Ed25519 key whose nonce is embedded in the JWT from the provider."""

    private_key: ed25519.PrivateKey
    expiry_date_secs: int
    blinder: bytes

    def __init__(
        self,
        private_key: ed25519.PrivateKey,
        expiry_date_secs: int,
        blinder: Optional[bytes] = None,
    ):
        self.private_key = private_key
        self.expiry_date_secs = expiry_date_secs
        self.blinder = secrets.token_bytes(BLINDER_LENGTH) if blinder is None else blinder
        if len(self.blinder) != BLINDER_LENGTH:
            raise DerivationFailure(
                f"Blinder must be {BLINDER_LENGTH} bytes, found {len(self.blinder)}"
            )

    @staticmethod
    def generate(now: int, ttl: int = EPHEMERAL_KEY_TTL_SECS) -> EphemeralKeyPair:
        return EphemeralKeyPair(ed25519.PrivateKey.random(), now + ttl)

    def public_key(self) -> EphemeralPublicKey:
        return EphemeralPublicKey(self.private_key.public_key())

    def is_expired(self, now: int) -> bool:
        return now >= self.expiry_date_secs

    def nonce(self) -> str:
        """
        Poseidon commitment to the ephemeral public key, its expiry and the blinder, as the
        decimal string the provider embeds in the JWT.
        """
        fields = poseidon.pad_and_pack_bytes_with_len(
            self.public_key().to_bytes(), MAX_COMMITTED_EPK_BYTES
        )
        fields.append(self.expiry_date_secs)
        fields.append(int.from_bytes(self.blinder, "little"))
        return str(_poseidon(fields))

    def sign(self, data: bytes) -> EphemeralSignature:
        return EphemeralSignature(self.private_key.sign(data))


class IdCommitment(Deserializable, Serializable):
    LENGTH: int = 32

    data: bytes

    def __init__(self, data: bytes):
        if len(data) != IdCommitment.LENGTH:
            raise InvalidLength(f"Identity commitment of length {len(data)}")
        self.data = data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdCommitment):
            return NotImplemented
        return self.data == other.data

    def __str__(self) -> str:
        return f"0x{self.data.hex()}"

    @staticmethod
    def create(pepper: bytes, aud: str, uid_key: str, uid_val: str) -> IdCommitment:
        """
        Poseidon hash of the pepper and the hashed `aud`, `uid_val` and `uid_key` claims. The
        circuit parameters must be registered with `poseidon` first.
        """
        if len(pepper) != PEPPER_LENGTH:
            raise DerivationFailure(
                f"Pepper must be {PEPPER_LENGTH} bytes, found {len(pepper)}"
            )
        fields = [
            int.from_bytes(pepper, "little"),
            _hash_claim(aud, MAX_AUD_VAL_BYTES),
            _hash_claim(uid_val, MAX_UID_VAL_BYTES),
            _hash_claim(uid_key, MAX_UID_KEY_BYTES),
        ]
        return IdCommitment(
            poseidon.scalar_to_bytes(_poseidon(fields), IdCommitment.LENGTH)
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> IdCommitment:
        return IdCommitment(deserializer.to_bytes())

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.data)


class KeylessPublicKey(asymmetric_crypto.PublicKey):
    iss: str
    idc: IdCommitment

    def __init__(self, iss: str, idc: IdCommitment):
        self.iss = iss
        self.idc = idc

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeylessPublicKey):
            return NotImplemented
        return self.iss == other.iss and self.idc == other.idc

    def __str__(self) -> str:
        return f"Keyless({self.iss}, {self.idc})"

    @staticmethod
    def create(iss: str, aud: str, uid_val: str, pepper: bytes, uid_key: str = "sub"):
        return KeylessPublicKey(iss, IdCommitment.create(pepper, aud, uid_key, uid_val))

    def to_crypto_bytes(self) -> bytes:
        return self.to_bytes()

    def auth_key_scheme(self) -> bytes:
        raise SchemeMismatch("Keyless keys are only authenticated as single keys")

    def verify(self, data: bytes, signature: asymmetric_crypto.Signature) -> bool:
        if not isinstance(signature, KeylessSignature):
            return False
        return signature.verify_ephemeral(data)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> KeylessPublicKey:
        iss = deserializer.str()
        idc = IdCommitment.deserialize(deserializer)
        return KeylessPublicKey(iss, idc)

    def serialize(self, serializer: Serializer):
        serializer.str(self.iss)
        serializer.struct(self.idc)


class Groth16Proof(Deserializable, Serializable):
    A_LENGTH: int = 32
    B_LENGTH: int = 64
    C_LENGTH: int = 32

    a: bytes
    b: bytes
    c: bytes

    def __init__(self, a: bytes, b: bytes, c: bytes):
        for name, value, length in [
            ("a", a, self.A_LENGTH),
            ("b", b, self.B_LENGTH),
            ("c", c, self.C_LENGTH),
        ]:
            if len(value) != length:
                raise InvalidLength(
                    f"Groth16 point {name} must be {length} bytes, found {len(value)}"
                )
        self.a = a
        self.b = b
        self.c = c

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Groth16Proof):
            return NotImplemented
        return self.a == other.a and self.b == other.b and self.c == other.c

    @staticmethod
    def zero() -> Groth16Proof:
        return Groth16Proof(
            b"\x00" * Groth16Proof.A_LENGTH,
            b"\x00" * Groth16Proof.B_LENGTH,
            b"\x00" * Groth16Proof.C_LENGTH,
        )

    @staticmethod
    def from_json(data: Dict[str, str]) -> Groth16Proof:
        return Groth16Proof(
            bytes.fromhex(data["a"].removeprefix("0x")),
            bytes.fromhex(data["b"].removeprefix("0x")),
            bytes.fromhex(data["c"].removeprefix("0x")),
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Groth16Proof:
        a = deserializer.fixed_bytes(Groth16Proof.A_LENGTH)
        b = deserializer.fixed_bytes(Groth16Proof.B_LENGTH)
        c = deserializer.fixed_bytes(Groth16Proof.C_LENGTH)
        return Groth16Proof(a, b, c)

    def serialize(self, serializer: Serializer):
        serializer.fixed_bytes(self.a)
        serializer.fixed_bytes(self.b)
        serializer.fixed_bytes(self.c)


def _serialize_proof(serializer: Serializer, proof: Groth16Proof):
    # ZeroKnowledgeProof enum, Groth16 is the only variant
    serializer.uleb128(ZeroKnowledgeSig.GROTH16)
    serializer.struct(proof)


class ZeroKnowledgeSig(Deserializable, Serializable):
    GROTH16: int = 0

    proof: Groth16Proof
    exp_horizon_secs: int
    extra_field: Optional[str]
    override_aud_val: Optional[str]
    training_wheels_signature: Optional[EphemeralSignature]

    def __init__(
        self,
        proof: Groth16Proof,
        exp_horizon_secs: int,
        extra_field: Optional[str] = None,
        override_aud_val: Optional[str] = None,
        training_wheels_signature: Optional[EphemeralSignature] = None,
    ):
        self.proof = proof
        self.exp_horizon_secs = exp_horizon_secs
        self.extra_field = extra_field
        self.override_aud_val = override_aud_val
        self.training_wheels_signature = training_wheels_signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ZeroKnowledgeSig):
            return NotImplemented
        return (
            self.proof == other.proof
            and self.exp_horizon_secs == other.exp_horizon_secs
            and self.extra_field == other.extra_field
            and self.override_aud_val == other.override_aud_val
            and self.training_wheels_signature == other.training_wheels_signature
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> ZeroKnowledgeSig:
        variant = deserializer.uleb128()
        if variant != ZeroKnowledgeSig.GROTH16:
            raise InvalidDiscriminant(f"Invalid zero knowledge proof: {variant}", variant)
        proof = Groth16Proof.deserialize(deserializer)
        exp_horizon_secs = deserializer.u64()
        extra_field = deserializer.option(Deserializer.str)
        override_aud_val = deserializer.option(Deserializer.str)
        training_wheels_signature = deserializer.option(EphemeralSignature.deserialize)
        return ZeroKnowledgeSig(
            proof,
            exp_horizon_secs,
            extra_field,
            override_aud_val,
            training_wheels_signature,
        )

    def serialize(self, serializer: Serializer):
        _serialize_proof(serializer, self.proof)
        serializer.u64(self.exp_horizon_secs)
        serializer.option(self.extra_field, Serializer.str)
        serializer.option(self.override_aud_val, Serializer.str)
        serializer.option(self.training_wheels_signature, Serializer.struct)


def proof_signing_message(message: bytes, proof: Optional[Groth16Proof]) -> bytes:
    """The ephemeral key signs the transaction's signing message together with the proof."""
    ser = Serializer()
    ser.to_bytes(message)
    ser.option(proof, _serialize_proof)
    return _prehash(TRANSACTION_AND_PROOF_SALT) + ser.output()


class KeylessSignature(asymmetric_crypto.Signature):
    ZERO_KNOWLEDGE_SIG: int = 0

    certificate: ZeroKnowledgeSig
    jwt_header_json: str
    exp_date_secs: int
    ephemeral_public_key: EphemeralPublicKey
    ephemeral_signature: EphemeralSignature

    def __init__(
        self,
        certificate: ZeroKnowledgeSig,
        jwt_header_json: str,
        exp_date_secs: int,
        ephemeral_public_key: EphemeralPublicKey,
        ephemeral_signature: EphemeralSignature,
    ):
        self.certificate = certificate
        self.jwt_header_json = jwt_header_json
        self.exp_date_secs = exp_date_secs
        self.ephemeral_public_key = ephemeral_public_key
        self.ephemeral_signature = ephemeral_signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeylessSignature):
            return NotImplemented
        return (
            self.certificate == other.certificate
            and self.jwt_header_json == other.jwt_header_json
            and self.exp_date_secs == other.exp_date_secs
            and self.ephemeral_public_key == other.ephemeral_public_key
            and self.ephemeral_signature == other.ephemeral_signature
        )

    def __str__(self) -> str:
        return f"KeylessSignature({self.ephemeral_public_key}, {self.ephemeral_signature})"

    @staticmethod
    def simulated() -> KeylessSignature:
        """An all-zero proof bundle with the wire shape of a real keyless signature."""
        return KeylessSignature(
            ZeroKnowledgeSig(Groth16Proof.zero(), 0),
            "{}",
            0,
            EphemeralPublicKey(ed25519.PublicKey.from_crypto_bytes(b"\x00" * 32)),
            EphemeralSignature(ed25519.Signature(b"\x00" * 64)),
        )

    def verify_ephemeral(self, message: bytes) -> bool:
        """
        Only the ephemeral signature is checked locally. The proof and the JWK of the issuer are
        validated by the ledger.
        """
        return self.ephemeral_public_key.verify(
            proof_signing_message(message, self.certificate.proof),
            self.ephemeral_signature,
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> KeylessSignature:
        variant = deserializer.uleb128()
        if variant != KeylessSignature.ZERO_KNOWLEDGE_SIG:
            raise InvalidDiscriminant(f"Invalid ephemeral certificate: {variant}", variant)
        certificate = ZeroKnowledgeSig.deserialize(deserializer)
        jwt_header_json = deserializer.str()
        exp_date_secs = deserializer.u64()
        ephemeral_public_key = EphemeralPublicKey.deserialize(deserializer)
        ephemeral_signature = EphemeralSignature.deserialize(deserializer)
        return KeylessSignature(
            certificate,
            jwt_header_json,
            exp_date_secs,
            ephemeral_public_key,
            ephemeral_signature,
        )

    def serialize(self, serializer: Serializer):
        serializer.uleb128(KeylessSignature.ZERO_KNOWLEDGE_SIG)
        serializer.struct(self.certificate)
        serializer.str(self.jwt_header_json)
        serializer.u64(self.exp_date_secs)
        serializer.struct(self.ephemeral_public_key)
        serializer.struct(self.ephemeral_signature)


def derive_address(
    iss: str, aud: str, uid_val: str, pepper: bytes, uid_key: str = "sub"
) -> AccountAddress:
    public_key = KeylessPublicKey.create(iss, aud, uid_val, pepper, uid_key)
    return AccountAddress.from_key(single_key.AnyPublicKey(public_key))


def _claim(claims: Dict[str, Any], name: str) -> str:
    value = claims.get(name)
    if isinstance(value, list) and len(value) == 1:
        value = value[0]
    if not isinstance(value, str) or not value:
        raise DerivationFailure(f"JWT claim '{name}' is missing or not a string")
    return value


def parse_jwt(token: str, uid_key: str = "sub") -> Dict[str, str]:
    """
    Reads the identity claims of a JWT without verifying its signature, which is the prover's
    and the ledger's job. Returns iss, aud, uid_val and the raw header JSON.
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
        header_segment = token.split(".")[0]
        header_json = base64.urlsafe_b64decode(
            header_segment + "=" * (-len(header_segment) % 4)
        ).decode("utf-8")
    except (jwt.PyJWTError, ValueError) as e:
        raise DerivationFailure(f"Malformed JWT: {e}") from e

    return {
        "iss": _claim(claims, "iss"),
        "aud": _claim(claims, "aud"),
        "uid_val": _claim(claims, uid_key),
        "jwt_header_json": header_json,
    }


class KeylessAccount:
    """Signs as a SingleKey account through an ephemeral key bound to the user's JWT."""

    account_address: AccountAddress
    ephemeral_key_pair: EphemeralKeyPair
    iss: str
    aud: str
    uid_key: str
    uid_val: str
    pepper: bytes
    jwt_header_json: str
    proof: Optional[ZeroKnowledgeSig]

    def __init__(
        self,
        ephemeral_key_pair: EphemeralKeyPair,
        iss: str,
        aud: str,
        uid_key: str,
        uid_val: str,
        pepper: bytes,
        jwt_header_json: str,
        proof: Optional[ZeroKnowledgeSig] = None,
    ):
        self.ephemeral_key_pair = ephemeral_key_pair
        self.iss = iss
        self.aud = aud
        self.uid_key = uid_key
        self.uid_val = uid_val
        self.pepper = pepper
        self.jwt_header_json = jwt_header_json
        self.proof = proof
        self.account_address = derive_address(iss, aud, uid_val, pepper, uid_key)

    @staticmethod
    def from_jwt(
        token: str,
        ephemeral_key_pair: EphemeralKeyPair,
        pepper: bytes,
        proof: Optional[ZeroKnowledgeSig] = None,
        uid_key: str = "sub",
    ) -> KeylessAccount:
        claims = parse_jwt(token, uid_key)
        return KeylessAccount(
            ephemeral_key_pair,
            claims["iss"],
            claims["aud"],
            uid_key,
            claims["uid_val"],
            pepper,
            claims["jwt_header_json"],
            proof,
        )

    def address(self) -> AccountAddress:
        return self.account_address

    def public_key(self) -> KeylessPublicKey:
        return KeylessPublicKey.create(
            self.iss, self.aud, self.uid_val, self.pepper, self.uid_key
        )

    def sign(self, data: bytes) -> KeylessSignature:
        if self.proof is None:
            raise DerivationFailure("A keyless account cannot sign without a proof")
        message = proof_signing_message(data, self.proof.proof)
        return KeylessSignature(
            self.proof,
            self.jwt_header_json,
            self.ephemeral_key_pair.expiry_date_secs,
            self.ephemeral_key_pair.public_key(),
            self.ephemeral_key_pair.sign(message),
        )


class Test(unittest.TestCase):
    PEPPER = bytes(range(32))
    SECRET = "keyless-test-secret-0123456789abcdef"

    @classmethod
    def setUpClass(cls):
        poseidon.register_derived_params(b"aptos_txn/keyless/test")

    def token(self, **claims) -> str:
        body = {"iss": "https://example.com", "aud": "test-client", "sub": "user-42"}
        body.update(claims)
        return jwt.encode(body, self.SECRET, algorithm="HS256")

    def test_id_commitment_layout(self):
        idc = IdCommitment.create(self.PEPPER, "test-client", "sub", "user-42")
        expected = poseidon.hash_scalars(
            [
                int.from_bytes(self.PEPPER, "little"),
                poseidon.hash_str_to_field("test-client", 120),
                poseidon.hash_str_to_field("user-42", 330),
                poseidon.hash_str_to_field("sub", 30),
            ]
        )
        self.assertEqual(idc.data, expected.to_bytes(32, "little"))
        self.assertNotEqual(
            idc, IdCommitment.create(self.PEPPER, "test-client", "email", "user-42")
        )

        with self.assertRaises(DerivationFailure):
            IdCommitment.create(self.PEPPER, "a" * 121, "sub", "user-42")
        with self.assertRaises(DerivationFailure):
            IdCommitment.create(self.PEPPER, "test-client", "sub", "u" * 331)
        with mock.patch.dict(poseidon._PARAMS, clear=True):
            with self.assertRaises(DerivationFailure):
                IdCommitment.create(self.PEPPER, "test-client", "sub", "user-42")

    def test_derive_address(self):
        idc = IdCommitment.create(self.PEPPER, "test-client", "sub", "user-42")
        public_key = KeylessPublicKey("https://example.com", idc)
        self.assertEqual(
            single_key.AnyPublicKey(public_key).to_bytes(),
            bytes.fromhex("031368747470733a2f2f6578616d706c652e636f6d20") + idc.data,
        )
        address = derive_address(
            "https://example.com", "test-client", "user-42", self.PEPPER
        )
        self.assertEqual(
            address, AccountAddress.from_key(single_key.AnyPublicKey(public_key))
        )
        self.assertEqual(
            address,
            derive_address("https://example.com", "test-client", "user-42", self.PEPPER),
        )
        self.assertNotEqual(
            address,
            derive_address("https://example.com", "test-client", "user-43", self.PEPPER),
        )

    def test_pepper_length(self):
        with self.assertRaises(DerivationFailure):
            derive_address("https://example.com", "aud", "uid", b"\x00" * 31)

    def test_parse_jwt(self):
        claims = parse_jwt(self.token(email="user@example.com"), "email")
        self.assertEqual(claims["iss"], "https://example.com")
        self.assertEqual(claims["aud"], "test-client")
        self.assertEqual(claims["uid_val"], "user@example.com")
        self.assertIn('"alg":"HS256"', claims["jwt_header_json"])

        with self.assertRaises(DerivationFailure):
            parse_jwt(self.token(), "email")
        with self.assertRaises(DerivationFailure):
            parse_jwt("not a jwt")

    def test_nonce(self):
        private_key = ed25519.PrivateKey.random()
        pair = EphemeralKeyPair(private_key, 1_000, b"\x01" * BLINDER_LENGTH)
        epk = pair.public_key().to_bytes()
        self.assertEqual(len(epk), 34)
        self.assertEqual(
            pair.nonce(),
            str(
                poseidon.hash_scalars(
                    [
                        int.from_bytes(epk[:31], "little"),
                        int.from_bytes(epk[31:], "little"),
                        0,
                        34,
                        1_000,
                        int.from_bytes(b"\x01" * BLINDER_LENGTH, "little"),
                    ]
                )
            ),
        )
        same = EphemeralKeyPair(private_key, 1_000, b"\x01" * BLINDER_LENGTH)
        self.assertEqual(pair.nonce(), same.nonce())
        later = EphemeralKeyPair(private_key, 1_001, b"\x01" * BLINDER_LENGTH)
        self.assertNotEqual(pair.nonce(), later.nonce())
        self.assertTrue(pair.is_expired(1_000))
        self.assertFalse(pair.is_expired(999))

        with self.assertRaises(DerivationFailure):
            EphemeralKeyPair(private_key, 1_000, b"\x01")

    def test_sign_and_verify(self):
        pair = EphemeralKeyPair.generate(now=0)
        proof = ZeroKnowledgeSig(
            Groth16Proof(b"\x01" * 32, b"\x02" * 64, b"\x03" * 32),
            10_000_000,
            override_aud_val="override",
        )
        account = KeylessAccount.from_jwt(self.token(), pair, self.PEPPER, proof)
        self.assertEqual(
            account.address(),
            derive_address("https://example.com", "test-client", "user-42", self.PEPPER),
        )

        signature = account.sign(b"message")
        self.assertTrue(account.public_key().verify(b"message", signature))
        self.assertFalse(account.public_key().verify(b"other", signature))

        any_key = single_key.AnyPublicKey(account.public_key())
        any_signature = single_key.AnySignature(signature)
        self.assertTrue(any_key.verify(b"message", any_signature))
        self.assertEqual(
            single_key.AnySignature.from_bytes(any_signature.to_bytes()), any_signature
        )
        self.assertEqual(KeylessSignature.from_bytes(signature.to_bytes()), signature)

    def test_sign_without_proof(self):
        account = KeylessAccount.from_jwt(
            self.token(), EphemeralKeyPair.generate(now=0), self.PEPPER
        )
        with self.assertRaises(DerivationFailure):
            account.sign(b"message")

    def test_simulated_signature(self):
        signature = KeylessSignature.simulated()
        self.assertEqual(KeylessSignature.from_bytes(signature.to_bytes()), signature)
        public_key = KeylessPublicKey.create("iss", "aud", "uid", self.PEPPER)
        self.assertFalse(public_key.verify(b"message", signature))

    def test_public_key_round_trip(self):
        public_key = KeylessPublicKey.create("iss", "aud", "uid", self.PEPPER)
        self.assertEqual(KeylessPublicKey.from_bytes(public_key.to_bytes()), public_key)
        with self.assertRaises(SchemeMismatch):
            public_key.auth_key_scheme()
