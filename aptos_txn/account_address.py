# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import hashlib
import unittest
from typing import Union

from . import asymmetric_crypto
from .bcs import Deserializable, Deserializer, Serializable, Serializer


class AuthKeyScheme:
    Ed25519: bytes = b"\x00"
    MultiEd25519: bytes = b"\x01"
    SingleKey: bytes = b"\x02"
    MultiKey: bytes = b"\x03"


class ParseAddressError(ValueError):
    """
    There was an error parsing an address.
    """


class AccountAddress(Deserializable, Serializable):
    address: bytes
    LENGTH: int = 32

    ZERO: AccountAddress
    ONE: AccountAddress

    def __init__(self, address: bytes):
        if len(address) != AccountAddress.LENGTH:
            raise ParseAddressError(
                f"Expected address of length 32, found {len(address)}"
            )
        self.address = bytes(address)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self):
        """
        Represent an account address in a way that is compliant with the v1 address
        standard (AIP-40): special addresses in SHORT form, e.g. 0x1, every other
        address in LONG form, 0x followed by 64 hex characters.
        """
        suffix = self.address.hex()
        if self.is_special():
            suffix = suffix.lstrip("0") or "0"
        return f"0x{suffix}"

    def __repr__(self):
        return self.__str__()

    def is_special(self) -> bool:
        """
        An address is special if its first 31 bytes are zero and the last byte is smaller
        than 16, i.e. the addresses 0x0 to 0xf inclusive.
        """
        return all(b == 0 for b in self.address[:-1]) and self.address[-1] < 0b10000

    @staticmethod
    def from_str(address: str) -> AccountAddress:
        """
        Strict AIP-40 parsing. Only LONG form (0x + 64 hex characters) is accepted, plus
        SHORT form without padding zeroes (0x0 to 0xf) for special addresses. The leading
        0x is mandatory. Use `from_str_relaxed` for anything else.
        """
        if not address.startswith("0x"):
            raise ParseAddressError("Hex string must start with a leading 0x.")

        out = AccountAddress.from_str_relaxed(address)

        if len(address) != AccountAddress.LENGTH * 2 + 2:
            if not out.is_special():
                raise ParseAddressError(
                    "The given hex string is not a special address, it must be "
                    "represented as 0x + 64 chars."
                )
            if len(address) != 3:
                raise ParseAddressError(
                    "The given hex string is a special address not in LONG form, "
                    "it must be 0x0 to 0xf without padding zeroes."
                )

        return out

    @staticmethod
    def from_str_relaxed(address: str) -> AccountAddress:
        """
        Relaxed AIP-40 parsing: LONG or SHORT, with or without the leading 0x, padding
        zeroes allowed.
        """
        addr = address[2:] if address[0:2] == "0x" else address

        if len(addr) < 1:
            raise ParseAddressError(
                "Hex string is too short, must be 1 to 64 chars long, excluding the "
                "leading 0x."
            )
        if len(addr) > AccountAddress.LENGTH * 2:
            raise ParseAddressError(
                "Hex string is too long, must be 1 to 64 chars long, excluding the "
                "leading 0x."
            )

        try:
            return AccountAddress(bytes.fromhex(addr.rjust(AccountAddress.LENGTH * 2, "0")))
        except ValueError as e:
            if isinstance(e, ParseAddressError):
                raise
            raise ParseAddressError(f"Invalid hex string: {address}") from e

    @staticmethod
    def from_key(key: asymmetric_crypto.PublicKey) -> AccountAddress:
        """The authentication key of a public key, which is also its default address."""
        hasher = hashlib.sha3_256()
        hasher.update(key.to_crypto_bytes())
        hasher.update(key.auth_key_scheme())
        return AccountAddress(hasher.digest())

    @staticmethod
    def coerce(value: Union[AccountAddress, str, bytes]) -> AccountAddress:
        if isinstance(value, AccountAddress):
            return value
        if isinstance(value, (bytes, bytearray)):
            return AccountAddress(bytes(value))
        if isinstance(value, str):
            return AccountAddress.from_str_relaxed(value)
        raise ParseAddressError(f"Cannot interpret {type(value).__name__} as an address")

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AccountAddress:
        return AccountAddress(deserializer.fixed_bytes(AccountAddress.LENGTH))

    def serialize(self, serializer: Serializer):
        serializer.fixed_bytes(self.address)


AccountAddress.ZERO = AccountAddress(b"\x00" * AccountAddress.LENGTH)
AccountAddress.ONE = AccountAddress(b"\x00" * (AccountAddress.LENGTH - 1) + b"\x01")


class Test(unittest.TestCase):
    OTHER = "ca843279e3427144cead5e4d5999a3d0ca843279e3427144cead5e4d5999a3d0"

    def test_auth_keys(self):
        from . import ed25519, single_key

        private_key_1 = ed25519.PrivateKey.from_str(
            "4e5e3be60f4bbd5e98d086d932f3ce779ff4b58da99bf9e5241ae1212a29e5fe"
        )
        private_key_2 = ed25519.PrivateKey.from_str(
            "1e70e49b78f976644e2c51754a2f049d3ff041869c669523ba95b172c7329901"
        )
        public_key_1 = private_key_1.public_key()
        public_key_2 = private_key_2.public_key()

        self.assertEqual(
            AccountAddress.from_key(public_key_1),
            AccountAddress.from_str(
                "0x37e547afc6ccaa058a6b9ca615d6177b4c9b8bbead76a72d2967b7b5ab166af4"
            ),
        )
        self.assertEqual(
            AccountAddress.from_key(single_key.AnyPublicKey(public_key_1)),
            AccountAddress.from_str(
                "0xc74af15f7e4a5d7dfab3a4dc35f404f7ce23abc6a939c0808dabd29e9b249158"
            ),
        )
        self.assertEqual(
            AccountAddress.from_key(
                ed25519.MultiPublicKey([public_key_1, public_key_2], 1)
            ),
            AccountAddress.from_str(
                "0x835bb8c5ee481062946b18bbb3b42a40b998d6bf5316ca63834c959dc739acf0"
            ),
        )
        self.assertEqual(
            AccountAddress.from_key(
                single_key.MultiKey([public_key_1, public_key_2], 1)
            ),
            AccountAddress.from_str(
                "0xb34636594464f0de040ae00165c53a95b69176ad249ebe7dc8b23ff65890e2e2"
            ),
        )

    def test_to_standard_string(self):
        for long, expected in [
            ("0" * 64, "0x0"),
            ("0" * 63 + "1", "0x1"),
            ("0" * 63 + "f", "0xf"),
            ("0" * 62 + "10", "0x" + "0" * 62 + "10"),
            ("0" * 62 + "a0", "0x" + "0" * 62 + "a0"),
            (self.OTHER, "0x" + self.OTHER),
            ("0f" + "0" * 62, "0x0f" + "0" * 62),
        ]:
            self.assertEqual(str(AccountAddress.from_str_relaxed(long)), expected)
            self.assertEqual(str(AccountAddress.from_str_relaxed("0x" + long)), expected)

        self.assertEqual(str(AccountAddress.from_str_relaxed("d")), "0xd")

    def test_from_str_relaxed(self):
        self.assertEqual(AccountAddress.from_str_relaxed("0x0"), AccountAddress.ZERO)
        self.assertEqual(AccountAddress.from_str_relaxed("0"), AccountAddress.ZERO)
        self.assertEqual(AccountAddress.from_str_relaxed("0x01"), AccountAddress.ONE)
        self.assertEqual(
            AccountAddress.from_str_relaxed("10").address, bytes([0] * 31 + [16])
        )
        self.assertRaises(ParseAddressError, AccountAddress.from_str_relaxed, "0x")
        self.assertRaises(ParseAddressError, AccountAddress.from_str_relaxed, "0" * 65)
        self.assertRaises(ParseAddressError, AccountAddress.from_str_relaxed, "0xzz")

    def test_from_str(self):
        self.assertEqual(str(AccountAddress.from_str("0x" + "0" * 64)), "0x0")
        self.assertEqual(str(AccountAddress.from_str("0xf")), "0xf")
        self.assertEqual(
            str(AccountAddress.from_str("0x" + self.OTHER)), "0x" + self.OTHER
        )

        # Missing 0x, padded special addresses and SHORT non-special addresses.
        for rejected in ["0" * 64, "0", "f", "0x0f", "0f", "0x10", "10", self.OTHER]:
            self.assertRaises(ParseAddressError, AccountAddress.from_str, rejected)

    def test_coerce(self):
        self.assertEqual(AccountAddress.coerce("0x1"), AccountAddress.ONE)
        self.assertEqual(AccountAddress.coerce(b"\x00" * 32), AccountAddress.ZERO)
        self.assertEqual(AccountAddress.coerce(AccountAddress.ONE), AccountAddress.ONE)
        self.assertRaises(ParseAddressError, AccountAddress.coerce, b"\x00" * 31)
        self.assertRaises(ParseAddressError, AccountAddress.coerce, 1)

    def test_serialize(self):
        self.assertEqual(AccountAddress.ONE.to_bytes(), b"\x00" * 31 + b"\x01")
        self.assertEqual(
            AccountAddress.from_bytes(b"\x00" * 31 + b"\x01"), AccountAddress.ONE
        )
