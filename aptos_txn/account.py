# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import json
import os
import tempfile
import unittest
from typing import Union

from . import asymmetric_crypto, ed25519, secp256k1_ecdsa, signing
from .account_address import AccountAddress
from .authenticator import AccountAuthenticator
from .errors import SchemeMismatch
from .single_key import AnyPublicKey
from .transactions import RawTransactionInternal

LocalPrivateKey = Union[ed25519.PrivateKey, secp256k1_ecdsa.PrivateKey]


class Account:
    """
    A locally held key and the address it controls. Ed25519 keys authenticate with the legacy
    Ed25519 scheme unless `single_key` is set, Secp256k1 keys always as single keys.
    """

    ED25519: str = "ed25519"
    SECP256K1_ECDSA: str = "secp256k1_ecdsa"

    account_address: AccountAddress
    private_key: LocalPrivateKey
    single_key: bool

    def __init__(
        self,
        account_address: AccountAddress,
        private_key: LocalPrivateKey,
        single_key: bool = False,
    ):
        if isinstance(private_key, secp256k1_ecdsa.PrivateKey):
            single_key = True
        self.account_address = account_address
        self.private_key = private_key
        self.single_key = single_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return (
            self.account_address == other.account_address
            and self.private_key == other.private_key
            and self.single_key == other.single_key
        )

    @staticmethod
    def from_key(private_key: LocalPrivateKey, single_key: bool = False) -> Account:
        account = Account(AccountAddress.ZERO, private_key, single_key)
        account.account_address = AccountAddress.from_key(account.public_key())
        return account

    @staticmethod
    def generate(single_key: bool = False) -> Account:
        return Account.from_key(ed25519.PrivateKey.random(), single_key)

    @staticmethod
    def generate_secp256k1_ecdsa() -> Account:
        return Account.from_key(secp256k1_ecdsa.PrivateKey.random())

    @staticmethod
    def load_key(key: str, single_key: bool = False) -> Account:
        return Account.from_key(ed25519.PrivateKey.from_str(key), single_key)

    @staticmethod
    def load(path: str) -> Account:
        with open(path) as file:
            data = json.load(file)
        scheme = data.get("scheme", Account.ED25519)
        if scheme == Account.ED25519:
            private_key: LocalPrivateKey = ed25519.PrivateKey.from_str(data["private_key"])
        elif scheme == Account.SECP256K1_ECDSA:
            private_key = secp256k1_ecdsa.PrivateKey.from_str(data["private_key"])
        else:
            raise SchemeMismatch(f"Unknown key scheme {scheme}")
        return Account(
            AccountAddress.from_str(data["account_address"]),
            private_key,
            data.get("single_key", False),
        )

    def store(self, path: str):
        scheme = Account.ED25519
        if isinstance(self.private_key, secp256k1_ecdsa.PrivateKey):
            scheme = Account.SECP256K1_ECDSA
        data = {
            "account_address": str(self.account_address),
            "private_key": self.private_key.hex(),
            "scheme": scheme,
            "single_key": self.single_key,
        }
        with open(path, "w") as file:
            json.dump(data, file)

    def address(self) -> AccountAddress:
        """Returns the address associated with the given account"""

        return self.account_address

    def auth_key(self) -> str:
        """Returns the auth_key for the associated account"""
        return str(AccountAddress.from_key(self.public_key()))

    def sign(self, data: bytes) -> asymmetric_crypto.Signature:
        return self.private_key.sign(data)

    def public_key(self) -> asymmetric_crypto.PublicKey:
        """Returns the public key for the associated account"""

        public_key = self.private_key.public_key()
        if self.single_key:
            return AnyPublicKey(public_key)
        return public_key

    def sign_transaction(self, transaction: RawTransactionInternal) -> AccountAuthenticator:
        return AccountAuthenticator.for_signature(
            self.public_key(), self.sign(signing.derive_signing_message(transaction))
        )

    def simulated_authenticator(self) -> AccountAuthenticator:
        return signing.simulated_authenticator(self.public_key())


class Test(unittest.TestCase):
    def test_load_and_store(self):
        (file, path) = tempfile.mkstemp()
        os.close(file)
        for start in [
            Account.generate(),
            Account.generate(single_key=True),
            Account.generate_secp256k1_ecdsa(),
        ]:
            start.store(path)
            load = Account.load(path)

            self.assertEqual(start, load)
            # Auth key and Account address should be the same at start
            self.assertEqual(str(start.address()), start.auth_key())
        os.remove(path)

    def test_key(self):
        message = b"test message"
        account = Account.generate()
        signature = account.sign(message)
        self.assertTrue(account.public_key().verify(message, signature))

    def test_address_depends_on_scheme(self):
        key = "005120c5882b0d492b3d2dc60a8a4510ec2051825413878453137305ba2d644b"
        legacy = Account.load_key(key)
        single = Account.load_key(key, single_key=True)
        self.assertNotEqual(legacy.address(), single.address())
        self.assertEqual(single.address(), AccountAddress.from_key(single.public_key()))

    def test_sign_transaction(self):
        from .transactions import EntryFunction, RawTransaction, TransactionPayload

        for account in [
            Account.generate(),
            Account.generate(single_key=True),
            Account.generate_secp256k1_ecdsa(),
        ]:
            transaction = RawTransaction(
                account.address(),
                0,
                TransactionPayload(EntryFunction.natural("0x1::m", "f", [], [])),
                2000,
                100,
                1_000,
                4,
            )
            authenticator = account.sign_transaction(transaction)
            self.assertTrue(authenticator.verify(transaction.keyed()))
            self.assertEqual(authenticator.public_key(), account.public_key())
            self.assertFalse(
                account.simulated_authenticator().verify(transaction.keyed())
            )
