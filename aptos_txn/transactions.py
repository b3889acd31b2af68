# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
This translates transactions to and from BCS for signing and submitting to a ledger.
"""

from __future__ import annotations

import hashlib
import unittest
from typing import Any, Callable, List, Optional, Union

from typing_extensions import Protocol

from . import asymmetric_crypto, ed25519, secp256k1_ecdsa
from .account_address import AccountAddress
from .authenticator import (
    AccountAuthenticator,
    Authenticator,
    FeePayerAuthenticator,
    MultiAgentAuthenticator,
)
from .bcs import MAX_U8, MAX_U64, Deserializable, Deserializer, Serializable, Serializer
from .errors import InvalidDiscriminant, MalformedInput, OutOfRange
from .type_tag import StructTag, TypeTag

RAW_TRANSACTION_SALT = b"APTOS::RawTransaction"
RAW_TRANSACTION_WITH_DATA_SALT = b"APTOS::RawTransactionWithData"


class RawTransactionInternal(Serializable, Protocol):
    def keyed(self) -> bytes:
        """The signing message: the prehash of the domain salt followed by the BCS body."""
        ser = Serializer()
        self.serialize(ser)
        prehash = bytearray(self.prehash())
        prehash.extend(ser.output())
        return bytes(prehash)

    def prehash(self) -> bytes:
        ...

    def inner(self) -> RawTransaction:
        ...

    def secondary_addresses(self) -> List[AccountAddress]:
        return []

    def serialize(self, ser: Serializer):
        ...

    def sign(self, key: asymmetric_crypto.PrivateKey) -> AccountAuthenticator:
        signature = key.sign(self.keyed())
        return AccountAuthenticator.for_signature(key.public_key(), signature)

    def verify(
        self, key: asymmetric_crypto.PublicKey, signature: asymmetric_crypto.Signature
    ) -> bool:
        return key.verify(self.keyed(), signature)


class RawTransactionWithData(RawTransactionInternal, Protocol):
    MULTI_AGENT: int = 0
    FEE_PAYER: int = 1

    raw_transaction: RawTransaction
    secondary_signers: List[AccountAddress]

    def inner(self) -> RawTransaction:
        return self.raw_transaction

    def secondary_addresses(self) -> List[AccountAddress]:
        return self.secondary_signers

    def prehash(self) -> bytes:
        hasher = hashlib.sha3_256()
        hasher.update(RAW_TRANSACTION_WITH_DATA_SALT)
        return hasher.digest()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> RawTransactionWithData:
        variant = deserializer.u8()
        raw_transaction = RawTransaction.deserialize(deserializer)
        secondary_signers = deserializer.sequence(AccountAddress.deserialize)
        if variant == RawTransactionWithData.MULTI_AGENT:
            return MultiAgentRawTransaction(raw_transaction, secondary_signers)
        elif variant == RawTransactionWithData.FEE_PAYER:
            fee_payer = AccountAddress.deserialize(deserializer)
            return FeePayerRawTransaction(raw_transaction, secondary_signers, fee_payer)
        raise InvalidDiscriminant(f"Invalid raw transaction with data: {variant}", variant)


class RawTransaction(Deserializable, RawTransactionInternal):
    # Sender's address
    sender: AccountAddress
    # Sequence number of this transaction. This must match the sequence number in the sender's
    # account at the time of execution.
    sequence_number: int
    # The transaction payload, e.g., a script to execute.
    payload: TransactionPayload
    # Maximum total gas to spend for this transaction
    max_gas_amount: int
    # Price to be paid per gas unit.
    gas_unit_price: int
    # Expiration timestamp for this transaction, represented as seconds from the Unix epoch.
    expiration_timestamps_secs: int
    # Chain ID of the network this transaction is intended for.
    chain_id: int

    def __init__(
        self,
        sender: AccountAddress,
        sequence_number: int,
        payload: TransactionPayload,
        max_gas_amount: int,
        gas_unit_price: int,
        expiration_timestamps_secs: int,
        chain_id: int,
    ):
        self.sender = sender
        self.sequence_number = sequence_number
        self.payload = payload
        self.max_gas_amount = max_gas_amount
        self.gas_unit_price = gas_unit_price
        self.expiration_timestamps_secs = expiration_timestamps_secs
        self.chain_id = chain_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawTransaction):
            return NotImplemented
        return (
            self.sender == other.sender
            and self.sequence_number == other.sequence_number
            and self.payload == other.payload
            and self.max_gas_amount == other.max_gas_amount
            and self.gas_unit_price == other.gas_unit_price
            and self.expiration_timestamps_secs == other.expiration_timestamps_secs
            and self.chain_id == other.chain_id
        )

    def __str__(self):
        return f"""RawTransaction:
    sender: {self.sender}
    sequence_number: {self.sequence_number}
    payload: {self.payload}
    max_gas_amount: {self.max_gas_amount}
    gas_unit_price: {self.gas_unit_price}
    expiration_timestamps_secs: {self.expiration_timestamps_secs}
    chain_id: {self.chain_id}
"""

    def inner(self) -> RawTransaction:
        return self

    def prehash(self) -> bytes:
        hasher = hashlib.sha3_256()
        hasher.update(RAW_TRANSACTION_SALT)
        return hasher.digest()

    def validate(self, now: int):
        """
        Structural checks before signing. `now` is the caller's clock in seconds since the
        Unix epoch and the expiration must lie strictly after it.
        """
        for name, value in [
            ("sequence_number", self.sequence_number),
            ("max_gas_amount", self.max_gas_amount),
            ("gas_unit_price", self.gas_unit_price),
            ("expiration_timestamps_secs", self.expiration_timestamps_secs),
        ]:
            if isinstance(value, bool) or not isinstance(value, int):
                raise OutOfRange(f"{name} must be an integer, found {value!r}")
            if value < 0 or value > MAX_U64:
                raise OutOfRange(f"{name} {value} is outside of the u64 range")
        if not 0 <= self.chain_id <= MAX_U8:
            raise OutOfRange(f"chain_id {self.chain_id} is outside of the u8 range")
        if self.expiration_timestamps_secs <= now:
            raise OutOfRange(
                f"Transaction expired at {self.expiration_timestamps_secs}, now is {now}"
            )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> RawTransaction:
        return RawTransaction(
            AccountAddress.deserialize(deserializer),
            deserializer.u64(),
            TransactionPayload.deserialize(deserializer),
            deserializer.u64(),
            deserializer.u64(),
            deserializer.u64(),
            deserializer.u8(),
        )

    def serialize(self, serializer: Serializer):
        self.sender.serialize(serializer)
        serializer.u64(self.sequence_number)
        self.payload.serialize(serializer)
        serializer.u64(self.max_gas_amount)
        serializer.u64(self.gas_unit_price)
        serializer.u64(self.expiration_timestamps_secs)
        serializer.u8(self.chain_id)


class MultiAgentRawTransaction(RawTransactionWithData):
    def __init__(
        self, raw_transaction: RawTransaction, secondary_signers: List[AccountAddress]
    ):
        self.raw_transaction = raw_transaction
        self.secondary_signers = secondary_signers

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultiAgentRawTransaction):
            return NotImplemented
        return (
            self.raw_transaction == other.raw_transaction
            and self.secondary_signers == other.secondary_signers
        )

    def serialize(self, serializer: Serializer):
        serializer.u8(RawTransactionWithData.MULTI_AGENT)
        serializer.struct(self.raw_transaction)
        serializer.sequence(self.secondary_signers, Serializer.struct)


class FeePayerRawTransaction(RawTransactionWithData):
    fee_payer: Optional[AccountAddress]

    def __init__(
        self,
        raw_transaction: RawTransaction,
        secondary_signers: List[AccountAddress],
        fee_payer: Optional[AccountAddress],
    ):
        self.raw_transaction = raw_transaction
        self.secondary_signers = secondary_signers
        self.fee_payer = fee_payer

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeePayerRawTransaction):
            return NotImplemented
        return (
            self.raw_transaction == other.raw_transaction
            and self.secondary_signers == other.secondary_signers
            and self.fee_payer == other.fee_payer
        )

    def serialize(self, serializer: Serializer):
        serializer.u8(RawTransactionWithData.FEE_PAYER)
        serializer.struct(self.raw_transaction)
        serializer.sequence(self.secondary_signers, Serializer.struct)
        # An unknown sponsor is committed to as 0x0.
        fee_payer = AccountAddress.ZERO if self.fee_payer is None else self.fee_payer
        serializer.struct(fee_payer)


class TransactionPayload(Deserializable, Serializable):
    SCRIPT: int = 0
    MODULE_BUNDLE: int = 1
    ENTRY_FUNCTION: int = 2
    MULTISIG: int = 3

    variant: int
    value: Any

    def __init__(self, payload: Any):
        if isinstance(payload, Script):
            self.variant = TransactionPayload.SCRIPT
        elif isinstance(payload, EntryFunction):
            self.variant = TransactionPayload.ENTRY_FUNCTION
        elif isinstance(payload, Multisig):
            self.variant = TransactionPayload.MULTISIG
        else:
            raise TypeError(f"{type(payload).__name__} is not a transaction payload")
        self.value = payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransactionPayload):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __str__(self) -> str:
        return self.value.__str__()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TransactionPayload:
        variant = deserializer.uleb128()

        if variant == TransactionPayload.SCRIPT:
            payload: Any = Script.deserialize(deserializer)
        elif variant == TransactionPayload.ENTRY_FUNCTION:
            payload = EntryFunction.deserialize(deserializer)
        elif variant == TransactionPayload.MULTISIG:
            payload = Multisig.deserialize(deserializer)
        elif variant == TransactionPayload.MODULE_BUNDLE:
            raise InvalidDiscriminant("Module bundle payloads are not supported", variant)
        else:
            raise InvalidDiscriminant(f"Invalid transaction payload: {variant}", variant)

        return TransactionPayload(payload)

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        self.value.serialize(serializer)


class Script(Deserializable, Serializable):
    code: bytes
    ty_args: List[TypeTag]
    args: List[ScriptArgument]

    def __init__(self, code: bytes, ty_args: List[TypeTag], args: List[ScriptArgument]):
        self.code = code
        self.ty_args = ty_args
        self.args = args

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Script:
        code = deserializer.to_bytes()
        ty_args = deserializer.sequence(TypeTag.deserialize)
        args = deserializer.sequence(ScriptArgument.deserialize)
        return Script(code, ty_args, args)

    def serialize(self, serializer: Serializer):
        serializer.to_bytes(self.code)
        serializer.sequence(self.ty_args, Serializer.struct)
        serializer.sequence(self.args, Serializer.struct)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Script):
            return NotImplemented
        return (
            self.code == other.code
            and self.ty_args == other.ty_args
            and self.args == other.args
        )

    def __str__(self):
        return f"<{self.ty_args}>({self.args})"


class ScriptArgument(Deserializable, Serializable):
    U8: int = 0
    U64: int = 1
    U128: int = 2
    ADDRESS: int = 3
    U8_VECTOR: int = 4
    BOOL: int = 5
    U16: int = 6
    U32: int = 7
    U256: int = 8

    ENCODERS: dict = {
        U8: (Serializer.u8, Deserializer.u8),
        U64: (Serializer.u64, Deserializer.u64),
        U128: (Serializer.u128, Deserializer.u128),
        ADDRESS: (Serializer.struct, AccountAddress.deserialize),
        U8_VECTOR: (Serializer.to_bytes, Deserializer.to_bytes),
        BOOL: (Serializer.bool, Deserializer.bool),
        U16: (Serializer.u16, Deserializer.u16),
        U32: (Serializer.u32, Deserializer.u32),
        U256: (Serializer.u256, Deserializer.u256),
    }

    variant: int
    value: Any

    def __init__(self, variant: int, value: Any):
        if variant not in ScriptArgument.ENCODERS:
            raise InvalidDiscriminant(f"Invalid script argument: {variant}", variant)

        self.variant = variant
        self.value = value

    @staticmethod
    def deserialize(deserializer: Deserializer) -> ScriptArgument:
        variant = deserializer.u8()
        if variant not in ScriptArgument.ENCODERS:
            raise InvalidDiscriminant(f"Invalid script argument: {variant}", variant)
        value = ScriptArgument.ENCODERS[variant][1](deserializer)
        return ScriptArgument(variant, value)

    def serialize(self, serializer: Serializer):
        serializer.u8(self.variant)
        ScriptArgument.ENCODERS[self.variant][0](serializer, self.value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScriptArgument):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __str__(self):
        return f"[{self.variant}] {self.value}"


class EntryFunction(Deserializable, Serializable):
    module: ModuleId
    function: str
    ty_args: List[TypeTag]
    args: List[bytes]

    def __init__(
        self, module: ModuleId, function: str, ty_args: List[TypeTag], args: List[bytes]
    ):
        self.module = module
        self.function = function
        self.ty_args = ty_args
        self.args = args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EntryFunction):
            return NotImplemented

        return (
            self.module == other.module
            and self.function == other.function
            and self.ty_args == other.ty_args
            and self.args == other.args
        )

    def __str__(self):
        return f"{self.module}::{self.function}::<{self.ty_args}>({self.args})"

    @staticmethod
    def natural(
        module: str,
        function: str,
        ty_args: List[TypeTag],
        args: List[Union[TransactionArgument, Serializable]],
    ) -> EntryFunction:
        """Arguments are TransactionArguments or already typed values such as MoveValues."""
        module_id = ModuleId.from_str(module)

        byte_args = []
        for arg in args:
            if isinstance(arg, TransactionArgument):
                byte_args.append(arg.encode())
            else:
                byte_args.append(arg.to_bytes())
        return EntryFunction(module_id, function, ty_args, byte_args)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> EntryFunction:
        module = ModuleId.deserialize(deserializer)
        function = deserializer.str()
        ty_args = deserializer.sequence(TypeTag.deserialize)
        args = deserializer.sequence(Deserializer.to_bytes)
        return EntryFunction(module, function, ty_args, args)

    def serialize(self, serializer: Serializer):
        self.module.serialize(serializer)
        serializer.str(self.function)
        serializer.sequence(self.ty_args, Serializer.struct)
        serializer.sequence(self.args, Serializer.to_bytes)


class Multisig(Deserializable, Serializable):
    """
    Executes on behalf of a multisig account. The payload may be omitted when the
    transaction was already stored on chain and is only being executed.
    """

    multisig_address: AccountAddress
    transaction_payload: Optional[MultisigTransactionPayload]

    def __init__(
        self,
        multisig_address: AccountAddress,
        transaction_payload: Optional[MultisigTransactionPayload] = None,
    ):
        self.multisig_address = multisig_address
        self.transaction_payload = transaction_payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Multisig):
            return NotImplemented
        return (
            self.multisig_address == other.multisig_address
            and self.transaction_payload == other.transaction_payload
        )

    def __str__(self):
        return f"Multisig {self.multisig_address}: {self.transaction_payload}"

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Multisig:
        multisig_address = AccountAddress.deserialize(deserializer)
        transaction_payload = deserializer.option(MultisigTransactionPayload.deserialize)
        return Multisig(multisig_address, transaction_payload)

    def serialize(self, serializer: Serializer):
        serializer.struct(self.multisig_address)
        serializer.option(self.transaction_payload, Serializer.struct)


class MultisigTransactionPayload(Deserializable, Serializable):
    ENTRY_FUNCTION: int = 0

    payload: EntryFunction

    def __init__(self, payload: EntryFunction):
        self.payload = payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MultisigTransactionPayload):
            return NotImplemented
        return self.payload == other.payload

    def __str__(self):
        return self.payload.__str__()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> MultisigTransactionPayload:
        variant = deserializer.uleb128()
        if variant != MultisigTransactionPayload.ENTRY_FUNCTION:
            raise InvalidDiscriminant(f"Invalid multisig payload: {variant}", variant)
        return MultisigTransactionPayload(EntryFunction.deserialize(deserializer))

    def serialize(self, serializer: Serializer):
        serializer.uleb128(MultisigTransactionPayload.ENTRY_FUNCTION)
        serializer.struct(self.payload)


class ModuleId(Deserializable, Serializable):
    address: AccountAddress
    name: str

    def __init__(self, address: AccountAddress, name: str):
        self.address = address
        self.name = name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModuleId):
            return NotImplemented
        return self.address == other.address and self.name == other.name

    def __str__(self) -> str:
        return f"{self.address}::{self.name}"

    @staticmethod
    def from_str(module_id: str) -> ModuleId:
        split = module_id.split("::")
        if len(split) != 2:
            raise MalformedInput(f"Expected address::module, found {module_id}")
        return ModuleId(AccountAddress.from_str_relaxed(split[0]), split[1])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> ModuleId:
        addr = AccountAddress.deserialize(deserializer)
        name = deserializer.str()
        return ModuleId(addr, name)

    def serialize(self, serializer: Serializer):
        self.address.serialize(serializer)
        serializer.str(self.name)


class TransactionArgument:
    value: Any
    encoder: Callable[[Serializer, Any], None]

    def __init__(
        self,
        value: Any,
        encoder: Callable[[Serializer, Any], None],
    ):
        self.value = value
        self.encoder = encoder

    def encode(self) -> bytes:
        ser = Serializer()
        self.encoder(ser, self.value)
        return ser.output()


class SignedTransaction(Deserializable, Serializable):
    transaction: RawTransaction
    authenticator: Authenticator

    def __init__(
        self,
        transaction: RawTransaction,
        authenticator: Union[AccountAuthenticator, Authenticator],
    ):
        self.transaction = transaction
        if isinstance(authenticator, AccountAuthenticator):
            authenticator = Authenticator.from_sender(authenticator)

        self.authenticator = authenticator

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignedTransaction):
            return NotImplemented
        return (
            self.transaction == other.transaction
            and self.authenticator == other.authenticator
        )

    def __str__(self) -> str:
        return f"Transaction: {self.transaction}Authenticator: {self.authenticator}"

    def bytes(self) -> bytes:
        ser = Serializer()
        ser.struct(self)
        return ser.output()

    def signing_message(self) -> bytes:
        """The message the sender signed, reconstructed from the authenticator's shape."""
        auth = self.authenticator.authenticator
        if isinstance(auth, MultiAgentAuthenticator):
            transaction: RawTransactionInternal = MultiAgentRawTransaction(
                self.transaction, auth.secondary_addresses()
            )
        elif isinstance(auth, FeePayerAuthenticator):
            transaction = FeePayerRawTransaction(
                self.transaction,
                auth.secondary_addresses(),
                auth.fee_payer_address(),
            )
        else:
            transaction = self.transaction
        return transaction.keyed()

    def verify(self) -> bool:
        auth = self.authenticator.authenticator
        message = self.signing_message()
        if not isinstance(auth, FeePayerAuthenticator):
            return self.authenticator.verify(message)

        if auth.verify_signers(message, message):
            return True
        # Senders may sign before a sponsor is chosen, committing to 0x0 instead.
        unsponsored = FeePayerRawTransaction(
            self.transaction, auth.secondary_addresses(), None
        )
        return auth.verify_signers(unsponsored.keyed(), message)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SignedTransaction:
        transaction = RawTransaction.deserialize(deserializer)
        authenticator = Authenticator.deserialize(deserializer)
        return SignedTransaction(transaction, authenticator)

    def serialize(self, serializer: Serializer):
        self.transaction.serialize(serializer)
        self.authenticator.serialize(serializer)


class Test(unittest.TestCase):
    def test_entry_function(self):
        private_key = ed25519.PrivateKey.random()
        public_key = private_key.public_key()
        account_address = AccountAddress.from_key(public_key)

        another_private_key = ed25519.PrivateKey.random()
        another_public_key = another_private_key.public_key()
        recipient_address = AccountAddress.from_key(another_public_key)

        transaction_arguments = [
            TransactionArgument(recipient_address, Serializer.struct),
            TransactionArgument(5000, Serializer.u64),
        ]

        payload = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            [TypeTag(StructTag.from_str("0x1::aptos_coin::AptosCoin"))],
            transaction_arguments,
        )

        raw_transaction = RawTransaction(
            account_address,
            0,
            TransactionPayload(payload),
            2000,
            0,
            18446744073709551615,
            4,
        )

        authenticator = raw_transaction.sign(private_key)
        signed_transaction = SignedTransaction(raw_transaction, authenticator)
        self.assertTrue(signed_transaction.verify())

        self.assertEqual(signed_transaction.to_bytes(), signed_transaction.bytes())
        self.assertEqual(
            signed_transaction.to_bytes(),
            raw_transaction.to_bytes() + signed_transaction.authenticator.to_bytes(),
        )
        self.assertEqual(raw_transaction.to_bytes()[:32], account_address.address)
        self.assertEqual(
            AccountAuthenticator.from_bytes(authenticator.to_bytes()), authenticator
        )
        wrapped = TransactionPayload(payload)
        self.assertEqual(TransactionPayload.from_bytes(wrapped.to_bytes()), wrapped)
        self.assertEqual(wrapped.to_bytes()[1:], payload.to_bytes())

    def test_secp256k1_sender_uses_single_sender(self):
        private_key = secp256k1_ecdsa.PrivateKey.random()
        raw_transaction = RawTransaction(
            AccountAddress.ONE,
            0,
            TransactionPayload(EntryFunction.natural("0x1::m", "f", [], [])),
            2000,
            100,
            1000,
            4,
        )
        signed_transaction = SignedTransaction(
            raw_transaction, raw_transaction.sign(private_key)
        )
        self.assertEqual(
            signed_transaction.authenticator.variant, Authenticator.SINGLE_SENDER
        )
        self.assertTrue(signed_transaction.verify())
        self.assertEqual(
            SignedTransaction.from_bytes(signed_transaction.bytes()), signed_transaction
        )

    def test_validate(self):
        def raw(**overrides) -> RawTransaction:
            fields = dict(
                sender=AccountAddress.ONE,
                sequence_number=1,
                payload=TransactionPayload(EntryFunction.natural("0x1::m", "f", [], [])),
                max_gas_amount=2000,
                gas_unit_price=100,
                expiration_timestamps_secs=1_000,
                chain_id=4,
            )
            fields.update(overrides)
            return RawTransaction(**fields)

        raw().validate(now=999)
        with self.assertRaises(OutOfRange):
            raw().validate(now=1_000)
        with self.assertRaises(OutOfRange):
            raw(sequence_number=-1).validate(now=0)
        with self.assertRaises(OutOfRange):
            raw(max_gas_amount=MAX_U64 + 1).validate(now=0)
        with self.assertRaises(OutOfRange):
            raw(gas_unit_price=-5).validate(now=0)
        with self.assertRaises(OutOfRange):
            raw(chain_id=256).validate(now=0)

    def test_script_arguments(self):
        script = Script(
            b"\xa1\x1c\xeb\x0b",
            [],
            [
                ScriptArgument(ScriptArgument.U16, 0x0102),
                ScriptArgument(ScriptArgument.U256, 2**200),
                ScriptArgument(ScriptArgument.ADDRESS, AccountAddress.ONE),
                ScriptArgument(ScriptArgument.U8_VECTOR, b"\x01\x02"),
                ScriptArgument(ScriptArgument.BOOL, True),
            ],
        )
        payload = TransactionPayload(script)
        ser = Serializer()
        payload.serialize(ser)
        self.assertEqual(ser.output()[:8], b"\x00\x04\xa1\x1c\xeb\x0b\x00\x05")
        self.assertEqual(ser.output()[8:11], b"\x06\x02\x01")
        self.assertEqual(
            TransactionPayload.deserialize(Deserializer(ser.output())), payload
        )

        with self.assertRaises(InvalidDiscriminant):
            ScriptArgument(9, 0)

    def test_module_bundle_rejected(self):
        with self.assertRaises(InvalidDiscriminant) as cm:
            TransactionPayload.deserialize(Deserializer(b"\x01\x00"))
        self.assertEqual(cm.exception.variant, TransactionPayload.MODULE_BUNDLE)

    def test_multisig_payload(self):
        entry_function = EntryFunction.natural(
            "0x1::aptos_account",
            "transfer",
            [],
            [TransactionArgument(AccountAddress.ONE, Serializer.struct)],
        )
        multisig_address = AccountAddress.from_str("0xa")
        payload = TransactionPayload(
            Multisig(multisig_address, MultisigTransactionPayload(entry_function))
        )

        ser = Serializer()
        payload.serialize(ser)
        expected = Serializer()
        expected.uleb128(TransactionPayload.MULTISIG)
        expected.struct(multisig_address)
        expected.bool(True)
        expected.uleb128(0)
        expected.struct(entry_function)
        self.assertEqual(ser.output(), expected.output())
        self.assertEqual(
            TransactionPayload.deserialize(Deserializer(ser.output())), payload
        )

        empty = TransactionPayload(Multisig(multisig_address))
        ser = Serializer()
        empty.serialize(ser)
        self.assertEqual(ser.output(), b"\x03" + multisig_address.address + b"\x00")

    def test_raw_transaction_with_data_round_trip(self):
        raw_transaction = RawTransaction(
            AccountAddress.ONE,
            3,
            TransactionPayload(EntryFunction.natural("0x1::m", "f", [], [])),
            2000,
            100,
            1000,
            4,
        )
        fee_payer = FeePayerRawTransaction(
            raw_transaction, [AccountAddress.ZERO], AccountAddress.from_str("0xf")
        )
        ser = Serializer()
        fee_payer.serialize(ser)
        self.assertEqual(
            RawTransactionWithData.deserialize(Deserializer(ser.output())), fee_payer
        )
        multi_agent = MultiAgentRawTransaction(raw_transaction, [AccountAddress.ZERO])
        self.assertNotEqual(multi_agent.keyed(), fee_payer.keyed())
        self.assertEqual(multi_agent.prehash(), fee_payer.prehash())
        self.assertNotEqual(raw_transaction.prehash(), fee_payer.prehash())

    def test_entry_function_with_corpus(self):
        # Define common inputs
        sender_key_input = (
            "9bf49a6a0755f953811fce125f2683d50429c3bb49e074147e0089a52eae155f"
        )
        receiver_key_input = (
            "0564f879d27ae3c02ce82834acfa8c793a629f2ca0de6919610be82f411326be"
        )

        sequence_number_input = 11
        gas_unit_price_input = 1
        max_gas_amount_input = 2000
        expiration_timestamps_secs_input = 1234567890
        chain_id_input = 4
        amount_input = 5000

        # Accounts and crypto
        sender_private_key = ed25519.PrivateKey.from_str(sender_key_input)
        sender_public_key = sender_private_key.public_key()
        sender_account_address = AccountAddress.from_key(sender_public_key)

        receiver_private_key = ed25519.PrivateKey.from_str(receiver_key_input)
        receiver_public_key = receiver_private_key.public_key()
        receiver_account_address = AccountAddress.from_key(receiver_public_key)

        # Generate the transaction locally
        transaction_arguments = [
            TransactionArgument(receiver_account_address, Serializer.struct),
            TransactionArgument(amount_input, Serializer.u64),
        ]

        payload = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            [TypeTag(StructTag.from_str("0x1::aptos_coin::AptosCoin"))],
            transaction_arguments,
        )

        raw_transaction_generated = RawTransaction(
            sender_account_address,
            sequence_number_input,
            TransactionPayload(payload),
            max_gas_amount_input,
            gas_unit_price_input,
            expiration_timestamps_secs_input,
            chain_id_input,
        )

        authenticator = raw_transaction_generated.sign(sender_private_key)
        signed_transaction_generated = SignedTransaction(
            raw_transaction_generated, authenticator
        )
        self.assertTrue(signed_transaction_generated.verify())

        # Validated corpus

        raw_transaction_input = "7deeccb1080854f499ec8b4c1b213b82c5e34b925cf6875fec02d4b77adbd2d60b0000000000000002000000000000000000000000000000000000000000000000000000000000000104636f696e087472616e73666572010700000000000000000000000000000000000000000000000000000000000000010a6170746f735f636f696e094170746f73436f696e0002202d133ddd281bb6205558357cc6ac75661817e9aaeac3afebc32842759cbf7fa9088813000000000000d0070000000000000100000000000000d20296490000000004"
        signed_transaction_input = "7deeccb1080854f499ec8b4c1b213b82c5e34b925cf6875fec02d4b77adbd2d60b0000000000000002000000000000000000000000000000000000000000000000000000000000000104636f696e087472616e73666572010700000000000000000000000000000000000000000000000000000000000000010a6170746f735f636f696e094170746f73436f696e0002202d133ddd281bb6205558357cc6ac75661817e9aaeac3afebc32842759cbf7fa9088813000000000000d0070000000000000100000000000000d202964900000000040020b9c6ee1630ef3e711144a648db06bbb2284f7274cfbee53ffcee503cc1a4920040f25b74ec60a38a1ed780fd2bef6ddb6eb4356e3ab39276c9176cdf0fcae2ab37d79b626abb43d926e91595b66503a4a3c90acbae36a28d405e308f3537af720b"

        self.verify_transactions(
            raw_transaction_input,
            raw_transaction_generated,
            signed_transaction_input,
            signed_transaction_generated,
        )

    def test_entry_function_multi_agent_with_corpus(self):
        # Define common inputs
        sender_key_input = (
            "9bf49a6a0755f953811fce125f2683d50429c3bb49e074147e0089a52eae155f"
        )
        receiver_key_input = (
            "0564f879d27ae3c02ce82834acfa8c793a629f2ca0de6919610be82f411326be"
        )

        sequence_number_input = 11
        gas_unit_price_input = 1
        max_gas_amount_input = 2000
        expiration_timestamps_secs_input = 1234567890
        chain_id_input = 4

        # Accounts and crypto
        sender_private_key = ed25519.PrivateKey.from_str(sender_key_input)
        sender_public_key = sender_private_key.public_key()
        sender_account_address = AccountAddress.from_key(sender_public_key)

        receiver_private_key = ed25519.PrivateKey.from_str(receiver_key_input)
        receiver_public_key = receiver_private_key.public_key()
        receiver_account_address = AccountAddress.from_key(receiver_public_key)

        # Generate the transaction locally
        transaction_arguments = [
            TransactionArgument(receiver_account_address, Serializer.struct),
            TransactionArgument("collection_name", Serializer.str),
            TransactionArgument("token_name", Serializer.str),
            TransactionArgument(1, Serializer.u64),
        ]

        payload = EntryFunction.natural(
            "0x3::token",
            "direct_transfer_script",
            [],
            transaction_arguments,
        )

        raw_transaction_generated = MultiAgentRawTransaction(
            RawTransaction(
                sender_account_address,
                sequence_number_input,
                TransactionPayload(payload),
                max_gas_amount_input,
                gas_unit_price_input,
                expiration_timestamps_secs_input,
                chain_id_input,
            ),
            [receiver_account_address],
        )

        sender_authenticator = raw_transaction_generated.sign(sender_private_key)
        receiver_authenticator = raw_transaction_generated.sign(receiver_private_key)

        authenticator = Authenticator(
            MultiAgentAuthenticator(
                sender_authenticator,
                [(receiver_account_address, receiver_authenticator)],
            )
        )

        signed_transaction_generated = SignedTransaction(
            raw_transaction_generated.inner(), authenticator
        )
        self.assertTrue(signed_transaction_generated.verify())

        # Validated corpus

        raw_transaction_input = "7deeccb1080854f499ec8b4c1b213b82c5e34b925cf6875fec02d4b77adbd2d60b0000000000000002000000000000000000000000000000000000000000000000000000000000000305746f6b656e166469726563745f7472616e736665725f7363726970740004202d133ddd281bb6205558357cc6ac75661817e9aaeac3afebc32842759cbf7fa9100f636f6c6c656374696f6e5f6e616d650b0a746f6b656e5f6e616d65080100000000000000d0070000000000000100000000000000d20296490000000004"
        signed_transaction_input = "7deeccb1080854f499ec8b4c1b213b82c5e34b925cf6875fec02d4b77adbd2d60b0000000000000002000000000000000000000000000000000000000000000000000000000000000305746f6b656e166469726563745f7472616e736665725f7363726970740004202d133ddd281bb6205558357cc6ac75661817e9aaeac3afebc32842759cbf7fa9100f636f6c6c656374696f6e5f6e616d650b0a746f6b656e5f6e616d65080100000000000000d0070000000000000100000000000000d20296490000000004020020b9c6ee1630ef3e711144a648db06bbb2284f7274cfbee53ffcee503cc1a4920040343e7b10aa323c480391a5d7cd2d0cf708d51529b96b5a2be08cbb365e4f11dcc2cf0655766cf70d40853b9c395b62dad7a9f58ed998803d8bf1901ba7a7a401012d133ddd281bb6205558357cc6ac75661817e9aaeac3afebc32842759cbf7fa9010020aef3f4a4b8eca1dfc343361bf8e436bd42de9259c04b8314eb8e2054dd6e82ab408a7f06e404ae8d9535b0cbbeafb7c9e34e95fe1425e4529758150a4f7ce7a683354148ad5c313ec36549e3fb29e669d90010f97467c9074ff0aec3ed87f76608"

        self.verify_transactions(
            raw_transaction_input,
            raw_transaction_generated.inner(),
            signed_transaction_input,
            signed_transaction_generated,
        )

    def verify_transactions(
        self,
        raw_transaction_input: str,
        raw_transaction_generated: RawTransaction,
        signed_transaction_input: str,
        signed_transaction_generated: SignedTransaction,
    ):
        # Verify the RawTransaction
        self.assertEqual(raw_transaction_input, raw_transaction_generated.to_bytes().hex())
        raw_transaction = RawTransaction.from_bytes(bytes.fromhex(raw_transaction_input))
        self.assertEqual(raw_transaction_generated, raw_transaction)

        # Verify the SignedTransaction
        self.assertEqual(signed_transaction_input, signed_transaction_generated.bytes().hex())
        signed_transaction = SignedTransaction.from_bytes(
            bytes.fromhex(signed_transaction_input)
        )

        self.assertEqual(signed_transaction.transaction, raw_transaction)
        self.assertTrue(signed_transaction.verify())

        with self.assertRaises(MalformedInput):
            SignedTransaction.from_bytes(bytes.fromhex(signed_transaction_input) + b"\x00")

    def test_fee_payer_with_corpus(self):
        signed_transaction_input = "4629fa78b6a7810c6c3a45565707896944c4936a5583f9d3981c0692beb9e3fe010000000000000002915efe6647e0440f927d46e39bcb5eb040a7e567e1756e002073bc6e26f2cd230c63616e7661735f746f6b656e04647261770004205d45bb2a6f391440ba10444c7734559bd5ef9053930e3ef53d05be332518522bc90164850086008700880089008a008b008c008d008e008f0090009100920093009400950096009700980099009a009b009c009d009e009f00a000a100a200a300a400a500a600a700a800a900aa00ab00ac00ad00ae00af00b000b100b200b300b400b500b600b700b800b900ba00bb00bc00bd00be00bf00c000c100c200c300c4009f00a000a100a200a300a400a500a600a700a800a900aa00ab00ac00ad00ae00af00b000b100b200b300b400b500b600b700b800b900ba00bb00bc00bd00be00bf00c000c100c200c90164b701b701b701b701b701b701b701b701b701b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601b601130213021302130213021302130213021302130213021302130213021302130213021302130213021302130213021302130213021302130213021302130213021302130213021302656400000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000000400d030000000000640000000000000043663065000000000103002076585d13da61c3d65f786b082e75ef790be66639fa066e0fc3b6f427d6ceb89340e137736ee1a0b60e8bdac8d0c75f29f1e6c6e7378689928125ea7a13164f96244d98ed3584df98643f5db00624f0271931498ff19492558737fbd4dcd0e99c040000af621023eaa26d6f1139da3e146a43aa4757fd77552f73ceba34b00295c340ce0020c245d6e4f0ce0867b80f9b901c00be5d790ed73272f4e5126ce02a5a7d55a15c4002fbb70e7d79b536d692953e4bdc3f762b5a288839ab974f03c8597ebb1c51d1d7e0920991bd79ca8c0acd02a7fb7c38b9c1f4d7e53f19f88b130555b20ef60d"
        signed_txn = SignedTransaction.from_bytes(bytes.fromhex(signed_transaction_input))

        self.assertEqual(signed_txn.bytes().hex(), signed_transaction_input)
        self.assertTrue(
            isinstance(signed_txn.authenticator.authenticator, FeePayerAuthenticator)
        )
        self.assertTrue(signed_txn.verify())

    def test_fee_payer_signed_before_sponsor_known(self):
        sender = ed25519.PrivateKey.random()
        sponsor = ed25519.PrivateKey.random()
        sponsor_address = AccountAddress.from_key(sponsor.public_key())
        raw_transaction = RawTransaction(
            AccountAddress.from_key(sender.public_key()),
            0,
            TransactionPayload(EntryFunction.natural("0x1::m", "f", [], [])),
            2000,
            100,
            1000,
            4,
        )

        unsponsored = FeePayerRawTransaction(raw_transaction, [], None)
        sponsored = FeePayerRawTransaction(raw_transaction, [], sponsor_address)
        authenticator = Authenticator(
            FeePayerAuthenticator(
                unsponsored.sign(sender),
                [],
                (sponsor_address, sponsored.sign(sponsor)),
            )
        )
        self.assertTrue(SignedTransaction(raw_transaction, authenticator).verify())

        # The sponsor itself must commit to its own address.
        authenticator = Authenticator(
            FeePayerAuthenticator(
                unsponsored.sign(sender),
                [],
                (sponsor_address, unsponsored.sign(sponsor)),
            )
        )
        self.assertFalse(SignedTransaction(raw_transaction, authenticator).verify())
