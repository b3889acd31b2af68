# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Typed Move values. Every value knows its TypeTag and encodes itself with BCS, so a value can
be handed directly to an entry function as an argument. `coerce` turns loosely typed Python
input into a value of a given type and `decode_value` reads one back from BCS.
"""

from __future__ import annotations

import typing
import unittest
from typing import Dict, List, Optional, Tuple

from . import bcs
from .account_address import AccountAddress, ParseAddressError
from .bcs import Deserializer, Serializable, Serializer
from .errors import AbiMismatch, MalformedInput, OutOfRange
from .type_tag import (
    AccountAddressTag,
    BoolTag,
    StructTag,
    TypeTag,
    U8Tag,
    U16Tag,
    U32Tag,
    U64Tag,
    U128Tag,
    U256Tag,
    VectorTag,
    parse_type_tag,
)


class MoveValue(Serializable):
    def type_tag(self) -> TypeTag:
        ...


class Bool(MoveValue):
    value: bool

    def __init__(self, value: bool):
        if not isinstance(value, bool):
            raise OutOfRange(f"Expected a bool, found {type(value).__name__}")
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bool):
            return NotImplemented
        return self.value == other.value

    def __repr__(self):
        return f"Bool({self.value})"

    def type_tag(self) -> TypeTag:
        return TypeTag(BoolTag())

    def serialize(self, serializer: Serializer):
        serializer.bool(self.value)


class Integer(MoveValue):
    """Unsigned integers of a fixed width, checked at construction."""

    BITS: int
    TAG: typing.Any

    value: int

    def __init__(self, value: int):
        if isinstance(value, bool) or not isinstance(value, int):
            raise OutOfRange(
                f"Expected an integer for u{self.BITS}, found {type(value).__name__}"
            )
        if value < 0 or value >= 1 << self.BITS:
            raise OutOfRange(f"{value} does not fit in u{self.BITS}")
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Integer):
            return NotImplemented
        return self.BITS == other.BITS and self.value == other.value

    def __int__(self):
        return self.value

    def __repr__(self):
        return f"U{self.BITS}({self.value})"

    def type_tag(self) -> TypeTag:
        return TypeTag(self.TAG())

    def serialize(self, serializer: Serializer):
        getattr(serializer, f"u{self.BITS}")(self.value)


class U8(Integer):
    BITS = 8
    TAG = U8Tag


class U16(Integer):
    BITS = 16
    TAG = U16Tag


class U32(Integer):
    BITS = 32
    TAG = U32Tag


class U64(Integer):
    BITS = 64
    TAG = U64Tag


class U128(Integer):
    BITS = 128
    TAG = U128Tag


class U256(Integer):
    BITS = 256
    TAG = U256Tag


INTEGERS: Dict[int, typing.Type[Integer]] = {
    TypeTag.U8: U8,
    TypeTag.U16: U16,
    TypeTag.U32: U32,
    TypeTag.U64: U64,
    TypeTag.U128: U128,
    TypeTag.U256: U256,
}

STRING_TAG = parse_type_tag("0x1::string::String")


class MoveString(MoveValue):
    value: str

    def __init__(self, value: str):
        if not isinstance(value, str):
            raise AbiMismatch(f"Expected a str, found {type(value).__name__}")
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MoveString):
            return NotImplemented
        return self.value == other.value

    def __repr__(self):
        return f"MoveString({self.value!r})"

    def type_tag(self) -> TypeTag:
        return STRING_TAG

    def serialize(self, serializer: Serializer):
        serializer.str(self.value)


def _is_instance_of(type_tag: TypeTag, value: typing.Any) -> bool:
    if type_tag.variant() == TypeTag.ACCOUNT_ADDRESS or type_tag.is_object():
        return isinstance(value, AccountAddress)
    return isinstance(value, MoveValue) and value.type_tag() == type_tag


class MoveVector(MoveValue):
    element: TypeTag
    values: List[typing.Any]

    def __init__(self, element: TypeTag, values: List[typing.Any]):
        self.element = element
        self.values = list(values)
        for value in self.values:
            if not _is_instance_of(element, value):
                raise AbiMismatch(f"{value!r} is not a {element}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MoveVector):
            return NotImplemented
        return self.element == other.element and self.values == other.values

    def __len__(self):
        return len(self.values)

    def __repr__(self):
        return f"MoveVector<{self.element}>({self.values})"

    @staticmethod
    def u8(data: bytes) -> MoveVector:
        return MoveVector(TypeTag(U8Tag()), [U8(byte) for byte in data])

    def type_tag(self) -> TypeTag:
        return TypeTag(VectorTag(self.element))

    def serialize(self, serializer: Serializer):
        if self.element.variant() == TypeTag.U8:
            serializer.to_bytes(bytes(int(value) for value in self.values))
        else:
            serializer.sequence(self.values, Serializer.struct)


class MoveOption(MoveVector):
    """An Option<T> is encoded as a vector of zero or one element."""

    def __init__(self, element: TypeTag, value: Optional[typing.Any] = None):
        super().__init__(element, [] if value is None else [value])

    @staticmethod
    def from_values(element: TypeTag, values: List[typing.Any]) -> MoveOption:
        if len(values) > 1:
            raise OutOfRange(f"An option holds at most one value, found {len(values)}")
        return MoveOption(element, values[0] if values else None)

    def __repr__(self):
        return f"MoveOption<{self.element}>({self.unwrap()})"

    def is_some(self) -> bool:
        return len(self.values) == 1

    def unwrap(self) -> Optional[typing.Any]:
        return self.values[0] if self.values else None

    def type_tag(self) -> TypeTag:
        return TypeTag(
            StructTag(AccountAddress.ONE, "option", "Option", [self.element])
        )

    def serialize(self, serializer: Serializer):
        serializer.sequence(self.values, Serializer.struct)


class MoveStruct(MoveValue):
    """A struct value with its fields in declaration order."""

    tag: StructTag
    fields: List[Tuple[str, typing.Any]]

    def __init__(self, tag: StructTag, fields: List[Tuple[str, typing.Any]]):
        self.tag = tag
        self.fields = fields

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MoveStruct):
            return NotImplemented
        return self.tag == other.tag and self.fields == other.fields

    def __getitem__(self, name: str) -> typing.Any:
        for field_name, value in self.fields:
            if field_name == name:
                return value
        raise KeyError(name)

    def __repr__(self):
        return f"{self.tag} {dict(self.fields)}"

    def type_tag(self) -> TypeTag:
        return TypeTag(self.tag)

    def serialize(self, serializer: Serializer):
        for _, value in self.fields:
            value.serialize(serializer)


# Field layouts of user structs, keyed by `address::module::name`. Field types may refer
# to the struct's own type parameters as T0, T1, ...
StructLayouts = Dict[str, List[Tuple[str, TypeTag]]]


def _struct_key(tag: StructTag) -> str:
    return f"{tag.address}::{tag.module}::{tag.name}"


def _parse_integer(type_tag: TypeTag, value: typing.Any) -> int:
    if isinstance(value, Integer):
        if value.type_tag() != type_tag:
            raise AbiMismatch(f"Expected {type_tag}, found {value.type_tag()}")
        return value.value
    if isinstance(value, bool):
        raise OutOfRange(f"A bool is not a valid {type_tag}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise OutOfRange(f"'{value}' is not a decimal {type_tag}")
        return int(text)
    raise AbiMismatch(f"Cannot coerce {type(value).__name__} into {type_tag}")


def _parse_u8_vector(value: typing.Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        if not value.startswith("0x"):
            raise AbiMismatch(f"Expected a 0x prefixed hex string, found '{value}'")
        try:
            return bytes.fromhex(value[2:])
        except ValueError as e:
            raise AbiMismatch(f"Invalid hex string '{value}'") from e
    return bytes(int(U8(_parse_integer(TypeTag(U8Tag()), item))) for item in value)


def coerce(type_tag: TypeTag, value: typing.Any) -> MoveValue:
    """
    Converts a Python value into the MoveValue of the given type. Integers accept ints and
    decimal strings, addresses any AIP-40 form or 32 raw bytes, vector<u8> bytes or 0x hex,
    Option<T> None, a list of at most one element or a bare value, String a str and
    Object<T> its address. Values that already are MoveValues of the right type pass through.
    """
    variant = type_tag.variant()

    if variant == TypeTag.BOOL:
        if isinstance(value, Bool):
            return value
        if not isinstance(value, bool):
            raise AbiMismatch(f"Expected a bool, found {type(value).__name__}")
        return Bool(value)

    if variant in INTEGERS:
        return INTEGERS[variant](_parse_integer(type_tag, value))

    if variant == TypeTag.ACCOUNT_ADDRESS:
        try:
            return AccountAddress.coerce(value)
        except ParseAddressError as e:
            raise AbiMismatch(f"Invalid address argument {value!r}: {e}") from e

    if variant == TypeTag.SIGNER:
        raise AbiMismatch("signer arguments are supplied by the transaction sender")

    if variant == TypeTag.VECTOR:
        element = type_tag.value.element
        if isinstance(value, MoveVector) and not isinstance(value, MoveOption):
            if value.element != element:
                raise AbiMismatch(f"Expected {type_tag}, found {value.type_tag()}")
            return value
        if element.variant() == TypeTag.U8:
            return MoveVector.u8(_parse_u8_vector(value))
        if isinstance(value, (str, bytes, dict)):
            raise AbiMismatch(f"Expected a list for {type_tag}, found {value!r}")
        return MoveVector(element, [coerce(element, item) for item in value])

    if variant == TypeTag.STRUCT:
        struct = type_tag.value
        if struct.is_option():
            return _coerce_option(struct.type_args[0], value)
        if struct.is_string():
            if isinstance(value, MoveString):
                return value
            return MoveString(value)
        if struct.is_object():
            return coerce(TypeTag(AccountAddressTag()), value)
        if isinstance(value, MoveStruct) and value.tag == struct:
            return value
        raise AbiMismatch(f"Cannot coerce {type(value).__name__} into {type_tag}")

    raise AbiMismatch(f"{type_tag} cannot be used as an argument")


def _coerce_option(element: TypeTag, value: typing.Any) -> MoveOption:
    if isinstance(value, MoveOption):
        if value.element != element:
            raise AbiMismatch(f"Expected Option<{element}>, found {value.type_tag()}")
        return value
    if value is None:
        return MoveOption(element)
    # Lists are the element itself when the element is a vector.
    if isinstance(value, (list, tuple)) and element.variant() != TypeTag.VECTOR:
        return MoveOption.from_values(element, [coerce(element, v) for v in value])
    return MoveOption(element, coerce(element, value))


def decode_value(
    deserializer: Deserializer,
    type_tag: TypeTag,
    layouts: Optional[StructLayouts] = None,
) -> MoveValue:
    """Reads a value of the given type. User defined structs require a field layout."""
    variant = type_tag.variant()

    if variant == TypeTag.BOOL:
        return Bool(deserializer.bool())
    if variant in INTEGERS:
        integer = INTEGERS[variant]
        return integer(getattr(deserializer, f"u{integer.BITS}")())
    if variant == TypeTag.ACCOUNT_ADDRESS:
        return AccountAddress.deserialize(deserializer)
    if variant == TypeTag.VECTOR:
        element = type_tag.value.element
        if element.variant() == TypeTag.U8:
            return MoveVector.u8(deserializer.to_bytes())
        return MoveVector(
            element,
            deserializer.sequence(lambda der: decode_value(der, element, layouts)),
        )
    if variant == TypeTag.STRUCT:
        struct = type_tag.value
        if struct.is_option():
            element = struct.type_args[0]
            values = deserializer.sequence(
                lambda der: decode_value(der, element, layouts)
            )
            return MoveOption.from_values(element, values)
        if struct.is_string():
            return MoveString(deserializer.str())
        if struct.is_object():
            return AccountAddress.deserialize(deserializer)
        key = _struct_key(struct)
        if layouts is None or key not in layouts:
            raise AbiMismatch(f"No field layout known for {key}")
        fields = []
        for name, field_tag in layouts[key]:
            field_tag = field_tag.substitute(struct.type_args)
            fields.append((name, decode_value(deserializer, field_tag, layouts)))
        return MoveStruct(struct, fields)

    raise AbiMismatch(f"Values of type {type_tag} cannot be decoded")


def decode(
    data: bytes, type_tag: TypeTag, layouts: Optional[StructLayouts] = None
) -> MoveValue:
    return bcs.decode(data, lambda der: decode_value(der, type_tag, layouts))


class Test(unittest.TestCase):
    def test_integer_ranges(self):
        self.assertEqual(U8(255).to_bytes(), b"\xff")
        self.assertEqual(U16(0x0102).to_bytes(), b"\x02\x01")
        self.assertEqual(U256(1).to_bytes(), b"\x01" + b"\x00" * 31)
        with self.assertRaises(OutOfRange):
            U8(256)
        with self.assertRaises(OutOfRange):
            U64(-1)
        with self.assertRaises(OutOfRange):
            U128(2**128)
        with self.assertRaises(OutOfRange):
            U64(True)

    def test_coerce_integers(self):
        u64 = parse_type_tag("u64")
        self.assertEqual(coerce(u64, 10), U64(10))
        self.assertEqual(coerce(u64, "18446744073709551615"), U64(2**64 - 1))
        self.assertEqual(coerce(parse_type_tag("u256"), 2**255), U256(2**255))
        with self.assertRaises(OutOfRange):
            coerce(u64, "18446744073709551616")
        with self.assertRaises(OutOfRange):
            coerce(u64, True)
        with self.assertRaises(OutOfRange):
            coerce(u64, "-1")
        with self.assertRaises(OutOfRange):
            coerce(parse_type_tag("u8"), 300)

    def test_coerce_non_ascii_digits(self):
        u64 = parse_type_tag("u64")
        for text in ["²", "١٢٣", "１２"]:
            with self.assertRaises(OutOfRange, msg=text):
                coerce(u64, text)

    def test_vector_element_types(self):
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("vector<u8>"), [U64(300)])
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("u8"), U64(3))
        with self.assertRaises(AbiMismatch):
            MoveVector(parse_type_tag("u8"), [U64(300)])
        with self.assertRaises(AbiMismatch):
            MoveVector(parse_type_tag("u64"), [7])
        with self.assertRaises(AbiMismatch):
            MoveOption(parse_type_tag("bool"), U8(1))

        objects = coerce(
            parse_type_tag("vector<0x1::object::Object<0x1::fungible_asset::Metadata>>"),
            ["0xa"],
        )
        self.assertEqual(objects.to_bytes(), b"\x01" + AccountAddress.from_str("0xa").address)

    def test_coerce_bool(self):
        self.assertEqual(coerce(parse_type_tag("bool"), True).to_bytes(), b"\x01")
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("bool"), 1)

    def test_coerce_address(self):
        address = parse_type_tag("address")
        self.assertEqual(coerce(address, "0x1"), AccountAddress.ONE)
        self.assertEqual(coerce(address, "1"), AccountAddress.ONE)
        self.assertEqual(coerce(address, b"\x00" * 32), AccountAddress.ZERO)
        with self.assertRaises(AbiMismatch):
            coerce(address, "0xnothex")

    def test_coerce_signer(self):
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("signer"), AccountAddress.ONE)

    def test_coerce_vectors(self):
        bytes_tag = parse_type_tag("vector<u8>")
        expected = b"\x03\x01\x02\x03"
        self.assertEqual(coerce(bytes_tag, b"\x01\x02\x03").to_bytes(), expected)
        self.assertEqual(coerce(bytes_tag, "0x010203").to_bytes(), expected)
        self.assertEqual(coerce(bytes_tag, [1, 2, 3]).to_bytes(), expected)
        with self.assertRaises(AbiMismatch):
            coerce(bytes_tag, "010203")

        nested = coerce(parse_type_tag("vector<vector<u16>>"), [[1], [], ["2", 3]])
        self.assertEqual(
            nested.to_bytes(), b"\x03" + b"\x01\x01\x00" + b"\x00" + b"\x02\x02\x00\x03\x00"
        )
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("vector<u64>"), "123")

    def test_option_encoding(self):
        option_u64 = parse_type_tag("0x1::option::Option<u64>")
        self.assertEqual(coerce(option_u64, None).to_bytes(), b"\x00")
        self.assertEqual(coerce(option_u64, []).to_bytes(), b"\x00")
        some = b"\x01" + b"\x07" + b"\x00" * 7
        self.assertEqual(coerce(option_u64, 7).to_bytes(), some)
        self.assertEqual(coerce(option_u64, [7]).to_bytes(), some)
        self.assertEqual(coerce(option_u64, ["7"]).to_bytes(), some)
        with self.assertRaises(OutOfRange):
            coerce(option_u64, [1, 2])

        self.assertEqual(decode(some, option_u64), MoveOption(parse_type_tag("u64"), U64(7)))
        with self.assertRaises(OutOfRange):
            decode(b"\x02" + b"\x00" * 16, option_u64)

    def test_option_of_vector(self):
        option_bytes = parse_type_tag("0x1::option::Option<vector<u8>>")
        self.assertEqual(coerce(option_bytes, [1, 2]).to_bytes(), b"\x01\x02\x01\x02")
        self.assertEqual(coerce(option_bytes, None).to_bytes(), b"\x00")

    def test_string_and_object(self):
        string = coerce(parse_type_tag("0x1::string::String"), "hello")
        self.assertEqual(string.to_bytes(), b"\x05hello")
        with self.assertRaises(AbiMismatch):
            coerce(parse_type_tag("0x1::string::String"), 5)

        obj = parse_type_tag("0x1::object::Object<0x1::fungible_asset::Metadata>")
        self.assertEqual(coerce(obj, "0xa"), AccountAddress.from_str("0xa"))

    def test_decode_user_struct(self):
        pair = parse_type_tag("0xcafe::pair::Pair<u8, 0x1::string::String>")
        layouts: StructLayouts = {
            "0x" + "0" * 60 + "cafe::pair::Pair": [
                ("first", parse_type_tag("T0", allow_generics=True)),
                ("second", parse_type_tag("T1", allow_generics=True)),
                ("flags", parse_type_tag("vector<bool>")),
            ]
        }
        data = b"\x2a" + b"\x02hi" + b"\x02\x01\x00"
        value = decode(data, pair, layouts)
        self.assertEqual(value["first"], U8(42))
        self.assertEqual(value["second"], MoveString("hi"))
        self.assertEqual(
            value["flags"],
            MoveVector(parse_type_tag("bool"), [Bool(True), Bool(False)]),
        )
        self.assertEqual(value.to_bytes(), data)
        self.assertEqual(coerce(pair, value), value)

        with self.assertRaises(AbiMismatch):
            decode(data, pair)

    def test_decode_rejects_trailing_bytes(self):
        with self.assertRaises(MalformedInput):
            decode(b"\x01\x00", parse_type_tag("u8"))
