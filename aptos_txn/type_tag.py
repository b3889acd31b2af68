# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import typing
import unittest
from typing import List, Tuple

from .account_address import AccountAddress, ParseAddressError
from .bcs import Deserializable, Deserializer, Serializable, Serializer
from .errors import InvalidDiscriminant, MalformedInput, TypeTagParseError

# Deepest nesting of vector and struct type arguments accepted when decoding or parsing.
MAX_TYPE_TAG_DEPTH = 8


class TypeTag(Deserializable, Serializable):
    """TypeTag represents a type in Move."""

    BOOL: int = 0
    U8: int = 1
    U64: int = 2
    U128: int = 3
    ACCOUNT_ADDRESS: int = 4
    SIGNER: int = 5
    VECTOR: int = 6
    STRUCT: int = 7
    U16: int = 8
    U32: int = 9
    U256: int = 10

    value: typing.Any

    def __init__(self, value: typing.Any):
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TypeTag):
            return NotImplemented
        return (
            self.value.variant() == other.value.variant() and self.value == other.value
        )

    def __hash__(self) -> int:
        return hash(str(self))

    def __str__(self):
        return self.value.__str__()

    def __repr__(self):
        return self.__str__()

    def variant(self) -> int:
        return self.value.variant()

    def is_struct(self) -> bool:
        return isinstance(self.value, StructTag)

    def is_vector(self) -> bool:
        return isinstance(self.value, VectorTag)

    def is_option(self) -> bool:
        return self.is_struct() and self.value.is_option()

    def is_string(self) -> bool:
        return self.is_struct() and self.value.is_string()

    def is_object(self) -> bool:
        return self.is_struct() and self.value.is_object()

    def is_generic(self) -> bool:
        """True when a generic parameter appears anywhere in the type."""
        if isinstance(self.value, GenericTag):
            return True
        if isinstance(self.value, VectorTag):
            return self.value.element.is_generic()
        if isinstance(self.value, StructTag):
            return any(arg.is_generic() for arg in self.value.type_args)
        return False

    def substitute(self, type_args: List[TypeTag]) -> TypeTag:
        """Replaces generic parameters T0, T1, ... with the given type arguments."""
        if isinstance(self.value, GenericTag):
            if self.value.index >= len(type_args):
                raise TypeTagParseError(
                    f"Generic parameter T{self.value.index} has no type argument"
                )
            return type_args[self.value.index]
        if isinstance(self.value, VectorTag):
            return TypeTag(VectorTag(self.value.element.substitute(type_args)))
        if isinstance(self.value, StructTag):
            return TypeTag(
                StructTag(
                    self.value.address,
                    self.value.module,
                    self.value.name,
                    [arg.substitute(type_args) for arg in self.value.type_args],
                )
            )
        return self

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TypeTag:
        return TypeTag._deserialize(deserializer, 0)

    @staticmethod
    def _deserialize(deserializer: Deserializer, depth: int) -> TypeTag:
        if depth > MAX_TYPE_TAG_DEPTH:
            raise MalformedInput(f"Type tag nested deeper than {MAX_TYPE_TAG_DEPTH}")
        variant = deserializer.uleb128()
        if variant == TypeTag.VECTOR:
            return TypeTag(VectorTag(TypeTag._deserialize(deserializer, depth + 1)))
        elif variant == TypeTag.STRUCT:
            return TypeTag(StructTag._deserialize(deserializer, depth))
        elif variant in PRIMITIVE_TAGS:
            return TypeTag(PRIMITIVE_TAGS[variant]())
        raise InvalidDiscriminant(f"Invalid type tag variant: {variant}", variant)

    def serialize(self, serializer: Serializer):
        if isinstance(self.value, GenericTag):
            raise TypeTagParseError(f"Unresolved generic parameter {self.value}")
        serializer.uleb128(self.value.variant())
        serializer.struct(self.value)


class PrimitiveTag(Serializable):
    """A type without parameters; its encoding is the variant alone."""

    VARIANT: int
    NAME: str

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PrimitiveTag):
            return NotImplemented
        return self.VARIANT == other.VARIANT

    def __str__(self):
        return self.NAME

    def variant(self):
        return self.VARIANT

    def serialize(self, serializer: Serializer):
        pass


class BoolTag(PrimitiveTag):
    VARIANT = TypeTag.BOOL
    NAME = "bool"


class U8Tag(PrimitiveTag):
    VARIANT = TypeTag.U8
    NAME = "u8"


class U16Tag(PrimitiveTag):
    VARIANT = TypeTag.U16
    NAME = "u16"


class U32Tag(PrimitiveTag):
    VARIANT = TypeTag.U32
    NAME = "u32"


class U64Tag(PrimitiveTag):
    VARIANT = TypeTag.U64
    NAME = "u64"


class U128Tag(PrimitiveTag):
    VARIANT = TypeTag.U128
    NAME = "u128"


class U256Tag(PrimitiveTag):
    VARIANT = TypeTag.U256
    NAME = "u256"


class AccountAddressTag(PrimitiveTag):
    VARIANT = TypeTag.ACCOUNT_ADDRESS
    NAME = "address"


class SignerTag(PrimitiveTag):
    VARIANT = TypeTag.SIGNER
    NAME = "signer"


PRIMITIVE_TAGS = {
    tag.VARIANT: tag
    for tag in [
        BoolTag,
        U8Tag,
        U16Tag,
        U32Tag,
        U64Tag,
        U128Tag,
        U256Tag,
        AccountAddressTag,
        SignerTag,
    ]
}


class VectorTag(Deserializable, Serializable):
    element: TypeTag

    def __init__(self, element: TypeTag):
        self.element = element

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VectorTag):
            return NotImplemented
        return self.element == other.element

    def __str__(self):
        return f"vector<{self.element}>"

    def variant(self):
        return TypeTag.VECTOR

    @staticmethod
    def deserialize(deserializer: Deserializer) -> VectorTag:
        return VectorTag(TypeTag._deserialize(deserializer, 1))

    def serialize(self, serializer: Serializer):
        serializer.struct(self.element)


class StructTag(Deserializable, Serializable):
    address: AccountAddress
    module: str
    name: str
    type_args: List[TypeTag]

    def __init__(self, address, module, name, type_args):
        self.address = address
        self.module = module
        self.name = name
        self.type_args = type_args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructTag):
            return NotImplemented
        return (
            self.address == other.address
            and self.module == other.module
            and self.name == other.name
            and self.type_args == other.type_args
        )

    def __str__(self) -> str:
        value = f"{self.address}::{self.module}::{self.name}"
        if len(self.type_args) > 0:
            value += f"<{', '.join(str(arg) for arg in self.type_args)}>"
        return value

    def _is_framework(self, module: str, name: str) -> bool:
        return (
            self.address == AccountAddress.ONE
            and self.module == module
            and self.name == name
        )

    def is_option(self) -> bool:
        return self._is_framework("option", "Option") and len(self.type_args) == 1

    def is_string(self) -> bool:
        return self._is_framework("string", "String")

    def is_object(self) -> bool:
        return self._is_framework("object", "Object")

    @staticmethod
    def from_str(type_tag: str) -> StructTag:
        parsed = parse_type_tag(type_tag)
        if not isinstance(parsed.value, StructTag):
            raise TypeTagParseError(f"Not a struct type: {type_tag}")
        return parsed.value

    def variant(self):
        return TypeTag.STRUCT

    @staticmethod
    def deserialize(deserializer: Deserializer) -> StructTag:
        return StructTag._deserialize(deserializer, 0)

    @staticmethod
    def _deserialize(deserializer: Deserializer, depth: int) -> StructTag:
        address = deserializer.struct(AccountAddress)
        module = deserializer.str()
        name = deserializer.str()
        type_args = deserializer.sequence(
            lambda inner: TypeTag._deserialize(inner, depth + 1)
        )
        return StructTag(address, module, name, type_args)

    def serialize(self, serializer: Serializer):
        self.address.serialize(serializer)
        serializer.str(self.module)
        serializer.str(self.name)
        serializer.sequence(self.type_args, Serializer.struct)


class GenericTag(Serializable):
    """A reference to a function's type parameter, only meaningful inside an ABI."""

    index: int

    def __init__(self, index: int):
        self.index = index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GenericTag):
            return NotImplemented
        return self.index == other.index

    def __str__(self):
        return f"T{self.index}"

    def variant(self):
        return None

    def serialize(self, serializer: Serializer):
        raise TypeTagParseError(f"Unresolved generic parameter {self}")


def parse_type_tag(text: str, allow_generics: bool = False) -> TypeTag:
    """
    Parses the canonical textual form of a type, e.g. `u64`, `&signer`,
    `vector<0x1::string::String>` or `0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>`.
    """
    (tag, index) = _parse(text, 0, allow_generics, 0)
    index = _skip_whitespace(text, index)
    if index != len(text):
        raise TypeTagParseError(f"Unexpected trailing input at {index}: {text}")
    return tag


def _skip_whitespace(text: str, index: int) -> int:
    while index < len(text) and text[index].isspace():
        index += 1
    return index


def _read_identifier(text: str, index: int) -> Tuple[str, int]:
    start = index
    while index < len(text) and (text[index].isalnum() or text[index] == "_"):
        index += 1
    return (text[start:index], index)


def _parse_type_args(
    text: str, index: int, allow_generics: bool, depth: int
) -> Tuple[List[TypeTag], int]:
    """Parses `<T1, T2, ...>` starting at the opening bracket."""
    index += 1
    tags: List[TypeTag] = []
    while True:
        (tag, index) = _parse(text, index, allow_generics, depth + 1)
        tags.append(tag)
        index = _skip_whitespace(text, index)
        if index >= len(text):
            raise TypeTagParseError(f"Unterminated type arguments: {text}")
        if text[index] == ">":
            return (tags, index + 1)
        if text[index] != ",":
            raise TypeTagParseError(f"Unexpected '{text[index]}' at {index}: {text}")
        index += 1


def _parse(
    text: str, index: int, allow_generics: bool, depth: int
) -> Tuple[TypeTag, int]:
    if depth > MAX_TYPE_TAG_DEPTH:
        raise TypeTagParseError(f"Type nested deeper than {MAX_TYPE_TAG_DEPTH}: {text}")
    index = _skip_whitespace(text, index)
    if text.startswith("&", index):
        (tag, index) = _parse(text, index + 1, allow_generics, depth + 1)
        if not isinstance(tag.value, SignerTag):
            raise TypeTagParseError(f"Only &signer references are supported: {text}")
        return (tag, index)

    (word, index) = _read_identifier(text, index)
    if not word:
        raise TypeTagParseError(f"Expected a type at {index}: {text}")

    for tag_class in PRIMITIVE_TAGS.values():
        if word == tag_class.NAME:
            return (TypeTag(tag_class()), index)

    if word == "vector":
        if not text.startswith("<", index):
            raise TypeTagParseError(f"vector requires an element type: {text}")
        (args, index) = _parse_type_args(text, index, allow_generics, depth)
        if len(args) != 1:
            raise TypeTagParseError(f"vector takes exactly one type argument: {text}")
        return (TypeTag(VectorTag(args[0])), index)

    if text.startswith("::", index):
        parts = [word]
        while text.startswith("::", index):
            (part, index) = _read_identifier(text, index + 2)
            if not part:
                raise TypeTagParseError(f"Empty path segment at {index}: {text}")
            parts.append(part)
        if len(parts) != 3:
            raise TypeTagParseError(f"Expected address::module::name, found: {text}")
        try:
            address = AccountAddress.from_str_relaxed(parts[0])
        except ParseAddressError as e:
            raise TypeTagParseError(f"Invalid struct address in {text}") from e
        type_args: List[TypeTag] = []
        index = _skip_whitespace(text, index)
        if text.startswith("<", index):
            (type_args, index) = _parse_type_args(text, index, allow_generics, depth)
        return (TypeTag(StructTag(address, parts[1], parts[2], type_args)), index)

    if allow_generics and word[0] == "T" and word[1:].isdigit():
        return (TypeTag(GenericTag(int(word[1:]))), index)

    raise TypeTagParseError(f"Unknown type '{word}': {text}")


class Test(unittest.TestCase):
    def test_primitives(self):
        for text, variant in [
            ("bool", TypeTag.BOOL),
            ("u8", TypeTag.U8),
            ("u16", TypeTag.U16),
            ("u32", TypeTag.U32),
            ("u64", TypeTag.U64),
            ("u128", TypeTag.U128),
            ("u256", TypeTag.U256),
            ("address", TypeTag.ACCOUNT_ADDRESS),
            ("signer", TypeTag.SIGNER),
            ("&signer", TypeTag.SIGNER),
        ]:
            tag = parse_type_tag(text)
            self.assertEqual(tag.variant(), variant)
            self.assertEqual(tag.to_bytes(), bytes([variant]))
            self.assertEqual(TypeTag.from_bytes(tag.to_bytes()), tag)

    def test_nested_structs(self):
        l0 = "0x0::l0::L0"
        l10 = "0x1::l10::L10"
        l20 = "0x2::l20::L20"
        l11 = "0x1::l11::L11"
        composite = f"{l0}<{l10}<{l20}>, {l11}>"
        derived = StructTag.from_str(composite)
        in_code = StructTag(
            AccountAddress.from_str("0x0"),
            "l0",
            "L0",
            [
                TypeTag(
                    StructTag(
                        AccountAddress.from_str("0x1"),
                        "l10",
                        "L10",
                        [TypeTag(StructTag.from_str(l20))],
                    )
                ),
                TypeTag(StructTag.from_str(l11)),
            ],
        )
        self.assertEqual(derived, in_code)
        self.assertEqual(str(derived), composite)

        tag = TypeTag(derived)
        self.assertEqual(TypeTag.from_bytes(tag.to_bytes()), tag)

    def test_vectors(self):
        tag = parse_type_tag("vector<vector<u8>>")
        self.assertEqual(tag.to_bytes(), b"\x06\x06\x01")
        self.assertEqual(str(tag), "vector<vector<u8>>")

        tag = parse_type_tag("vector< 0x1::string::String >")
        self.assertTrue(tag.is_vector())
        self.assertTrue(tag.value.element.is_string())

    def test_struct_encoding(self):
        tag = parse_type_tag("0x1::aptos_coin::AptosCoin")
        self.assertEqual(
            tag.to_bytes(),
            b"\x07"
            + b"\x00" * 31
            + b"\x01"
            + b"\x0aaptos_coin"
            + b"\x09AptosCoin"
            + b"\x00",
        )

    def test_framework_structs(self):
        self.assertTrue(parse_type_tag("0x1::option::Option<u64>").is_option())
        self.assertTrue(parse_type_tag("0x1::string::String").is_string())
        self.assertTrue(
            parse_type_tag("0x1::object::Object<0x1::fungible_asset::Metadata>")
            .is_object()
        )
        self.assertFalse(parse_type_tag("0x2::option::Option<u64>").is_option())
        self.assertFalse(parse_type_tag("u64").is_option())

    def test_generics(self):
        with self.assertRaises(TypeTagParseError):
            parse_type_tag("vector<T0>")

        tag = parse_type_tag("vector<T0>", allow_generics=True)
        with self.assertRaises(TypeTagParseError):
            tag.to_bytes()
        resolved = tag.substitute([parse_type_tag("u64")])
        self.assertEqual(resolved, parse_type_tag("vector<u64>"))

    def test_malformed(self):
        for text in [
            "",
            "u63",
            "vector",
            "vector<u8",
            "vector<u8, u8>",
            "0x1::coin",
            "0x1::coin::Coin<>",
            "0xzz::coin::Coin",
            "&u8",
            "u8 u8",
            "0x1::coin::Coin<u8,",
        ]:
            with self.assertRaises(TypeTagParseError, msg=text):
                parse_type_tag(text)

    def test_unknown_variant(self):
        with self.assertRaises(InvalidDiscriminant):
            TypeTag.from_bytes(b"\x0b")

    def test_nesting_limit(self):
        tag = TypeTag.from_bytes(b"\x06" * MAX_TYPE_TAG_DEPTH + b"\x01")
        self.assertEqual(
            str(tag), "vector<" * MAX_TYPE_TAG_DEPTH + "u8" + ">" * MAX_TYPE_TAG_DEPTH
        )
        with self.assertRaises(MalformedInput):
            TypeTag.from_bytes(b"\x06" * (MAX_TYPE_TAG_DEPTH + 1) + b"\x01")
        with self.assertRaises(MalformedInput):
            TypeTag.from_bytes(b"\x06" * 5000)

        struct = b"\x07" + b"\x00" * 31 + b"\x01" + b"\x01m" + b"\x01S" + b"\x01"
        with self.assertRaises(MalformedInput):
            TypeTag.from_bytes(struct * 5000)

        text = "vector<" * MAX_TYPE_TAG_DEPTH + "u8" + ">" * MAX_TYPE_TAG_DEPTH
        self.assertEqual(str(parse_type_tag(text)), text)
        for text in [
            "vector<" * 5000 + "u8" + ">" * 5000,
            "0x1::m::S<" * 5000 + "u8" + ">" * 5000,
            "&" * 5000 + "signer",
        ]:
            with self.assertRaises(TypeTagParseError):
                parse_type_tag(text)
