# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
A canonical BCS serializer and deserializer. Learn more at https://github.com/diem/bcs

Integers are little-endian and fixed width, lengths and enum variants are ULEB128 and
nothing is self-describing. Nested `deserialize` calls may consume part of a buffer, while
the top-level `from_bytes` / `decode` entry points reject trailing bytes.
"""

from __future__ import annotations

import io
import typing
import unittest
from typing import Dict, List, Optional

from typing_extensions import Protocol

from .errors import InvalidLength, MalformedInput, OutOfRange

MAX_U8 = 2**8 - 1
MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1
MAX_U256 = 2**256 - 1

# Collections and byte strings are bounded by the u32 ceiling of the length prefix.
MAX_SEQUENCE_LENGTH = MAX_U32


class Deserializable(Protocol):
    @classmethod
    def from_bytes(cls, indata: bytes) -> typing.Any:
        return decode(indata, cls.deserialize)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> typing.Any:
        ...


class Serializable(Protocol):
    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    def serialize(self, serializer: Serializer):
        ...


class Deserializer:
    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        return self._length - self._input.tell()

    def finish(self):
        """Asserts that the whole input has been consumed."""
        if self.remaining() != 0:
            raise MalformedInput(
                f"Unexpected trailing bytes: {self.remaining()} left unconsumed"
            )

    def bool(self) -> bool:
        value = self._read_int(1)
        if value == 0:
            return False
        elif value == 1:
            return True
        raise MalformedInput(f"Unexpected boolean value: {value}")

    def to_bytes(self) -> bytes:
        return self._read(self._length_prefix())

    def fixed_bytes(self, length: int) -> bytes:
        return self._read(length)

    def map(
        self,
        key_decoder: typing.Callable[[Deserializer], typing.Any],
        value_decoder: typing.Callable[[Deserializer], typing.Any],
    ) -> Dict[typing.Any, typing.Any]:
        length = self._length_prefix()
        values: Dict[typing.Any, typing.Any] = {}
        for _ in range(length):
            key = key_decoder(self)
            if key in values:
                raise MalformedInput(f"Duplicate map key: {key}")
            values[key] = value_decoder(self)
        return values

    def option(
        self, value_decoder: typing.Callable[[Deserializer], typing.Any]
    ) -> Optional[typing.Any]:
        if self.bool():
            return value_decoder(self)
        return None

    def sequence(
        self,
        value_decoder: typing.Callable[[Deserializer], typing.Any],
    ) -> List[typing.Any]:
        length = self._length_prefix()
        values: List[typing.Any] = []
        while len(values) < length:
            values.append(value_decoder(self))
        return values

    def str(self) -> str:
        data = self.to_bytes()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput(f"Invalid UTF-8 string: {e}") from e

    def struct(self, struct: typing.Any) -> typing.Any:
        return struct.deserialize(self)

    def u8(self) -> int:
        return self._read_int(1)

    def u16(self) -> int:
        return self._read_int(2)

    def u32(self) -> int:
        return self._read_int(4)

    def u64(self) -> int:
        return self._read_int(8)

    def u128(self) -> int:
        return self._read_int(16)

    def u256(self) -> int:
        return self._read_int(32)

    def uleb128(self) -> int:
        value = 0
        shift = 0

        while True:
            byte = self._read_int(1)
            if shift > 0 and byte == 0:
                raise MalformedInput("Non-canonical uleb128 encoding")
            value |= (byte & 0x7F) << shift
            if value > MAX_U32:
                raise InvalidLength("Unexpectedly large uleb128 value")
            if byte & 0x80 == 0:
                break
            shift += 7

        return value

    def _length_prefix(self) -> int:
        length = self.uleb128()
        if length > self.remaining():
            raise InvalidLength(
                f"Length prefix {length} exceeds the {self.remaining()} remaining bytes"
            )
        return length

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            raise MalformedInput(
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


class Serializer:
    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        return self._output.getvalue()

    def bool(self, value: bool):
        self._write_int(int(value), 1, MAX_U8, "bool")

    def to_bytes(self, value: bytes):
        self.uleb128(len(value))
        self._output.write(value)

    def fixed_bytes(self, value):
        self._output.write(value)

    def map(
        self,
        values: typing.Dict[typing.Any, typing.Any],
        key_encoder: typing.Callable[[Serializer, typing.Any], None],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        encoded_values = []
        for key, value in values.items():
            encoded_values.append(
                (encoder(key, key_encoder), encoder(value, value_encoder))
            )
        encoded_values.sort(key=lambda item: item[0])

        self.uleb128(len(encoded_values))
        for key, value in encoded_values:
            self.fixed_bytes(key)
            self.fixed_bytes(value)

    def option(
        self,
        value: Optional[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        self.bool(value is not None)
        if value is not None:
            value_encoder(self, value)

    @staticmethod
    def sequence_serializer(
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        return lambda self, values: self.sequence(values, value_encoder)

    def sequence(
        self,
        values: typing.Sequence[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        self.uleb128(len(values))
        for value in values:
            self.fixed_bytes(encoder(value, value_encoder))

    def str(self, value: str):
        self.to_bytes(value.encode("utf-8"))

    def struct(self, value: typing.Any):
        value.serialize(self)

    def u8(self, value: int):
        self._write_int(value, 1, MAX_U8, "u8")

    def u16(self, value: int):
        self._write_int(value, 2, MAX_U16, "u16")

    def u32(self, value: int):
        self._write_int(value, 4, MAX_U32, "u32")

    def u64(self, value: int):
        self._write_int(value, 8, MAX_U64, "u64")

    def u128(self, value: int):
        self._write_int(value, 16, MAX_U128, "u128")

    def u256(self, value: int):
        self._write_int(value, 32, MAX_U256, "u256")

    def uleb128(self, value: int):
        if value < 0 or value > MAX_SEQUENCE_LENGTH:
            raise OutOfRange(f"Cannot encode {value} into uleb128")

        while value >= 0x80:
            # Write 7 (lowest) bits of data and set the 8th bit to 1.
            byte = value & 0x7F
            self._output.write(bytes([byte | 0x80]))
            value >>= 7

        # Write the remaining bits of data and set the highest bit to 0.
        self._output.write(bytes([value & 0x7F]))

    def _write_int(self, value: int, length: int, max_value: int, name: str):
        if value < 0 or value > max_value:
            raise OutOfRange(f"Cannot encode {value} into {name}")
        self._output.write(value.to_bytes(length, "little", signed=False))


def encoder(
    value: typing.Any, encoder: typing.Callable[[Serializer, typing.Any], None]
) -> bytes:
    ser = Serializer()
    encoder(ser, value)
    return ser.output()


def decode(
    data: bytes, decoder: typing.Callable[[Deserializer], typing.Any]
) -> typing.Any:
    """Decodes a complete message, rejecting any trailing bytes."""
    der = Deserializer(data)
    value = decoder(der)
    der.finish()
    return value


class Test(unittest.TestCase):
    def test_bool_true(self):
        in_value = True

        ser = Serializer()
        ser.bool(in_value)
        der = Deserializer(ser.output())
        out_value = der.bool()

        self.assertEqual(in_value, out_value)

    def test_bool_false(self):
        ser = Serializer()
        ser.bool(False)
        self.assertEqual(ser.output(), b"\x00")
        self.assertFalse(decode(ser.output(), Deserializer.bool))

    def test_bool_error(self):
        ser = Serializer()
        ser.u8(32)
        der = Deserializer(ser.output())
        with self.assertRaises(MalformedInput):
            der.bool()

    def test_bytes(self):
        in_value = b"1234567890"

        ser = Serializer()
        ser.to_bytes(in_value)
        self.assertEqual(ser.output()[0], len(in_value))
        der = Deserializer(ser.output())
        out_value = der.to_bytes()

        self.assertEqual(in_value, out_value)

    def test_map_sorts_by_encoded_key(self):
        in_value = {"b": 99234, "a": 12345, "c": 23829}

        ser = Serializer()
        ser.map(in_value, Serializer.str, Serializer.u32)
        self.assertEqual(ser.output()[:3], b"\x03\x01a")
        der = Deserializer(ser.output())
        out_value = der.map(Deserializer.str, Deserializer.u32)

        self.assertEqual(in_value, out_value)

    def test_map_duplicate_key(self):
        # {"a": 1, "a": 2} as two entries
        data = b"\x02\x01a\x01\x00\x00\x00\x01a\x02\x00\x00\x00"
        with self.assertRaises(MalformedInput):
            Deserializer(data).map(Deserializer.str, Deserializer.u32)

    def test_option(self):
        ser = Serializer()
        ser.option(None, Serializer.u8)
        ser.option(7, Serializer.u8)
        self.assertEqual(ser.output(), b"\x00\x01\x07")

        der = Deserializer(ser.output())
        self.assertIsNone(der.option(Deserializer.u8))
        self.assertEqual(der.option(Deserializer.u8), 7)

    def test_sequence(self):
        in_value = ["a", "abc", "def", "ghi"]

        ser = Serializer()
        ser.sequence(in_value, Serializer.str)
        der = Deserializer(ser.output())
        out_value = der.sequence(Deserializer.str)

        self.assertEqual(in_value, out_value)

    def test_sequence_serializer(self):
        in_value = ["a", "abc", "def", "ghi"]

        ser = Serializer()
        seq_ser = Serializer.sequence_serializer(Serializer.str)
        seq_ser(ser, in_value)
        out_value = decode(ser.output(), lambda der: der.sequence(Deserializer.str))

        self.assertEqual(in_value, out_value)

    def test_str_utf8(self):
        in_value = "héllo wörld"

        ser = Serializer()
        ser.str(in_value)
        self.assertEqual(ser.output()[0], len(in_value.encode("utf-8")))
        self.assertEqual(decode(ser.output(), Deserializer.str), in_value)

    def test_invalid_utf8(self):
        with self.assertRaises(MalformedInput):
            decode(b"\x02\xc3\x28", Deserializer.str)

    def test_integers_are_little_endian(self):
        ser = Serializer()
        ser.u8(0x01)
        ser.u16(0x0302)
        ser.u32(0x07060504)
        ser.u64(0x0F0E0D0C0B0A0908)
        self.assertEqual(ser.output(), bytes(range(1, 16)))

        der = Deserializer(ser.output())
        self.assertEqual(der.u8(), 0x01)
        self.assertEqual(der.u16(), 0x0302)
        self.assertEqual(der.u32(), 0x07060504)
        self.assertEqual(der.u64(), 0x0F0E0D0C0B0A0908)
        der.finish()

    def test_u128_u256(self):
        ser = Serializer()
        ser.u128(MAX_U128)
        ser.u256(1)
        self.assertEqual(ser.output(), b"\xff" * 16 + b"\x01" + b"\x00" * 31)

        der = Deserializer(ser.output())
        self.assertEqual(der.u128(), MAX_U128)
        self.assertEqual(der.u256(), 1)

    def test_out_of_range(self):
        ser = Serializer()
        with self.assertRaises(OutOfRange):
            ser.u8(256)
        with self.assertRaises(OutOfRange):
            ser.u64(MAX_U64 + 1)
        with self.assertRaises(OutOfRange):
            ser.u16(-1)
        with self.assertRaises(OutOfRange):
            ser.u256(MAX_U256 + 1)

    def test_uleb128(self):
        for in_value, expected in [
            (0, b"\x00"),
            (127, b"\x7f"),
            (128, b"\x80\x01"),
            (16384, b"\x80\x80\x01"),
            (MAX_U32, b"\xff\xff\xff\xff\x0f"),
        ]:
            ser = Serializer()
            ser.uleb128(in_value)
            self.assertEqual(ser.output(), expected)
            self.assertEqual(decode(expected, Deserializer.uleb128), in_value)

    def test_uleb128_non_canonical(self):
        with self.assertRaises(MalformedInput):
            decode(b"\x80\x00", Deserializer.uleb128)

    def test_uleb128_too_large(self):
        with self.assertRaises(InvalidLength):
            decode(b"\xff\xff\xff\xff\x1f", Deserializer.uleb128)

    def test_truncated_input(self):
        with self.assertRaises(MalformedInput):
            Deserializer(b"\x01\x02\x03").u64()

    def test_length_prefix_exceeds_input(self):
        with self.assertRaises(InvalidLength):
            Deserializer(b"\x05abc").to_bytes()
        with self.assertRaises(InvalidLength):
            Deserializer(b"\x80\x01\x00").sequence(Deserializer.u8)

    def test_trailing_bytes_rejected_at_top_level(self):
        with self.assertRaises(MalformedInput):
            decode(b"\x01\x00", Deserializer.u8)

        # Nested reads may stop early.
        der = Deserializer(b"\x01\x00")
        self.assertEqual(der.u8(), 1)
        self.assertEqual(der.remaining(), 1)


if __name__ == "__main__":
    unittest.main()
