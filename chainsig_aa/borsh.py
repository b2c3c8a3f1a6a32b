# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Borsh serialization, as used by NEAR for transactions and access keys.

Borsh is little-endian and length prefixes every dynamically sized value with a u32:
strings, byte vectors and sequences. Enums are a u8 variant index followed by the
variant's fields.

Learn more at https://borsh.io

Examples:
    Writing a NEAR account id and reading it back::

        ser = Serializer()
        ser.str("alice.near")
        der = Deserializer(ser.output())
        der.str()  # "alice.near"
"""

from __future__ import annotations

import io
import typing
import unittest

from typing_extensions import Protocol

from .errors import EncodingError

MAX_U8 = 2**8 - 1
MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1


class Deserializable(Protocol):
    @classmethod
    def from_bytes(cls, indata: bytes) -> Deserializable:
        der = Deserializer(indata)
        return der.struct(cls)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Deserializable:
        ...


class Serializable(Protocol):
    def to_bytes(self) -> bytes:
        ser = Serializer()
        ser.struct(self)
        return ser.output()

    def serialize(self, serializer: Serializer):
        ...


class Deserializer:
    """Reads Borsh values from a byte string, front to back."""

    _input: io.BytesIO
    _length: int

    def __init__(self, data: bytes):
        self._length = len(data)
        self._input = io.BytesIO(data)

    def remaining(self) -> int:
        return self._length - self._input.tell()

    def bool(self) -> bool:
        value = self.u8()
        if value == 0:
            return False
        elif value == 1:
            return True
        raise EncodingError(f"Unexpected boolean value: {value}")

    def to_bytes(self) -> bytes:
        return self._read(self.u32())

    def fixed_bytes(self, length: int) -> bytes:
        return self._read(length)

    def sequence(
        self, value_decoder: typing.Callable[[Deserializer], typing.Any]
    ) -> typing.List[typing.Any]:
        return [value_decoder(self) for _ in range(self.u32())]

    def str(self) -> str:
        try:
            return self.to_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            raise EncodingError(f"String is not valid UTF-8: {e}") from e

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

    def _read(self, length: int) -> bytes:
        value = self._input.read(length)
        if value is None or len(value) < length:
            actual_length = 0 if value is None else len(value)
            raise EncodingError(
                f"Unexpected end of input. Requested: {length}, found: {actual_length}"
            )
        return value

    def _read_int(self, length: int) -> int:
        return int.from_bytes(self._read(length), byteorder="little", signed=False)


class Serializer:
    """Accumulates Borsh encoded values; ``output`` returns the bytes so far."""

    _output: io.BytesIO

    def __init__(self):
        self._output = io.BytesIO()

    def output(self) -> bytes:
        return self._output.getvalue()

    def bool(self, value: bool):
        self._write_int(int(value), 1, MAX_U8)

    def to_bytes(self, value: bytes):
        """Length prefixed byte vector (``Vec<u8>``)."""
        self.u32(len(value))
        self._output.write(value)

    def fixed_bytes(self, value: bytes):
        """Raw bytes of an array whose length both sides know (``[u8; N]``)."""
        self._output.write(value)

    def sequence(
        self,
        values: typing.List[typing.Any],
        value_encoder: typing.Callable[[Serializer, typing.Any], None],
    ):
        self.u32(len(values))
        for value in values:
            value_encoder(self, value)

    def str(self, value: str):
        self.to_bytes(value.encode("utf-8"))

    def struct(self, value: typing.Any):
        value.serialize(self)

    def u8(self, value: int):
        self._write_int(value, 1, MAX_U8)

    def u16(self, value: int):
        self._write_int(value, 2, MAX_U16)

    def u32(self, value: int):
        self._write_int(value, 4, MAX_U32)

    def u64(self, value: int):
        self._write_int(value, 8, MAX_U64)

    def u128(self, value: int):
        self._write_int(value, 16, MAX_U128)

    def _write_int(self, value: int, length: int, maximum: int):
        if value < 0 or value > maximum:
            raise EncodingError(f"Cannot encode {value} in {length} bytes")
        self._output.write(value.to_bytes(length, "little", signed=False))



class Test(unittest.TestCase):
    def test_bool(self):
        ser = Serializer()
        ser.bool(True)
        ser.bool(False)
        der = Deserializer(ser.output())
        self.assertEqual(ser.output(), b"\x01\x00")
        self.assertTrue(der.bool())
        self.assertFalse(der.bool())
        with self.assertRaises(EncodingError):
            Deserializer(b"\x02").bool()

    def test_integers_are_little_endian(self):
        ser = Serializer()
        ser.u32(1)
        ser.u64(2**40)
        ser.u128(MAX_U128)
        self.assertEqual(ser.output()[:4], b"\x01\x00\x00\x00")

        der = Deserializer(ser.output())
        self.assertEqual(der.u32(), 1)
        self.assertEqual(der.u64(), 2**40)
        self.assertEqual(der.u128(), MAX_U128)
        self.assertEqual(der.remaining(), 0)

    def test_integer_bounds(self):
        ser = Serializer()
        with self.assertRaises(EncodingError):
            ser.u8(MAX_U8 + 1)
        with self.assertRaises(EncodingError):
            ser.u64(-1)
        self.assertEqual(ser.output(), b"")

    def test_sequence(self):
        in_value = ["a", "abc", "def", "ghi"]
        ser = Serializer()
        ser.sequence(in_value, Serializer.str)
        out = ser.output()
        self.assertEqual(out[:4], b"\x04\x00\x00\x00")

        der = Deserializer(out)
        self.assertEqual(der.sequence(Deserializer.str), in_value)

    def test_fixed_bytes_have_no_prefix(self):
        ser = Serializer()
        ser.fixed_bytes(b"\x01\x02")
        ser.to_bytes(b"\x03")
        self.assertEqual(ser.output(), b"\x01\x02\x01\x00\x00\x00\x03")

        der = Deserializer(ser.output())
        self.assertEqual(der.fixed_bytes(2), b"\x01\x02")
        self.assertEqual(der.to_bytes(), b"\x03")

    def test_truncated_input(self):
        with self.assertRaises(EncodingError):
            Deserializer(b"\x01\x00").u32()
        with self.assertRaises(EncodingError):
            Deserializer(b"\x05\x00\x00\x00abc").str()
        with self.assertRaises(EncodingError):
            Deserializer(b"\x01\x00\x00\x00\xff").str()
