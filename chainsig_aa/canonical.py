# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Canonical JSON encoding of signable messages.

Every authentication scheme signs the output of this module rather than the raw
message object, and the authorization contract re-derives the exact same bytes
before verifying a signature. The encoding follows RFC 8785 (JSON Canonicalization
Scheme):

- Object members are sorted by the UTF-16 code units of their names, at every level
- Arrays keep their order
- No insignificant whitespace
- Strings use only the mandatory JSON escapes
- Numbers use the ECMAScript shortest round-trip form; integers are printed exactly

Values exposing a ``to_json()`` method (Transaction, Identity, ...) are converted
before encoding, so model objects can be passed directly.

Examples:
    Encoding a plain structure::

        >>> encode({"nonce": 5, "account_id": "alice", "action": "RemoveAccount"})
        '{"account_id":"alice","action":"RemoveAccount","nonce":5}'

    Encoding a model object::

        transaction = OperationBuilder("alice", 5).remove_account()
        message = encode(transaction)
"""

from __future__ import annotations

import json
import math
import typing
import unittest
from decimal import Decimal
from enum import Enum
from typing import List, Set

from .errors import EncodingError


def encode(value: typing.Any) -> str:
    """Serialize ``value`` into its canonical JSON text.

    :param value: A JSON-compatible structure or an object with ``to_json()``
    :return: The canonical JSON string
    :raises EncodingError: If the value is empty, cyclic or has no canonical form
    """
    if value is None or (isinstance(value, str) and value == ""):
        raise EncodingError("Nothing to canonicalize: message is empty")

    out: List[str] = []
    _write(value, out, set())
    text = "".join(out)
    try:
        text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError(f"String is not valid Unicode: {e}") from e
    return text


def encode_bytes(value: typing.Any) -> bytes:
    """Canonical JSON of ``value`` as UTF-8 bytes."""
    return encode(value).encode("utf-8")


def _write(value: typing.Any, out: List[str], stack: Set[int]):
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        value = to_json()

    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, Enum):
        _write(value.value, out, stack)
    elif isinstance(value, int):
        out.append(str(value))
    elif isinstance(value, float):
        out.append(_format_number(value))
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, (list, tuple)):
        _enter(value, stack)
        out.append("[")
        for index, item in enumerate(value):
            if index:
                out.append(",")
            _write(item, out, stack)
        out.append("]")
        stack.discard(id(value))
    elif isinstance(value, dict):
        _enter(value, stack)
        for key in value:
            if not isinstance(key, str):
                raise EncodingError(f"Object keys must be strings, got {key!r}")
        out.append("{")
        for index, key in enumerate(sorted(value, key=_utf16_key)):
            if index:
                out.append(",")
            out.append(json.dumps(key, ensure_ascii=False))
            out.append(":")
            _write(value[key], out, stack)
        out.append("}")
        stack.discard(id(value))
    else:
        raise EncodingError(
            f"No canonical representation for {type(value).__name__}"
        )


def _enter(container: typing.Any, stack: Set[int]):
    if id(container) in stack:
        raise EncodingError("Circular reference in message")
    stack.add(id(container))


def _utf16_key(key: str) -> bytes:
    # Big-endian UTF-16 compares byte-wise in code unit order.
    return key.encode("utf-16-be", "surrogatepass")


def _format_number(value: float) -> str:
    """Format a float the way ECMAScript's Number.prototype.toString does."""
    if math.isnan(value) or math.isinf(value):
        raise EncodingError(f"No canonical representation for {value}")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    parts = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(d) for d in parts.digits)
    # value == 0.<digits> * 10**point
    point = int(parts.exponent) + len(digits)
    digits = digits.rstrip("0")
    length = len(digits)

    if length <= point <= 21:
        text = digits + "0" * (point - length)
    elif 0 < point <= 21:
        text = f"{digits[:point]}.{digits[point:]}"
    elif -6 < point <= 0:
        text = "0." + "0" * -point + digits
    else:
        exponent = point - 1
        mantissa = digits[0] if length == 1 else f"{digits[0]}.{digits[1:]}"
        text = f"{mantissa}e{'+' if exponent > 0 else '-'}{abs(exponent)}"
    return sign + text


class Test(unittest.TestCase):
    def test_insertion_order_does_not_matter(self):
        first = {
            "account_id": "alice",
            "nonce": 5,
            "action": {"RemoveIdentity": {"Account": "bob"}},
        }
        second = {
            "action": {"RemoveIdentity": {"Account": "bob"}},
            "nonce": 5,
            "account_id": "alice",
        }
        self.assertEqual(encode(first), encode(second))
        self.assertEqual(
            encode(first),
            '{"account_id":"alice","action":{"RemoveIdentity":{"Account":"bob"}},"nonce":5}',
        )

    def test_nested_keys_sorted_and_arrays_kept(self):
        value = {"b": [3, 1, {"z": None, "a": True}], "a": "x"}
        self.assertEqual(encode(value), '{"a":"x","b":[3,1,{"a":true,"z":null}]}')

    def test_rfc8785_numbers(self):
        numbers = [333333333.33333329, 1e30, 4.50, 2e-3, 0.000000000000000000000000001]
        self.assertEqual(
            encode(numbers), "[333333333.3333333,1e+30,4.5,0.002,1e-27]"
        )

    def test_number_edge_forms(self):
        self.assertEqual(encode([1.0, -0.0, 100.0, 1e21, 1e-7, 0.000001]),
                         "[1,0,100,1e+21,1e-7,0.000001]")
        self.assertEqual(encode(2**128), str(2**128))

    def test_string_escapes(self):
        self.assertEqual(encode("a\"b\\c\n\x1f€/"), '"a\\"b\\\\c\\n\\u001f€/"')

    def test_keys_sorted_by_utf16_code_units(self):
        value = {"\ue000": 1, "\U0001f600": 2}
        self.assertEqual(encode(value), '{"\U0001f600":2,"\ue000":1}')

    def test_empty_and_none_rejected(self):
        with self.assertRaises(EncodingError):
            encode(None)
        with self.assertRaises(EncodingError):
            encode("")

    def test_unsupported_values_rejected(self):
        for value in ([b"raw"], {"a": {1, 2}}, [float("nan")], {1: "a"}, [object()]):
            with self.assertRaises(EncodingError):
                encode(value)

    def test_circular_reference_rejected(self):
        value: typing.Dict[str, typing.Any] = {"a": []}
        value["a"].append(value)
        with self.assertRaises(EncodingError):
            encode(value)

    def test_shared_references_are_not_cycles(self):
        shared = {"k": 1}
        self.assertEqual(encode([shared, shared]), '[{"k":1},{"k":1}]')

    def test_lone_surrogate_rejected(self):
        with self.assertRaises(EncodingError):
            encode({"a": "\ud800"})

    def test_to_json_objects(self):
        class Message:
            def to_json(self):
                return {"b": 1, "a": 2}

        self.assertEqual(encode(Message()), '{"a":2,"b":1}')
        self.assertEqual(encode_bytes(Message()), b'{"a":2,"b":1}')
