# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
NEAR keys and transactions used to submit operations to the account contract.

Keys are ed25519 and written the way NEAR tooling writes them, ``ed25519:<base58>``.
A private key string holds either the 32 byte seed or the 64 byte seed||public key
form produced by near-cli. Transactions carry only FunctionCall actions; they are
Borsh encoded, and the signature covers the sha256 of that encoding.

Examples:
    Calling a contract method::

        key = PrivateKey.from_str(os.getenv("CHAINSIG_AA_SIGNER_KEY"))
        call = FunctionCall.with_json("auth", {"user_op": user_op}, gas, deposit)
        transaction = Transaction(
            "relayer.testnet", key.public_key(), nonce, "contract.testnet",
            block_hash, [call],
        )
        signed = transaction.sign(key)
"""

from __future__ import annotations

import hashlib
import typing
import unittest
from typing import List

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from . import canonical
from .borsh import Deserializable, Deserializer, Serializable, Serializer
from .errors import ConstructionError, EncodingError

ED25519_PREFIX = "ed25519:"
ED25519_KEY_TYPE = 0


def _decode_key(value: str) -> bytes:
    if not value.startswith(ED25519_PREFIX):
        raise ConstructionError(f"Expected an {ED25519_PREFIX} key, got {value[:8]}")
    try:
        return base58.b58decode(value[len(ED25519_PREFIX) :])
    except ValueError as e:
        raise ConstructionError(f"Key is not base58 encoded: {e}") from e


class PrivateKey:
    SEED_LENGTH: int = 32
    LENGTH: int = 64

    key: SigningKey

    def __init__(self, key: SigningKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PrivateKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self):
        return ED25519_PREFIX + base58.b58encode(
            self.key.encode() + self.key.verify_key.encode()
        ).decode()

    @staticmethod
    def from_str(value: str) -> PrivateKey:
        raw = _decode_key(value)
        if len(raw) not in (PrivateKey.SEED_LENGTH, PrivateKey.LENGTH):
            raise ConstructionError(f"Invalid ed25519 private key length: {len(raw)}")
        key = SigningKey(raw[: PrivateKey.SEED_LENGTH])
        if len(raw) == PrivateKey.LENGTH and raw[32:] != key.verify_key.encode():
            raise ConstructionError("Private key does not match its public half")
        return PrivateKey(key)

    def public_key(self) -> PublicKey:
        return PublicKey(self.key.verify_key)

    @staticmethod
    def random() -> PrivateKey:
        return PrivateKey(SigningKey.generate())

    def sign(self, data: bytes) -> Signature:
        return Signature(self.key.sign(data).signature)


class PublicKey(Deserializable, Serializable):
    LENGTH: int = 32

    key: VerifyKey

    def __init__(self, key: VerifyKey):
        self.key = key

    def __eq__(self, other: object):
        if not isinstance(other, PublicKey):
            return NotImplemented
        return self.key == other.key

    def __str__(self) -> str:
        return ED25519_PREFIX + base58.b58encode(self.key.encode()).decode()

    @staticmethod
    def from_str(value: str) -> PublicKey:
        raw = _decode_key(value)
        if len(raw) != PublicKey.LENGTH:
            raise ConstructionError(f"Invalid ed25519 public key length: {len(raw)}")
        return PublicKey(VerifyKey(raw))

    def verify(self, data: bytes, signature: Signature) -> bool:
        try:
            self.key.verify(data, signature.data())
        except BadSignatureError:
            return False
        return True

    @staticmethod
    def deserialize(deserializer: Deserializer) -> PublicKey:
        key_type = deserializer.u8()
        if key_type != ED25519_KEY_TYPE:
            raise EncodingError(f"Unsupported key type: {key_type}")
        return PublicKey(VerifyKey(deserializer.fixed_bytes(PublicKey.LENGTH)))

    def serialize(self, serializer: Serializer):
        serializer.u8(ED25519_KEY_TYPE)
        serializer.fixed_bytes(self.key.encode())


class Signature(Deserializable, Serializable):
    LENGTH: int = 64

    signature: bytes

    def __init__(self, signature: bytes):
        self.signature = signature

    def __eq__(self, other: object):
        if not isinstance(other, Signature):
            return NotImplemented
        return self.signature == other.signature

    def __str__(self) -> str:
        return ED25519_PREFIX + base58.b58encode(self.signature).decode()

    def data(self) -> bytes:
        return self.signature

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Signature:
        key_type = deserializer.u8()
        if key_type != ED25519_KEY_TYPE:
            raise EncodingError(f"Unsupported signature type: {key_type}")
        return Signature(deserializer.fixed_bytes(Signature.LENGTH))

    def serialize(self, serializer: Serializer):
        serializer.u8(ED25519_KEY_TYPE)
        serializer.fixed_bytes(self.signature)


class FunctionCall(Deserializable, Serializable):
    """Contract method invocation; ``args`` are the raw JSON argument bytes."""

    # Index of FunctionCall in NEAR's Action enum.
    VARIANT: int = 2

    method_name: str
    args: bytes
    gas: int
    deposit: int

    def __init__(self, method_name: str, args: bytes, gas: int, deposit: int):
        self.method_name = method_name
        self.args = args
        self.gas = gas
        self.deposit = deposit

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FunctionCall):
            return NotImplemented
        return (
            self.method_name == other.method_name
            and self.args == other.args
            and self.gas == other.gas
            and self.deposit == other.deposit
        )

    def __str__(self) -> str:
        return f"FunctionCall({self.method_name}, gas={self.gas})"

    @staticmethod
    def with_json(
        method_name: str, args: typing.Any, gas: int, deposit: int
    ) -> FunctionCall:
        return FunctionCall(method_name, canonical.encode_bytes(args), gas, deposit)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> FunctionCall:
        variant = deserializer.u8()
        if variant != FunctionCall.VARIANT:
            raise EncodingError(f"Unsupported action: {variant}")
        return FunctionCall(
            deserializer.str(),
            deserializer.to_bytes(),
            deserializer.u64(),
            deserializer.u128(),
        )

    def serialize(self, serializer: Serializer):
        serializer.u8(FunctionCall.VARIANT)
        serializer.str(self.method_name)
        serializer.to_bytes(self.args)
        serializer.u64(self.gas)
        serializer.u128(self.deposit)


class Transaction(Deserializable, Serializable):
    BLOCK_HASH_LENGTH: int = 32

    signer_id: str
    public_key: PublicKey
    nonce: int
    receiver_id: str
    block_hash: bytes
    actions: List[FunctionCall]

    def __init__(
        self,
        signer_id: str,
        public_key: PublicKey,
        nonce: int,
        receiver_id: str,
        block_hash: bytes,
        actions: List[FunctionCall],
    ):
        if len(block_hash) != Transaction.BLOCK_HASH_LENGTH:
            raise ConstructionError(f"Invalid block hash length: {len(block_hash)}")
        self.signer_id = signer_id
        self.public_key = public_key
        self.nonce = nonce
        self.receiver_id = receiver_id
        self.block_hash = block_hash
        self.actions = actions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def hash(self) -> bytes:
        return hashlib.sha256(self.to_bytes()).digest()

    def sign(self, key: PrivateKey) -> SignedTransaction:
        return SignedTransaction(self, key.sign(self.hash()))

    @staticmethod
    def deserialize(deserializer: Deserializer) -> Transaction:
        return Transaction(
            deserializer.str(),
            deserializer.struct(PublicKey),
            deserializer.u64(),
            deserializer.str(),
            deserializer.fixed_bytes(Transaction.BLOCK_HASH_LENGTH),
            deserializer.sequence(FunctionCall.deserialize),
        )

    def serialize(self, serializer: Serializer):
        serializer.str(self.signer_id)
        serializer.struct(self.public_key)
        serializer.u64(self.nonce)
        serializer.str(self.receiver_id)
        serializer.fixed_bytes(self.block_hash)
        serializer.sequence(self.actions, Serializer.struct)


class SignedTransaction(Deserializable, Serializable):
    transaction: Transaction
    signature: Signature

    def __init__(self, transaction: Transaction, signature: Signature):
        self.transaction = transaction
        self.signature = signature

    def verify(self) -> bool:
        return self.transaction.public_key.verify(
            self.transaction.hash(), self.signature
        )

    @staticmethod
    def deserialize(deserializer: Deserializer) -> SignedTransaction:
        transaction = deserializer.struct(Transaction)
        return SignedTransaction(transaction, deserializer.struct(Signature))

    def serialize(self, serializer: Serializer):
        serializer.struct(self.transaction)
        serializer.struct(self.signature)


class Test(unittest.TestCase):
    def setUp(self):
        self.key = PrivateKey(SigningKey(b"\x01" * 32))
        self.call = FunctionCall.with_json(
            "auth", {"user_op": {"b": 1, "a": 2}}, 300 * 10**12, 0
        )

    def test_key_strings(self):
        encoded = str(self.key)
        self.assertTrue(encoded.startswith("ed25519:"))
        self.assertEqual(PrivateKey.from_str(encoded), self.key)

        seed_only = "ed25519:" + base58.b58encode(b"\x01" * 32).decode()
        self.assertEqual(PrivateKey.from_str(seed_only), self.key)

        public_key = self.key.public_key()
        self.assertEqual(PublicKey.from_str(str(public_key)), public_key)

    def test_invalid_keys(self):
        with self.assertRaises(ConstructionError):
            PrivateKey.from_str("secp256k1:abc")
        with self.assertRaises(ConstructionError):
            PublicKey.from_str("ed25519:" + base58.b58encode(b"\x01" * 31).decode())
        tampered = base58.b58encode(b"\x01" * 32 + b"\x02" * 32).decode()
        with self.assertRaises(ConstructionError):
            PrivateKey.from_str("ed25519:" + tampered)

    def test_function_call_args_are_canonical(self):
        self.assertEqual(self.call.args, b'{"user_op":{"a":2,"b":1}}')

    def test_transaction_layout(self):
        transaction = Transaction(
            "a.near", self.key.public_key(), 7, "c.near", b"\x09" * 32, [self.call]
        )
        data = transaction.to_bytes()
        self.assertEqual(data[:10], b"\x06\x00\x00\x00a.near")
        self.assertEqual(data[10], ED25519_KEY_TYPE)
        self.assertEqual(data[43:51], (7).to_bytes(8, "little"))
        actions = data[51 + 10 + 32 :]
        self.assertEqual(actions[:5], b"\x01\x00\x00\x00\x02")
        self.assertEqual(Transaction.from_bytes(data), transaction)

    def test_signed_transaction(self):
        transaction = Transaction(
            "a.near", self.key.public_key(), 1, "c.near", b"\x00" * 32, [self.call]
        )
        signed = transaction.sign(self.key)
        self.assertTrue(signed.verify())
        self.assertEqual(len(signed.to_bytes()), len(transaction.to_bytes()) + 65)

        der = Deserializer(signed.to_bytes())
        decoded = SignedTransaction.deserialize(der)
        self.assertEqual(decoded.signature, signed.signature)
        self.assertEqual(der.remaining(), 0)
        decoded = SignedTransaction.from_bytes(signed.to_bytes())
        self.assertEqual(decoded.transaction, transaction)

        signed.signature = Signature(b"\x00" * 64)
        self.assertFalse(signed.verify())

    def test_block_hash_length(self):
        with self.assertRaises(ConstructionError):
            Transaction("a", self.key.public_key(), 1, "c", b"\x00", [])

    def test_key_and_signature_encoding(self):
        public_key = self.key.public_key()
        data = public_key.to_bytes()
        self.assertEqual(data, b"\x00" + public_key.key.encode())
        self.assertEqual(PublicKey.from_bytes(data), public_key)

        signature = self.key.sign(b"payload")
        self.assertEqual(Signature.from_bytes(signature.to_bytes()), signature)
        with self.assertRaises(EncodingError):
            Signature.from_bytes(b"\x01" + signature.data())

    def test_function_call_encoding(self):
        data = self.call.to_bytes()
        self.assertEqual(FunctionCall.from_bytes(data), self.call)
        with self.assertRaises(EncodingError):
            FunctionCall.from_bytes(b"\x03" + data[1:])
