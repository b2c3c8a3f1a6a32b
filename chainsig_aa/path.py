# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Identity path derivation.

A path is a namespaced string derived from an identity. The authorization contract
uses it as the key-derivation input for chain signatures, so clients predicting a
derived address and the contract verifying it must produce exactly the same string.

Derivation Rules:
    Wallet (Ethereum): ``wallet/<0x address>`` where the address is the last 20 bytes
        of keccak-256 over the public key without its format byte
    Wallet (Solana): ``wallet/<base58 public key>``
    WebAuthn: ``webauthn/<compressed public key>``
    OIDC: ``oidc/<issuer>/<client_id>/<sub or email>``, preferring ``sub``
    Account: ``account/<account_id>``

Examples:
    Predicting the path of a registered wallet::

        identity = Identity.wallet(WalletType.Ethereum, "0x02...")
        path = derive_path(identity)  # "wallet/0x..."

    Passkey assertions only carry the credential id; fill in the key first::

        identity = assertion_identity.inject_compressed_public_key(account.identities)
        path = derive_path(identity)
"""

from __future__ import annotations

import unittest

from eth_utils import is_address, keccak

from .errors import InvalidPublicKey, MissingIdentifier
from .identity import (
    AccountIdentity,
    Identity,
    OIDCIdentity,
    WalletIdentity,
    WalletType,
    WebAuthnIdentity,
)

COMPRESSED_KEY_LENGTH = 33
UNCOMPRESSED_KEY_LENGTH = 65


def derive_path(identity: Identity) -> str:
    """
    Map an identity to its namespaced path.

    :param identity: The identity to derive from
    :return: The path string
    :raises InvalidPublicKey: If an Ethereum key is not 33 or 65 hex encoded bytes
    :raises MissingIdentifier: If a WebAuthn key or an OIDC subject is absent
    """
    inner = identity.identity
    if identity.variant == Identity.WALLET:
        return _wallet_path(inner)
    elif identity.variant == Identity.WEBAUTHN:
        return _webauthn_path(inner)
    elif identity.variant == Identity.OIDC:
        return _oidc_path(inner)
    elif identity.variant == Identity.ACCOUNT:
        return _account_path(inner)
    raise MissingIdentifier(f"No path defined for identity {identity.variant}")


def ethereum_address(public_key: str) -> str:
    """
    Address of a secp256k1 public key in either SEC1 form.

    The first byte is dropped regardless of form. For an uncompressed key this leaves
    the 64 byte X||Y, which is the standard Ethereum address preimage.
    """
    stripped = public_key[2:] if public_key[:2].lower() == "0x" else public_key
    try:
        key_bytes = bytes.fromhex(stripped)
    except ValueError as e:
        raise InvalidPublicKey(f"Public key is not hex encoded: {public_key}") from e

    if len(key_bytes) not in (COMPRESSED_KEY_LENGTH, UNCOMPRESSED_KEY_LENGTH):
        raise InvalidPublicKey(
            f"Public key must be {COMPRESSED_KEY_LENGTH} or {UNCOMPRESSED_KEY_LENGTH} "
            f"bytes, got {len(key_bytes)}"
        )

    address = "0x" + keccak(key_bytes[1:])[-20:].hex()
    if not is_address(address):
        raise InvalidPublicKey(f"Derived address {address} is not valid")
    return address


def _wallet_path(identity: WalletIdentity) -> str:
    if identity.wallet_type == WalletType.Ethereum:
        return f"wallet/{ethereum_address(identity.public_key)}"
    return f"wallet/{identity.public_key}"


def _webauthn_path(identity: WebAuthnIdentity) -> str:
    if not identity.compressed_public_key:
        raise MissingIdentifier(
            f"WebAuthn identity {identity.key_id} has no compressed public key"
        )
    return f"webauthn/{identity.compressed_public_key}"


def _oidc_path(identity: OIDCIdentity) -> str:
    subject = identity.sub or identity.email
    if not subject:
        raise MissingIdentifier("OIDC identity requires either email or sub")
    return f"oidc/{identity.issuer}/{identity.client_id}/{subject}"


def _account_path(identity: AccountIdentity) -> str:
    return f"account/{identity.account_id}"


class Test(unittest.TestCase):
    # secp256k1 generator point
    UNCOMPRESSED = (
        "0x04"
        "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
    )
    COMPRESSED = "0x0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"

    def test_ethereum_uncompressed(self):
        identity = Identity.wallet(WalletType.Ethereum, self.UNCOMPRESSED)
        path = derive_path(identity)
        # Address of private key 1
        self.assertEqual(path, "wallet/0x7e5f4552091a69125d5dfcb7b8c2659029395bdf")
        self.assertTrue(is_address(path[len("wallet/"):]))
        self.assertEqual(derive_path(identity), path)

    def test_ethereum_without_prefix(self):
        with_prefix = Identity.wallet(WalletType.Ethereum, self.UNCOMPRESSED)
        without_prefix = Identity.wallet(WalletType.Ethereum, self.UNCOMPRESSED[2:])
        self.assertEqual(derive_path(with_prefix), derive_path(without_prefix))

    def test_ethereum_compressed_is_deterministic(self):
        identity = Identity.wallet(WalletType.Ethereum, self.COMPRESSED)
        path = derive_path(identity)
        self.assertEqual(path, derive_path(identity))
        self.assertTrue(path.startswith("wallet/0x"))
        self.assertEqual(len(path), len("wallet/0x") + 40)
        self.assertEqual(path, path.lower())

    def test_ethereum_invalid_keys(self):
        for key in ("0x", "0x" + "04" * 64, "0xzz" + "00" * 32, "0x" + "02" * 34):
            with self.assertRaises(InvalidPublicKey):
                derive_path(Identity.wallet(WalletType.Ethereum, key))

    def test_solana_verbatim(self):
        key = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
        identity = Identity.wallet(WalletType.Solana, key)
        self.assertEqual(derive_path(identity), f"wallet/{key}")

    def test_webauthn(self):
        identity = Identity.webauthn("0xab", "0x03" + "11" * 32)
        self.assertEqual(derive_path(identity), "webauthn/0x03" + "11" * 32)
        with self.assertRaises(MissingIdentifier):
            derive_path(Identity.webauthn("0xab"))

    def test_oidc_prefers_sub(self):
        both = Identity.oidc("client", "https://issuer", email="a@b.c", sub="42")
        email_only = Identity.oidc("client", "https://issuer", email="a@b.c")
        self.assertEqual(derive_path(both), "oidc/https://issuer/client/42")
        self.assertEqual(derive_path(email_only), "oidc/https://issuer/client/a@b.c")

    def test_account(self):
        self.assertEqual(
            derive_path(Identity.account("bob.testnet")), "account/bob.testnet"
        )
