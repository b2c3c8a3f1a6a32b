# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Solana wallet scheme adapter.

Solana wallets sign arbitrary messages with the account's ed25519 key, and the key is
the base58 address, so no recovery is needed. The signature over the UTF-8 canonical
message is returned base64 encoded.
"""

from __future__ import annotations

import base64
import logging
import unittest
from typing import Any, Callable, Dict, List, Mapping, Optional
from unittest import mock

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey
from typing_extensions import Protocol

from .errors import (
    ConnectionFailed,
    ConstructionError,
    EncodingError,
    UserRejected,
    WalletNotAvailable,
)
from .identity import Identity, WalletCredentials, WalletType
from .path import derive_path
from .scheme import AuthResult, require_message

SUPPORTED_WALLETS = ("phantom", "solflare")


class WalletError(Exception):
    """Failure reported by a wallet extension."""


class SolanaWallet(Protocol):
    connected: bool
    public_key: Optional[bytes]

    async def connect(self):
        ...

    async def sign_message(self, message: bytes) -> bytes:
        ...

    def on(self, event: str, callback: Callable[..., None]):
        ...


class SolanaWalletAdapter:
    """
    Scheme adapter for one Solana wallet brand.

    ``wallets`` maps a brand name to the extension injected by the platform; a brand
    missing from it is not installed.
    """

    wallet_type: str
    _installed: Mapping[str, SolanaWallet]
    _wallet: Optional[SolanaWallet]
    _listening: bool

    def __init__(
        self, wallets: Mapping[str, SolanaWallet], wallet_type: str = "phantom"
    ):
        if wallet_type not in SUPPORTED_WALLETS:
            raise ConstructionError(f"Unsupported Solana wallet: {wallet_type}")
        self.wallet_type = wallet_type
        self._installed = wallets
        self._wallet = None
        self._listening = False

    async def get_identity(self) -> Identity:
        wallet = await self._connect()
        return self._identity(wallet)

    async def sign(self, canonical_message: str) -> AuthResult:
        message = require_message(canonical_message).encode("utf-8")
        wallet = await self._connect()
        identity = self._identity(wallet)
        try:
            signature = await wallet.sign_message(message)
        except WalletError as e:
            raise UserRejected(f"{self.wallet_type} did not sign: {e}") from e
        return AuthResult(
            identity, WalletCredentials(base64.b64encode(signature).decode())
        )

    async def _connect(self) -> SolanaWallet:
        if self._wallet is not None:
            return self._wallet

        wallet = self._installed.get(self.wallet_type)
        if wallet is None:
            raise WalletNotAvailable(f"{self.wallet_type} wallet is not installed")
        if not wallet.connected:
            try:
                await wallet.connect()
            except WalletError as e:
                raise ConnectionFailed(
                    f"Failed to connect to {self.wallet_type}: {e}"
                ) from e
        if not self._listening:
            wallet.on("disconnect", self._on_disconnect)
            self._listening = True
        self._wallet = wallet
        logging.debug(f"Connected to {self.wallet_type}")
        return wallet

    def _identity(self, wallet: SolanaWallet) -> Identity:
        if not wallet.public_key:
            raise ConnectionFailed(f"{self.wallet_type} is not connected")
        return Identity.wallet(
            WalletType.Solana, base58.b58encode(wallet.public_key).decode()
        )

    def _on_disconnect(self, *args: Any):
        if self._wallet is not None:
            logging.warning(f"{self.wallet_type} disconnected, dropping wallet handle")
        self._wallet = None


class FakeSolanaWallet:
    """Wallet extension holding an ed25519 keypair."""

    def __init__(self):
        self.signing_key = SigningKey.generate()
        self.connected = False
        self.public_key: Optional[bytes] = None
        self.connect_error: Optional[WalletError] = None
        self.sign_error: Optional[WalletError] = None
        self.connects = 0
        self.listeners: Dict[str, List[Callable[..., None]]] = {}

    async def connect(self):
        self.connects += 1
        if self.connect_error:
            raise self.connect_error
        self.connected = True
        self.public_key = bytes(self.signing_key.verify_key)

    async def sign_message(self, message: bytes) -> bytes:
        if self.sign_error:
            raise self.sign_error
        return self.signing_key.sign(message).signature

    def on(self, event: str, callback: Callable[..., None]):
        self.listeners.setdefault(event, []).append(callback)

    def disconnect(self):
        self.connected = False
        self.public_key = None
        for callback in self.listeners.get("disconnect", []):
            callback()


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.wallet = FakeSolanaWallet()
        self.adapter = SolanaWalletAdapter({"phantom": self.wallet}, "phantom")

    async def test_identity_is_base58_key(self):
        identity = await self.adapter.get_identity()
        address = base58.b58encode(bytes(self.wallet.signing_key.verify_key)).decode()
        self.assertEqual(identity.identity.wallet_type, WalletType.Solana)
        self.assertEqual(identity.identity.public_key, address)
        self.assertEqual(derive_path(identity), f"wallet/{address}")

    async def test_signature_verifies(self):
        message = '{"account_id":"alice","action":"RemoveAccount","nonce":1}'
        result = await self.adapter.sign(message)
        signature = base64.b64decode(result.credentials.signature)
        self.assertEqual(len(signature), 64)
        verify_key = VerifyKey(base58.b58decode(result.identity.identity.public_key))
        verify_key.verify(message.encode(), signature)
        with self.assertRaises(BadSignatureError):
            verify_key.verify(b"other", signature)

    async def test_connection_cached_until_disconnect(self):
        await self.adapter.get_identity()
        await self.adapter.sign("{}")
        self.assertEqual(self.wallet.connects, 1)
        self.wallet.disconnect()
        await self.adapter.sign("{}")
        self.assertEqual(self.wallet.connects, 2)

    async def test_disconnect_listener_registered_once(self):
        for _ in range(5):
            await self.adapter.sign("{}")
            self.wallet.disconnect()
        self.assertEqual(len(self.wallet.listeners["disconnect"]), 1)
        self.assertEqual(self.wallet.connects, 5)

    async def test_disconnect_without_handle_is_silent(self):
        with mock.patch("logging.warning") as warning:
            self.adapter._on_disconnect()
            warning.assert_not_called()
            await self.adapter.get_identity()
            self.wallet.disconnect()
            warning.assert_called_once()

    async def test_errors(self):
        with self.assertRaises(WalletNotAvailable):
            await SolanaWalletAdapter({}, "solflare").get_identity()
        with self.assertRaises(ConstructionError):
            SolanaWalletAdapter({}, "backpack")
        with self.assertRaises(EncodingError):
            await self.adapter.sign("")

        self.wallet.connect_error = WalletError("rejected")
        with self.assertRaises(ConnectionFailed):
            await self.adapter.get_identity()

        self.wallet.connect_error = None
        self.wallet.sign_error = WalletError("declined")
        with self.assertRaises(UserRejected):
            await self.adapter.sign("{}")
