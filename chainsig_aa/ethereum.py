# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Ethereum wallet scheme adapter.

Ethereum wallets do not expose public keys, so the adapter recovers the key from a
``personal_sign`` signature (EIP-191) and compresses it. ``get_identity`` signs a
fixed prompt for that purpose; ``sign`` recovers the key from the signature over the
canonical message itself, so both always agree for the same signer.

The wallet is reached through an injected EIP-1193 provider. The account handle
returned by ``eth_requestAccounts`` is cached on the adapter instance and dropped
when the provider disconnects.
"""

from __future__ import annotations

import logging
import os
import unittest
from typing import Any, Callable, Dict, List, Optional

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_checksum_address
from typing_extensions import Protocol

from .errors import (
    ConnectionFailed,
    EncodingError,
    InvalidPublicKey,
    ProviderUnavailable,
    UserRejected,
)
from .identity import Identity, WalletCredentials, WalletType
from .path import derive_path, ethereum_address
from .scheme import AuthResult, require_message

IDENTITY_PROMPT = "Get public key"
PERSONAL_MESSAGE_PREFIX = b"\x19Ethereum Signed Message:\n"

USER_REJECTED_REQUEST = 4001
DISCONNECTED = 4900
CHAIN_DISCONNECTED = 4901


class ProviderRpcError(Exception):
    """An EIP-1193 provider error."""

    code: int

    def __init__(self, code: int, message: str = ""):
        # Call the base class constructor with the parameters it needs
        super().__init__(message or f"Provider error {code}")
        self.code = code


class EthereumProvider(Protocol):
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        ...

    def on(self, event: str, callback: Callable[..., None]):
        ...


def personal_message_hash(message: bytes) -> bytes:
    """EIP-191 version 0x45 hash, as signed by ``personal_sign``."""
    return keccak(PERSONAL_MESSAGE_PREFIX + str(len(message)).encode() + message)


def recover_compressed_public_key(message: bytes, signature: str) -> bytes:
    """
    Recover the signer's compressed secp256k1 key from a personal_sign signature.

    :param message: The exact bytes that were signed
    :param signature: 65 byte r||s||v hex, v either 0/1 or 27/28
    :raises InvalidPublicKey: If no key can be recovered
    """
    stripped = signature[2:] if signature.startswith("0x") else signature
    try:
        raw = bytes.fromhex(stripped)
    except ValueError as e:
        raise InvalidPublicKey("Signature is not hex encoded") from e
    if len(raw) != 65:
        raise InvalidPublicKey(f"Signature must be 65 bytes, got {len(raw)}")

    v = raw[64] - 27 if raw[64] >= 27 else raw[64]
    try:
        recoverable = keys.Signature(signature_bytes=raw[:64] + bytes([v]))
        public_key = recoverable.recover_public_key_from_msg_hash(
            personal_message_hash(message)
        )
    except (BadSignature, ValidationError) as e:
        raise InvalidPublicKey(f"Cannot recover public key: {e}") from e
    return public_key.to_compressed_bytes()


class EthereumWalletAdapter:
    """Scheme adapter for one injected Ethereum wallet."""

    provider: Optional[EthereumProvider]
    wallet: str
    _account: Optional[str]
    _listening: bool

    def __init__(self, provider: Optional[EthereumProvider], wallet: str = "metamask"):
        self.provider = provider
        self.wallet = wallet
        self._account = None
        self._listening = False

    async def get_identity(
        self, signature: Optional[str] = None, message: Optional[str] = None
    ) -> Identity:
        """
        Identity of the connected wallet.

        When a signature and the message it covers are given, the key is recovered from
        them without contacting the wallet.
        """
        if signature is None or message is None:
            message = IDENTITY_PROMPT
            signature = await self._personal_sign(message.encode("utf-8"))
        return self._identity(message.encode("utf-8"), signature)

    async def sign(self, canonical_message: str) -> AuthResult:
        message = require_message(canonical_message).encode("utf-8")
        signature = await self._personal_sign(message)
        return AuthResult(
            self._identity(message, signature), WalletCredentials(signature)
        )

    async def address(self) -> str:
        """Connected account, requesting access on first use."""
        if self._account is not None:
            return self._account
        provider = self._provider()

        accounts = await self._request(provider, "eth_requestAccounts")
        if not accounts:
            raise ProviderUnavailable(f"{self.wallet} exposed no accounts")
        self._account = to_checksum_address(accounts[0])
        if not self._listening:
            provider.on("disconnect", self._on_disconnect)
            provider.on("accountsChanged", self._on_accounts_changed)
            self._listening = True
        logging.debug(f"Connected to {self.wallet} account {self._account}")
        return self._account

    async def _personal_sign(self, message: bytes) -> str:
        account = await self.address()
        signature = await self._request(
            self._provider(), "personal_sign", ["0x" + message.hex(), account]
        )
        return signature if signature.startswith("0x") else "0x" + signature

    async def _request(
        self,
        provider: EthereumProvider,
        method: str,
        params: Optional[List[Any]] = None,
    ) -> Any:
        try:
            return await provider.request(method, params)
        except ProviderRpcError as e:
            if e.code == USER_REJECTED_REQUEST:
                raise UserRejected(f"{self.wallet} request was rejected") from e
            if e.code in (DISCONNECTED, CHAIN_DISCONNECTED):
                self._on_disconnect(e)
                raise ConnectionFailed(f"{self.wallet} is disconnected") from e
            raise

    def _provider(self) -> EthereumProvider:
        if self.provider is None:
            raise ProviderUnavailable(
                "Ethereum provider not found, install a wallet and try again"
            )
        return self.provider

    def _identity(self, message: bytes, signature: str) -> Identity:
        public_key = recover_compressed_public_key(message, signature)
        return Identity.wallet(WalletType.Ethereum, "0x" + public_key.hex())

    def _on_disconnect(self, *args: Any):
        if self._account is not None:
            logging.warning(f"{self.wallet} disconnected, dropping account handle")
        self._account = None

    def _on_accounts_changed(self, accounts: List[str]):
        self._account = to_checksum_address(accounts[0]) if accounts else None


class FakeEthereumProvider:
    """EIP-1193 provider holding one secp256k1 key."""

    def __init__(self):
        self.private_key = keys.PrivateKey(os.urandom(32))
        self.listeners: Dict[str, List[Callable[..., None]]] = {}
        self.error: Optional[ProviderRpcError] = None
        self.requests: List[str] = []

    @property
    def address(self) -> str:
        return self.private_key.public_key.to_checksum_address()

    def on(self, event: str, callback: Callable[..., None]):
        self.listeners.setdefault(event, []).append(callback)

    def emit(self, event: str, *args: Any):
        for callback in self.listeners.get(event, []):
            callback(*args)

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self.requests.append(method)
        if self.error:
            raise self.error
        if method == "eth_requestAccounts":
            return [self.address.lower()]
        if method == "personal_sign":
            if not params:
                raise ProviderRpcError(-32602, "personal_sign requires a message")
            message = bytes.fromhex(params[0][2:])
            signature = self.private_key.sign_msg_hash(personal_message_hash(message))
            r, s, v = signature.r, signature.s, signature.v + 27
            return "0x" + (
                r.to_bytes(32, "big") + s.to_bytes(32, "big") + bytes([v])
            ).hex()
        raise ProviderRpcError(4200, f"Unsupported method {method}")


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.provider = FakeEthereumProvider()
        self.adapter = EthereumWalletAdapter(self.provider)

    async def test_identity_is_compressed_recovered_key(self):
        identity = await self.adapter.get_identity()
        expected = self.provider.private_key.public_key.to_compressed_bytes()
        self.assertEqual(identity.identity.wallet_type, WalletType.Ethereum)
        self.assertEqual(identity.identity.public_key, "0x" + expected.hex())

        path = derive_path(identity)
        address = ethereum_address(identity.identity.public_key)
        self.assertEqual(path, f"wallet/{address}")
        result = await self.adapter.sign("{}")
        self.assertEqual(derive_path(result.identity), path)
        self.assertEqual(derive_path(await self.adapter.get_identity()), path)

    async def test_sign_and_get_identity_agree(self):
        message = '{"account_id":"alice","action":"RemoveAccount","nonce":1}'
        result = await self.adapter.sign(message)
        self.assertEqual(result.identity, await self.adapter.get_identity())
        self.assertEqual(len(bytes.fromhex(result.credentials.signature[2:])), 65)

        recovered = await self.adapter.get_identity(
            result.credentials.signature, message
        )
        self.assertEqual(recovered, result.identity)

    async def test_account_handle_cached_until_disconnect(self):
        await self.adapter.sign("{}")
        await self.adapter.sign("{}")
        self.assertEqual(self.provider.requests.count("eth_requestAccounts"), 1)

        self.provider.emit("disconnect", ProviderRpcError(DISCONNECTED))
        await self.adapter.sign("{}")
        self.assertEqual(self.provider.requests.count("eth_requestAccounts"), 2)

    async def test_error_mapping(self):
        with self.assertRaises(ProviderUnavailable):
            await EthereumWalletAdapter(None).get_identity()
        with self.assertRaises(EncodingError):
            await self.adapter.sign("")

        self.provider.error = ProviderRpcError(USER_REJECTED_REQUEST)
        with self.assertRaises(UserRejected):
            await self.adapter.sign("{}")

        self.provider.error = ProviderRpcError(DISCONNECTED)
        with self.assertRaises(ConnectionFailed):
            await self.adapter.sign("{}")

    async def test_fake_provider_rejects_missing_message(self):
        with self.assertRaises(ProviderRpcError) as context:
            await self.provider.request("personal_sign")
        self.assertEqual(context.exception.code, -32602)

    def test_recover_rejects_malformed_signatures(self):
        with self.assertRaises(InvalidPublicKey):
            recover_compressed_public_key(b"m", "0x1234")
        with self.assertRaises(InvalidPublicKey):
            recover_compressed_public_key(b"m", "0x" + "zz" * 65)
