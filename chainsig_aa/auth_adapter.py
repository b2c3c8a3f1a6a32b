# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Single entry point over every authentication scheme.

An :class:`AuthConfig` selects the scheme and carries its parameters; the
:class:`AuthAdapter` instance owns the platform handles (credential store, injected
wallets) and keeps one scheme adapter per configuration, so wallet connections are
reused across calls of the same session and never shared between sessions.

Adding a scheme means adding one config variant, one scheme adapter and one branch in
``AuthAdapter._create``.

Examples:
    Registering a passkey then signing a transaction with it::

        adapter = AuthAdapter(credentials=navigator_credentials, rp_id="example.com")
        config = AuthConfig(WebAuthnConfig(username="alice"))

        identity = await adapter.get_identity(config)
        transaction = OperationBuilder("alice.testnet", 0).add_identity(identity)
        result = await adapter.sign(transaction, config)
"""

from __future__ import annotations

import asyncio
import base64
import typing
import unittest
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import base58
from nacl.signing import VerifyKey

from . import canonical
from .errors import (
    AbstractAccountError,
    ConstructionError,
    EncodingError,
    MissingToken,
    ProviderUnavailable,
    WalletNotAvailable,
)
from .ethereum import EthereumProvider, EthereumWalletAdapter, FakeEthereumProvider
from .identity import (
    Identity,
    IdentityPermissions,
    IdentityWithPermissions,
)
from .operations import OperationBuilder, default_permissions
from .scheme import AuthResult, SchemeAdapter
from .solana import FakeSolanaWallet, SolanaWallet, SolanaWalletAdapter
from .webauthn import CredentialsContainer, FakeAuthenticator, WebAuthnAdapter
from .oidc import OIDCAdapter

ETHEREUM = "ethereum"
SOLANA = "solana"


@dataclass
class WalletConfig:
    chain: str
    wallet: str

    def __post_init__(self):
        if self.chain not in (ETHEREUM, SOLANA):
            raise ConstructionError(f"Unsupported wallet chain: {self.chain}")


@dataclass
class WebAuthnConfig:
    username: str
    operation: str = "create"


@dataclass
class OIDCConfig:
    client_id: str
    issuer: str
    email: Optional[str] = None
    sub: Optional[str] = None
    token: Optional[str] = None


class AuthConfig:
    """
    Tagged scheme configuration.

    Attributes:
        type (str): One of WALLET, WEBAUTHN or OIDC
        config (typing.Any): The scheme specific configuration
    """

    WALLET: str = "wallet"
    WEBAUTHN: str = "webauthn"
    OIDC: str = "oidc"

    type: str
    config: typing.Any

    def __init__(self, config: typing.Any):
        if isinstance(config, WalletConfig):
            self.type = AuthConfig.WALLET
        elif isinstance(config, WebAuthnConfig):
            self.type = AuthConfig.WEBAUTHN
        elif isinstance(config, OIDCConfig):
            self.type = AuthConfig.OIDC
        else:
            raise ConstructionError(f"Invalid auth config: {type(config).__name__}")
        self.config = config

    def __str__(self) -> str:
        return f"AuthConfig({self.type})"

    def key(self) -> Tuple[str, ...]:
        if self.type == AuthConfig.WALLET:
            return (self.type, self.config.chain, self.config.wallet)
        if self.type == AuthConfig.WEBAUTHN:
            return (self.type, self.config.username)
        return (self.type, self.config.issuer, self.config.client_id)


class AuthAdapter:
    """Dispatches identity and signing requests to the configured scheme."""

    credentials: Optional[CredentialsContainer]
    rp_id: str
    ethereum_providers: Mapping[str, EthereumProvider]
    solana_wallets: Mapping[str, SolanaWallet]
    _adapters: Dict[Tuple[str, ...], Any]

    def __init__(
        self,
        credentials: Optional[CredentialsContainer] = None,
        rp_id: str = "localhost",
        ethereum_providers: Optional[Mapping[str, EthereumProvider]] = None,
        solana_wallets: Optional[Mapping[str, SolanaWallet]] = None,
    ):
        self.credentials = credentials
        self.rp_id = rp_id
        self.ethereum_providers = ethereum_providers or {}
        self.solana_wallets = solana_wallets or {}
        self._adapters = {}

    async def get_identity(self, config: AuthConfig) -> Identity:
        try:
            if config.type == AuthConfig.WEBAUTHN:
                adapter = self.adapter(config)
                return await adapter.get_identity(config.config.operation)
            return await self.adapter(config).get_identity()
        except AbstractAccountError as e:
            e.scheme = config.type
            raise

    async def get_identity_with_permissions(
        self, config: AuthConfig, permissions: Optional[IdentityPermissions] = None
    ) -> IdentityWithPermissions:
        identity = await self.get_identity(config)
        return IdentityWithPermissions(identity, permissions or default_permissions())

    async def sign(self, message: typing.Any, config: AuthConfig) -> AuthResult:
        """
        Sign a message with the configured scheme.

        :param message: A canonical JSON string, or any value the canonical encoder
            accepts (Transaction, dict, ...), which is encoded first
        :raises EncodingError: If the message is empty or cannot be encoded
        """
        try:
            if message is None or message == "":
                raise EncodingError("Failed to canonicalize message")
            if isinstance(message, str):
                canonical_message = message
            else:
                canonical_message = canonical.encode(message)
            return await self.adapter(config).sign(canonical_message)
        except AbstractAccountError as e:
            e.scheme = config.type
            raise

    def adapter(self, config: AuthConfig) -> SchemeAdapter:
        """Scheme adapter for ``config``, created on first use."""
        if config.type == AuthConfig.OIDC:
            # Claims and token change between logins.
            return self._create(config)
        key = config.key()
        if key not in self._adapters:
            self._adapters[key] = self._create(config)
        return self._adapters[key]

    def _create(self, config: AuthConfig) -> Any:
        scheme = config.config
        if config.type == AuthConfig.WALLET:
            if scheme.chain == ETHEREUM:
                provider = self.ethereum_providers.get(scheme.wallet)
                return EthereumWalletAdapter(provider, scheme.wallet)
            return SolanaWalletAdapter(self.solana_wallets, scheme.wallet)
        elif config.type == AuthConfig.WEBAUTHN:
            return WebAuthnAdapter(self.credentials, self.rp_id, scheme.username)
        elif config.type == AuthConfig.OIDC:
            return OIDCAdapter(
                scheme.client_id, scheme.issuer, scheme.email, scheme.sub, scheme.token
            )
        raise ConstructionError(f"Invalid auth config: {config.type}")


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.authenticator = FakeAuthenticator()
        self.ethereum = FakeEthereumProvider()
        self.solana = FakeSolanaWallet()
        self.adapter = AuthAdapter(
            credentials=self.authenticator,
            rp_id="wallet.example.com",
            ethereum_providers={"metamask": self.ethereum},
            solana_wallets={"phantom": self.solana},
        )
        self.configs = [
            AuthConfig(WalletConfig(ETHEREUM, "metamask")),
            AuthConfig(WalletConfig(SOLANA, "phantom")),
            AuthConfig(WebAuthnConfig("alice")),
            AuthConfig(OIDCConfig("client", "https://issuer", sub="42", token="t")),
        ]

    async def test_every_scheme_rejects_empty_message(self):
        for config in self.configs:
            with self.assertRaises(EncodingError) as context:
                await self.adapter.sign("", config)
            self.assertEqual(context.exception.scheme, config.type)
            with self.assertRaises(EncodingError):
                await self.adapter.sign(None, config)

    async def test_identity_per_scheme(self):
        variants = []
        for config in self.configs:
            variants.append((await self.adapter.get_identity(config)).variant)
        self.assertEqual(
            variants,
            [Identity.WALLET, Identity.WALLET, Identity.WEBAUTHN, Identity.OIDC],
        )

    async def test_sign_transaction_encodes_canonically(self):
        transaction = OperationBuilder("alice", 3).remove_account()
        config = AuthConfig(WalletConfig(SOLANA, "phantom"))
        result = await self.adapter.sign(transaction, config)
        verify_key = VerifyKey(base58.b58decode(result.identity.identity.public_key))
        verify_key.verify(
            canonical.encode_bytes(transaction),
            base64.b64decode(result.credentials.signature),
        )

    async def test_identity_with_permissions(self):
        config = self.configs[3]
        entry = await self.adapter.get_identity_with_permissions(config)
        self.assertFalse(entry.permissions.enable_act_as)
        delegated = await self.adapter.get_identity_with_permissions(
            config, IdentityPermissions(enable_act_as=True)
        )
        self.assertTrue(delegated.permissions.enable_act_as)

    async def test_errors_carry_scheme(self):
        adapter = AuthAdapter()
        cases = [
            (AuthConfig(WalletConfig(ETHEREUM, "okx")), ProviderUnavailable),
            (AuthConfig(WalletConfig(SOLANA, "solflare")), WalletNotAvailable),
            (
                AuthConfig(OIDCConfig("client", "https://issuer", sub="42")),
                MissingToken,
            ),
        ]
        for config, error in cases:
            with self.assertRaises(error) as context:
                await adapter.sign("{}", config)
            self.assertEqual(context.exception.scheme, config.type)

    async def test_adapters_cached_per_instance(self):
        config = self.configs[1]
        self.assertIs(self.adapter.adapter(config), self.adapter.adapter(config))
        other = AuthAdapter(solana_wallets={"phantom": self.solana})
        self.assertIsNot(self.adapter.adapter(config), other.adapter(config))

        await self.adapter.sign("{}", config)
        await self.adapter.sign("{}", config)
        self.assertEqual(self.solana.connects, 1)

    async def test_concurrent_schemes_are_independent(self):
        transaction = OperationBuilder("alice", 1).remove_account()
        results = await asyncio.gather(
            self.adapter.sign(transaction, self.configs[0]),
            self.adapter.sign(transaction, self.configs[1]),
        )
        self.assertNotEqual(results[0].identity, results[1].identity)

    def test_invalid_configs(self):
        with self.assertRaises(ConstructionError):
            WalletConfig("bitcoin", "electrum")
        with self.assertRaises(ConstructionError):
            AuthConfig({"type": "wallet"})
