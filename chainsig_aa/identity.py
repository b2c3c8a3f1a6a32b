# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Identity and credential model for abstract accounts.

An abstract account is controlled by a set of identities, each one belonging to a
different, mutually untrusted authentication scheme. This module represents every
scheme as a variant wrapped by :class:`Identity`, and the proof produced by each
scheme as a credentials object.

Identity Variants:
    Wallet: Ethereum or Solana wallet public key
    WebAuthn: Passkey credential id and compressed P-256 public key
    OIDC: Issuer, client id and subject or email of a federated identity
    Account: Delegated reference to another account's identity set

JSON Representation:
    Identities use the externally tagged form understood by the authorization
    contract; absent optional fields are written as ``null``::

        {"Wallet": {"wallet_type": "Ethereum", "public_key": "0x02..."}}
        {"WebAuthn": {"key_id": "0x...", "compressed_public_key": null}}
        {"OIDC": {"client_id": "...", "issuer": "...", "email": null, "sub": "..."}}
        {"Account": "alice.testnet"}

    Credentials are untagged::

        {"signature": "0x...", "authenticator_data": "0x...", "client_data": "{...}"}
        {"signature": "0x..."}
        {"token": "eyJ..."}

Examples:
    Building identities::

        wallet = Identity.wallet(WalletType.Ethereum, "0x02a1...")
        passkey = Identity.webauthn("0x9f3c...", "0x03b2...")
        google = Identity.oidc("client-id", "https://accounts.google.com", sub="1234")
        delegated = Identity.account("bob.testnet")

    Granting delegation to an identity::

        entry = IdentityWithPermissions(google, IdentityPermissions(enable_act_as=True))
        entry.to_json()
"""

from __future__ import annotations

import typing
import unittest
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ConstructionError


class WalletType(Enum):
    """Blockchain family of a wallet identity."""

    Ethereum = "Ethereum"
    Solana = "Solana"


class WalletIdentity:
    """A wallet public key: compressed secp256k1 hex for Ethereum, base58 for Solana."""

    wallet_type: WalletType
    public_key: str

    def __init__(self, wallet_type: WalletType, public_key: str):
        self.wallet_type = wallet_type
        self.public_key = public_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WalletIdentity):
            return NotImplemented
        return (
            self.wallet_type == other.wallet_type
            and self.public_key == other.public_key
        )

    def __str__(self) -> str:
        return f"{self.wallet_type.value}({self.public_key})"

    def to_json(self) -> Dict[str, Any]:
        return {"wallet_type": self.wallet_type.value, "public_key": self.public_key}

    @staticmethod
    def from_json(data: Dict[str, Any]) -> WalletIdentity:
        try:
            wallet_type = WalletType(data["wallet_type"])
            return WalletIdentity(wallet_type, data["public_key"])
        except (KeyError, ValueError, TypeError) as e:
            raise ConstructionError(f"Invalid Wallet identity: {data}") from e


class WebAuthnIdentity:
    """
    A passkey identity.

    The compressed public key is only known when the credential is created; assertions
    carry the key id alone, so the key has to be looked up from the account's
    registered identities before a path can be derived.
    """

    key_id: str
    compressed_public_key: Optional[str]

    def __init__(self, key_id: str, compressed_public_key: Optional[str] = None):
        self.key_id = key_id
        self.compressed_public_key = compressed_public_key

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebAuthnIdentity):
            return NotImplemented
        return (
            self.key_id == other.key_id
            and self.compressed_public_key == other.compressed_public_key
        )

    def __str__(self) -> str:
        return f"WebAuthn({self.key_id})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "compressed_public_key": self.compressed_public_key,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> WebAuthnIdentity:
        try:
            return WebAuthnIdentity(data["key_id"], data.get("compressed_public_key"))
        except (KeyError, AttributeError) as e:
            raise ConstructionError(f"Invalid WebAuthn identity: {data}") from e


class OIDCIdentity:
    """A federated identity. At least one of ``email`` and ``sub`` must be set."""

    client_id: str
    issuer: str
    email: Optional[str]
    sub: Optional[str]

    def __init__(
        self,
        client_id: str,
        issuer: str,
        email: Optional[str] = None,
        sub: Optional[str] = None,
    ):
        if not email and not sub:
            raise ConstructionError("OIDC identity requires either email or sub")
        self.client_id = client_id
        self.issuer = issuer
        self.email = email or None
        self.sub = sub or None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OIDCIdentity):
            return NotImplemented
        return (
            self.client_id == other.client_id
            and self.issuer == other.issuer
            and self.email == other.email
            and self.sub == other.sub
        )

    def __str__(self) -> str:
        return f"OIDC({self.issuer}, {self.sub or self.email})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "issuer": self.issuer,
            "email": self.email,
            "sub": self.sub,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> OIDCIdentity:
        try:
            return OIDCIdentity(
                data["client_id"], data["issuer"], data.get("email"), data.get("sub")
            )
        except (KeyError, AttributeError) as e:
            raise ConstructionError(f"Invalid OIDC identity: {data}") from e


class AccountIdentity:
    """Delegated reference to another abstract account."""

    account_id: str

    def __init__(self, account_id: str):
        self.account_id = account_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountIdentity):
            return NotImplemented
        return self.account_id == other.account_id

    def __str__(self) -> str:
        return f"Account({self.account_id})"

    def to_json(self) -> str:
        return self.account_id

    @staticmethod
    def from_json(data: Any) -> AccountIdentity:
        if not isinstance(data, str):
            raise ConstructionError(f"Invalid Account identity: {data}")
        return AccountIdentity(data)


class Identity:
    """
    Tagged identity of any supported authentication scheme.

    The variant is determined from the wrapped identity and cannot change after
    construction.

    Attributes:
        variant (str): One of WALLET, WEBAUTHN, OIDC or ACCOUNT
        identity (typing.Any): The concrete identity
    """

    WALLET: str = "Wallet"
    WEBAUTHN: str = "WebAuthn"
    OIDC: str = "OIDC"
    ACCOUNT: str = "Account"

    variant: str
    identity: typing.Any

    def __init__(self, identity: typing.Any):
        if isinstance(identity, WalletIdentity):
            self.variant = Identity.WALLET
        elif isinstance(identity, WebAuthnIdentity):
            self.variant = Identity.WEBAUTHN
        elif isinstance(identity, OIDCIdentity):
            self.variant = Identity.OIDC
        elif isinstance(identity, AccountIdentity):
            self.variant = Identity.ACCOUNT
        else:
            raise ConstructionError(f"Invalid identity type: {type(identity).__name__}")
        self.identity = identity

    @staticmethod
    def wallet(wallet_type: WalletType, public_key: str) -> Identity:
        return Identity(WalletIdentity(wallet_type, public_key))

    @staticmethod
    def webauthn(key_id: str, compressed_public_key: Optional[str] = None) -> Identity:
        return Identity(WebAuthnIdentity(key_id, compressed_public_key))

    @staticmethod
    def oidc(
        client_id: str,
        issuer: str,
        email: Optional[str] = None,
        sub: Optional[str] = None,
    ) -> Identity:
        return Identity(OIDCIdentity(client_id, issuer, email, sub))

    @staticmethod
    def account(account_id: str) -> Identity:
        return Identity(AccountIdentity(account_id))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Identity):
            return NotImplemented
        return self.variant == other.variant and self.identity == other.identity

    def __repr__(self) -> str:
        return self.__str__()

    def __str__(self) -> str:
        return self.identity.__str__()

    def inject_compressed_public_key(
        self, registered: List[IdentityWithPermissions]
    ) -> Identity:
        """
        Fill in a WebAuthn identity's public key from an account's identities.

        Assertions only reveal the credential id; the key recorded when the passkey was
        added is looked up by ``key_id``. Other variants are returned unchanged.

        :param registered: The identities registered on the account
        :return: A new Identity with the public key set
        :raises ConstructionError: If no registered passkey with this key id has a key
        """
        if self.variant != Identity.WEBAUTHN or self.identity.compressed_public_key:
            return self
        for entry in registered:
            candidate = entry.identity.identity
            if (
                entry.identity.variant == Identity.WEBAUTHN
                and candidate.key_id == self.identity.key_id
                and candidate.compressed_public_key
            ):
                return Identity.webauthn(
                    self.identity.key_id, candidate.compressed_public_key
                )
        raise ConstructionError(
            f"WebAuthn key id {self.identity.key_id} not registered on account"
        )

    def to_json(self) -> Dict[str, Any]:
        return {self.variant: self.identity.to_json()}

    @staticmethod
    def from_json(data: Dict[str, Any]) -> Identity:
        if not isinstance(data, dict) or len(data) != 1:
            raise ConstructionError(f"Invalid identity: {data}")
        ((variant, inner),) = data.items()

        if variant == Identity.WALLET:
            identity: typing.Any = WalletIdentity.from_json(inner)
        elif variant == Identity.WEBAUTHN:
            identity = WebAuthnIdentity.from_json(inner)
        elif variant == Identity.OIDC:
            identity = OIDCIdentity.from_json(inner)
        elif variant == Identity.ACCOUNT:
            identity = AccountIdentity.from_json(inner)
        else:
            raise ConstructionError(f"Invalid identity type: {variant}")

        return Identity(identity)


class IdentityPermissions:
    """Permissions granted to a registered identity."""

    enable_act_as: bool

    def __init__(self, enable_act_as: bool = False):
        self.enable_act_as = enable_act_as

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdentityPermissions):
            return NotImplemented
        return self.enable_act_as == other.enable_act_as

    def __str__(self) -> str:
        return f"IdentityPermissions(enable_act_as={self.enable_act_as})"

    def to_json(self) -> Dict[str, Any]:
        return {"enable_act_as": self.enable_act_as}

    @staticmethod
    def from_json(data: Optional[Dict[str, Any]]) -> Optional[IdentityPermissions]:
        if data is None:
            return None
        try:
            return IdentityPermissions(bool(data["enable_act_as"]))
        except (KeyError, TypeError) as e:
            raise ConstructionError(f"Invalid permissions: {data}") from e


class IdentityWithPermissions:
    """
    An identity as registered on an account.

    ``permissions`` of None means the contract applies its defaults; with
    ``enable_act_as`` the identity may act as another registered identity.
    """

    identity: Identity
    permissions: Optional[IdentityPermissions]

    def __init__(
        self, identity: Identity, permissions: Optional[IdentityPermissions] = None
    ):
        self.identity = identity
        self.permissions = permissions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IdentityWithPermissions):
            return NotImplemented
        return (
            self.identity == other.identity and self.permissions == other.permissions
        )

    def __repr__(self) -> str:
        return f"IdentityWithPermissions({self.identity}, {self.permissions})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "identity": self.identity.to_json(),
            "permissions": self.permissions.to_json() if self.permissions else None,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> IdentityWithPermissions:
        try:
            return IdentityWithPermissions(
                Identity.from_json(data["identity"]),
                IdentityPermissions.from_json(data.get("permissions")),
            )
        except (KeyError, AttributeError) as e:
            raise ConstructionError(f"Invalid identity with permissions: {data}") from e


class WebAuthnCredentials:
    """Assertion produced by a passkey, with the signature in raw r||s form."""

    signature: str
    authenticator_data: str
    client_data: str

    def __init__(self, signature: str, authenticator_data: str, client_data: str):
        self.signature = signature
        self.authenticator_data = authenticator_data
        self.client_data = client_data

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebAuthnCredentials):
            return NotImplemented
        return self.to_json() == other.to_json()

    def to_json(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "authenticator_data": self.authenticator_data,
            "client_data": self.client_data,
        }


class WalletCredentials:
    """Wallet signature: 0x hex for Ethereum, base64 for Solana."""

    signature: str

    def __init__(self, signature: str):
        self.signature = signature

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WalletCredentials):
            return NotImplemented
        return self.signature == other.signature

    def to_json(self) -> Dict[str, Any]:
        return {"signature": self.signature}


class OIDCCredentials:
    token: str

    def __init__(self, token: str):
        self.token = token

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OIDCCredentials):
            return NotImplemented
        return self.token == other.token

    def to_json(self) -> Dict[str, Any]:
        return {"token": self.token}


Credentials = Union[WebAuthnCredentials, WalletCredentials, OIDCCredentials]


def credentials_from_json(data: Dict[str, Any]) -> Credentials:
    """Parse untagged credentials by their distinguishing fields."""
    if not isinstance(data, dict):
        raise ConstructionError(f"Invalid credentials: {data}")
    if "token" in data:
        return OIDCCredentials(data["token"])
    if "authenticator_data" in data:
        try:
            return WebAuthnCredentials(
                data["signature"], data["authenticator_data"], data["client_data"]
            )
        except KeyError as e:
            raise ConstructionError(f"Invalid WebAuthn credentials: {data}") from e
    if "signature" in data:
        return WalletCredentials(data["signature"])
    raise ConstructionError(f"Invalid credentials: {data}")


class Test(unittest.TestCase):
    def test_oidc_requires_email_or_sub(self):
        with self.assertRaises(ConstructionError):
            Identity.oidc("client", "https://issuer")
        with self.assertRaises(ConstructionError):
            OIDCIdentity("client", "https://issuer", None, None)
        by_email = Identity.oidc("client", "https://issuer", email="a@b.c")
        by_sub = Identity.oidc("client", "https://issuer", sub="123")
        self.assertEqual(by_email.identity.sub, None)
        self.assertEqual(by_sub.identity.email, None)

    def test_json_shapes(self):
        self.assertEqual(
            Identity.wallet(WalletType.Solana, "9xQe").to_json(),
            {"Wallet": {"wallet_type": "Solana", "public_key": "9xQe"}},
        )
        self.assertEqual(
            Identity.webauthn("0xab").to_json(),
            {"WebAuthn": {"key_id": "0xab", "compressed_public_key": None}},
        )
        self.assertEqual(
            Identity.oidc("c", "i", sub="s").to_json(),
            {"OIDC": {"client_id": "c", "issuer": "i", "email": None, "sub": "s"}},
        )
        self.assertEqual(Identity.account("bob").to_json(), {"Account": "bob"})

    def test_json_round_trip(self):
        identities = [
            Identity.wallet(WalletType.Ethereum, "0x02" + "11" * 32),
            Identity.webauthn("0xab", "0x03" + "22" * 32),
            Identity.oidc("c", "i", email="e@x.io", sub="s"),
            Identity.account("bob"),
        ]
        for identity in identities:
            self.assertEqual(Identity.from_json(identity.to_json()), identity)

    def test_unknown_variant_rejected(self):
        with self.assertRaises(ConstructionError):
            Identity.from_json({"Passport": {}})
        with self.assertRaises(ConstructionError):
            Identity.from_json(
                {"Wallet": {"wallet_type": "Bitcoin", "public_key": "x"}}
            )
        with self.assertRaises(ConstructionError):
            Identity(object())

    def test_identity_with_permissions(self):
        entry = IdentityWithPermissions(
            Identity.account("bob"), IdentityPermissions(enable_act_as=True)
        )
        self.assertEqual(
            entry.to_json(),
            {"identity": {"Account": "bob"}, "permissions": {"enable_act_as": True}},
        )
        self.assertEqual(IdentityWithPermissions.from_json(entry.to_json()), entry)
        no_permissions = IdentityWithPermissions(Identity.account("bob"))
        self.assertIsNone(no_permissions.to_json()["permissions"])

    def test_credentials_from_json(self):
        self.assertEqual(credentials_from_json({"token": "t"}), OIDCCredentials("t"))
        self.assertEqual(
            credentials_from_json({"signature": "0x01"}), WalletCredentials("0x01")
        )
        webauthn = WebAuthnCredentials("0x01", "0x02", "{}")
        self.assertEqual(credentials_from_json(webauthn.to_json()), webauthn)
        with self.assertRaises(ConstructionError):
            credentials_from_json({"unexpected": 1})

    def test_inject_compressed_public_key(self):
        registered = [
            IdentityWithPermissions(Identity.account("bob")),
            IdentityWithPermissions(Identity.webauthn("0xab", "0x02" + "33" * 32)),
        ]
        asserted = Identity.webauthn("0xab")
        injected = asserted.inject_compressed_public_key(registered)
        self.assertEqual(injected.identity.compressed_public_key, "0x02" + "33" * 32)
        self.assertIsNone(asserted.identity.compressed_public_key)

        with self.assertRaises(ConstructionError):
            Identity.webauthn("0xcd").inject_compressed_public_key(registered)

        account = Identity.account("bob")
        self.assertIs(account.inject_compressed_public_key(registered), account)
