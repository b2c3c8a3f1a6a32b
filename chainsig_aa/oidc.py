# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
OIDC scheme adapter.

An ID token obtained from the identity provider is itself the credential: the
canonical message is passed to the provider as the login ``nonce`` (see
:mod:`chainsig_aa.oauth`), and the contract checks the token's signature and nonce.
The adapter performs no cryptography and treats all claims as untrusted until the
contract accepts the operation.
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from .errors import ConstructionError, EncodingError, MissingToken
from .identity import Identity, OIDCCredentials
from .scheme import AuthResult, require_message


@dataclass
class IdentityClaims:
    issuer: str
    client_id: str
    sub: Optional[str] = None
    email: Optional[str] = None
    nonce: Optional[str] = None


def claims_from_id_token(token: str) -> IdentityClaims:
    """
    Read the identity claims of an ID token without verifying it.

    :raises ConstructionError: If the token is not a JWT or lacks ``iss``/``aud``
    """
    try:
        claims: Dict[str, Any] = jwt.decode(
            token, options={"verify_signature": False}
        )
    except jwt.DecodeError as e:
        raise ConstructionError(f"Malformed ID token: {e}") from e

    audience = claims.get("aud")
    if isinstance(audience, list):
        audience = audience[0] if audience else None
    if not claims.get("iss") or not audience:
        raise ConstructionError("ID token lacks issuer or audience")
    return IdentityClaims(
        issuer=claims["iss"],
        client_id=audience,
        sub=claims.get("sub"),
        email=claims.get("email"),
        nonce=claims.get("nonce"),
    )


class OIDCAdapter:
    """Scheme adapter over caller supplied OIDC claims and token."""

    client_id: str
    issuer: str
    email: Optional[str]
    sub: Optional[str]
    token: Optional[str]

    def __init__(
        self,
        client_id: str,
        issuer: str,
        email: Optional[str] = None,
        sub: Optional[str] = None,
        token: Optional[str] = None,
    ):
        self.client_id = client_id
        self.issuer = issuer
        self.email = email
        self.sub = sub
        self.token = token

    @staticmethod
    def from_id_token(token: str) -> OIDCAdapter:
        claims = claims_from_id_token(token)
        return OIDCAdapter(
            claims.client_id, claims.issuer, claims.email, claims.sub, token
        )

    async def get_identity(self) -> Identity:
        return Identity.oidc(self.client_id, self.issuer, self.email, self.sub)

    async def sign(self, canonical_message: str) -> AuthResult:
        require_message(canonical_message)
        if not self.token:
            raise MissingToken("An ID token is required to sign with OIDC")
        return AuthResult(await self.get_identity(), OIDCCredentials(self.token))


class Test(unittest.IsolatedAsyncioTestCase):
    ISSUER = "https://accounts.google.com"
    SECRET = "test-signing-secret-of-32-bytes!"

    def _token(self, **claims: Any) -> str:
        return jwt.encode(claims, self.SECRET, algorithm="HS256")

    async def test_identity_from_claims(self):
        adapter = OIDCAdapter("client", self.ISSUER, email="a@b.c")
        identity = await adapter.get_identity()
        self.assertEqual(
            identity.to_json(),
            {
                "OIDC": {
                    "client_id": "client",
                    "issuer": self.ISSUER,
                    "email": "a@b.c",
                    "sub": None,
                }
            },
        )

    async def test_sign_returns_token_unchanged(self):
        token = self._token(iss=self.ISSUER, aud="client", sub="42")
        adapter = OIDCAdapter("client", self.ISSUER, sub="42", token=token)
        result = await adapter.sign('{"nonce":1}')
        self.assertEqual(result.credentials, OIDCCredentials(token))
        self.assertEqual(result.identity, await adapter.get_identity())

    async def test_sign_errors(self):
        adapter = OIDCAdapter("client", self.ISSUER, sub="42")
        with self.assertRaises(MissingToken):
            await adapter.sign("{}")
        adapter.token = "token"
        with self.assertRaises(EncodingError):
            await adapter.sign("")

    async def test_identity_requires_email_or_sub(self):
        with self.assertRaises(ConstructionError):
            await OIDCAdapter("client", self.ISSUER).get_identity()

    async def test_from_id_token(self):
        token = self._token(
            iss=self.ISSUER, aud=["client"], sub="42", email="a@b.c", nonce="{}"
        )
        adapter = OIDCAdapter.from_id_token(token)
        self.assertEqual(adapter.client_id, "client")
        self.assertEqual(adapter.token, token)
        identity = await adapter.get_identity()
        self.assertEqual(identity.identity.sub, "42")
        self.assertEqual(claims_from_id_token(token).nonce, "{}")

    def test_malformed_token(self):
        with self.assertRaises(ConstructionError):
            claims_from_id_token("not-a-jwt")
        with self.assertRaises(ConstructionError):
            claims_from_id_token(self._token(sub="42"))
