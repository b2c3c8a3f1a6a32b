# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
OAuth authorization code login (PKCE) through a popup window.

The login used to obtain an ID token for the OIDC scheme. The canonical transaction
is passed as the ``nonce`` parameter so the issued token is bound to it.

Flow:
    1. Generate a PKCE verifier and S256 challenge, a ``state`` and a ``nonce``
    2. Open the authorization URL in a popup through the injected WindowOpener
    3. Wait for the redirect page to post ``{type, code, state}`` back while a
       watchdog polls ``window.closed``
    4. Check ``state`` and exchange the code for tokens over HTTP

The wait resolves in every case: a message from the redirect origin, the popup being
closed (:class:`PopupClosed`), or the overall timeout (:class:`UserCancelled`).

Examples:
    Logging in with the transaction as nonce::

        config = OAuthConfig(
            client_id="...",
            authorization_endpoint="https://www.facebook.com/v21.0/dialog/oauth",
            token_endpoint="https://graph.facebook.com/v21.0/oauth/access_token",
            redirect_uri="https://wallet.example.com/facebook/callback",
            provider="FACEBOOK",
        )
        async with httpx.AsyncClient() as http_client:
            result = await initiate_login(
                config, opener, http_client, nonce=canonical.encode(transaction)
            )
        adapter = OIDCAdapter.from_id_token(result.id_token)
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import os
import unittest
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
import jwt
from typing_extensions import Protocol

from .errors import AbstractAccountError, UserCancelled
from .oidc import IdentityClaims, claims_from_id_token

VERIFIER_ENTROPY_BYTES = 32


class OAuthError(AbstractAccountError):
    """The provider or the popup flow reported a failure"""


class PopupClosed(UserCancelled):
    """The popup was closed before the provider redirected back"""


@dataclass
class OAuthConfig:
    client_id: str
    authorization_endpoint: str
    token_endpoint: str
    redirect_uri: str
    scope: str = "openid email"
    provider: str = "OAUTH"
    client_secret: Optional[str] = None
    timeout: float = 300.0
    poll_interval: float = 0.5

    @property
    def success_message(self) -> str:
        return f"{self.provider}_AUTH_SUCCESS"

    @property
    def error_message(self) -> str:
        return f"{self.provider}_AUTH_ERROR"


@dataclass
class AuthorizationRequest:
    url: str
    state: str
    nonce: str
    code_verifier: str


@dataclass
class WindowMessage:
    origin: str
    data: Dict[str, Any]


@dataclass
class LoginResult:
    access_token: str
    id_token: Optional[str]
    claims: Optional[IdentityClaims]


class AuthorizationWindow(Protocol):
    closed: bool

    async def next_message(self) -> WindowMessage:
        ...

    def close(self):
        ...


class WindowOpener(Protocol):
    def open(self, url: str) -> Optional[AuthorizationWindow]:
        ...


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def generate_verifier() -> str:
    return _base64url(os.urandom(VERIFIER_ENTROPY_BYTES))


def pkce_challenge(verifier: str) -> str:
    return _base64url(hashlib.sha256(verifier.encode("ascii")).digest())


def origin_of(url: str) -> str:
    parsed = httpx.URL(url)
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{parsed.host}{port}"


def authorization_request(
    config: OAuthConfig, nonce: Optional[str] = None
) -> AuthorizationRequest:
    verifier = generate_verifier()
    state = generate_verifier()
    nonce = nonce or generate_verifier()
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "state": state,
        "scope": config.scope,
        "response_type": "code",
        "code_challenge": pkce_challenge(verifier),
        "code_challenge_method": "S256",
        "nonce": nonce,
    }
    url = str(httpx.URL(config.authorization_endpoint, params=params))
    return AuthorizationRequest(url, state, nonce, verifier)


async def initiate_login(
    config: OAuthConfig,
    opener: WindowOpener,
    http_client: httpx.AsyncClient,
    nonce: Optional[str] = None,
) -> LoginResult:
    """
    Run the popup login and exchange the returned code for tokens.

    :param nonce: Value the ID token's ``nonce`` claim is bound to
    :raises OAuthError: If the popup is blocked, state does not match, the provider
        reports an error or the token exchange fails
    :raises PopupClosed: If the popup is closed before a code arrives
    :raises UserCancelled: If nothing arrives within ``config.timeout``
    """
    request = authorization_request(config, nonce)
    window = opener.open(request.url)
    if window is None:
        raise OAuthError("Failed to open authorization window")

    logging.debug(f"Waiting for {config.provider} authorization")
    try:
        data = await _wait_for_redirect(config, window)
    finally:
        window.close()

    if data.get("state", data.get("returnedState")) != request.state:
        raise OAuthError("Invalid state parameter")
    code = data.get("code")
    if not code:
        raise OAuthError("Authorization response carried no code")
    return await exchange_code(config, http_client, code, request.code_verifier)


async def exchange_code(
    config: OAuthConfig,
    http_client: httpx.AsyncClient,
    code: str,
    code_verifier: str,
) -> LoginResult:
    form = {
        "grant_type": "authorization_code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "code": code,
        "code_verifier": code_verifier,
    }
    if config.client_secret:
        form["client_secret"] = config.client_secret

    response = await http_client.post(
        config.token_endpoint, data=form, headers={"Accept": "application/json"}
    )
    if response.status_code >= 400:
        raise OAuthError(
            f"Failed to fetch access token ({response.status_code}): {response.text}"
        )
    tokens = response.json()
    if not tokens.get("access_token"):
        raise OAuthError("Access token not received")

    id_token = tokens.get("id_token")
    claims = claims_from_id_token(id_token) if id_token else None
    return LoginResult(tokens["access_token"], id_token, claims)


async def _wait_for_redirect(
    config: OAuthConfig, window: AuthorizationWindow
) -> Dict[str, Any]:
    receiver = asyncio.ensure_future(_receive(config, window))
    watchdog = asyncio.ensure_future(_watch_closed(config, window))
    try:
        done, _ = await asyncio.wait(
            {receiver, watchdog},
            timeout=config.timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        for task in (receiver, watchdog):
            task.cancel()
        await asyncio.gather(receiver, watchdog, return_exceptions=True)

    if receiver in done:
        return receiver.result()
    if watchdog in done:
        raise PopupClosed("Authorization window was closed")
    raise UserCancelled(f"No authorization response within {config.timeout}s")


async def _receive(
    config: OAuthConfig, window: AuthorizationWindow
) -> Dict[str, Any]:
    expected_origin = origin_of(config.redirect_uri)
    while True:
        message = await window.next_message()
        if message.origin != expected_origin:
            logging.debug(f"Ignoring message from {message.origin}")
            continue
        kind = message.data.get("type")
        if kind == config.success_message:
            return message.data
        if kind == config.error_message:
            raise OAuthError(message.data.get("error") or "Authentication failed")


async def _watch_closed(config: OAuthConfig, window: AuthorizationWindow):
    while not window.closed:
        await asyncio.sleep(config.poll_interval)


class FakeWindow:
    def __init__(self):
        self.closed = False
        self.messages: asyncio.Queue = asyncio.Queue()

    async def next_message(self) -> WindowMessage:
        return await self.messages.get()

    def close(self):
        self.closed = True


class FakeOpener:
    """Opens FakeWindows; ``respond`` turns the authorization URL into messages."""

    def __init__(self, respond=None, blocked: bool = False):
        self.respond = respond
        self.blocked = blocked
        self.window: Optional[FakeWindow] = None
        self.url: Optional[httpx.URL] = None

    def open(self, url: str) -> Optional[FakeWindow]:
        if self.blocked:
            return None
        self.url = httpx.URL(url)
        self.window = FakeWindow()
        if self.respond:
            for message in self.respond(dict(self.url.params)):
                self.window.messages.put_nowait(message)
        return self.window


class Test(unittest.IsolatedAsyncioTestCase):
    ORIGIN = "https://wallet.example.com"

    def setUp(self):
        self.config = OAuthConfig(
            client_id="client",
            authorization_endpoint="https://provider.example.com/authorize",
            token_endpoint="https://provider.example.com/token",
            redirect_uri=f"{self.ORIGIN}/callback",
            timeout=2.0,
            poll_interval=0.01,
        )
        self.id_token = jwt.encode(
            {"iss": "https://provider.example.com", "aud": "client", "sub": "42"},
            "test-signing-secret-of-32-bytes!",
            algorithm="HS256",
        )
        self.token_requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.token_requests.append(request)
            return httpx.Response(
                200, json={"access_token": "access", "id_token": self.id_token}
            )

        self.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def asyncTearDown(self):
        await self.http_client.aclose()

    def _success(self, params: Dict[str, str]) -> List[WindowMessage]:
        data = {"type": "OAUTH_AUTH_SUCCESS", "code": "abc", "state": params["state"]}
        return [
            WindowMessage("https://evil.example.com", dict(data, code="stolen")),
            WindowMessage(self.ORIGIN, data),
        ]

    async def test_login_success(self):
        opener = FakeOpener(self._success)
        result = await initiate_login(
            self.config, opener, self.http_client, nonce='{"nonce":1}'
        )
        self.assertEqual(result.access_token, "access")
        self.assertEqual(result.id_token, self.id_token)
        self.assertEqual(result.claims.sub, "42")
        self.assertTrue(opener.window.closed)

        params = opener.url.params
        self.assertEqual(params["nonce"], '{"nonce":1}')
        self.assertEqual(params["code_challenge_method"], "S256")
        form = dict(httpx.QueryParams(self.token_requests[0].content.decode()))
        self.assertEqual(form["code"], "abc")
        self.assertEqual(
            pkce_challenge(form["code_verifier"]), params["code_challenge"]
        )

    async def test_popup_closed_resolves_with_error(self):
        opener = FakeOpener()

        async def close_soon():
            await asyncio.sleep(0.05)
            opener.window.close()

        self.config.timeout = 30.0
        closer = asyncio.ensure_future(close_soon())
        with self.assertRaises(PopupClosed):
            await asyncio.wait_for(
                initiate_login(self.config, opener, self.http_client), timeout=1.0
            )
        await closer
        self.assertEqual(self.token_requests, [])

    async def test_timeout_is_cancellation(self):
        self.config.timeout = 0.05
        with self.assertRaises(UserCancelled) as context:
            await initiate_login(self.config, FakeOpener(), self.http_client)
        self.assertNotIsInstance(context.exception, PopupClosed)

    async def test_state_mismatch(self):
        def forged(params):
            data = {"type": "OAUTH_AUTH_SUCCESS", "code": "abc", "state": "forged"}
            return [WindowMessage(self.ORIGIN, data)]

        with self.assertRaises(OAuthError):
            await initiate_login(self.config, FakeOpener(forged), self.http_client)

    async def test_provider_error_and_blocked_popup(self):
        def denied(params):
            data = {"type": "OAUTH_AUTH_ERROR", "error": "access_denied"}
            return [WindowMessage(self.ORIGIN, data)]

        with self.assertRaises(OAuthError):
            await initiate_login(self.config, FakeOpener(denied), self.http_client)
        with self.assertRaises(OAuthError):
            await initiate_login(
                self.config, FakeOpener(blocked=True), self.http_client
            )

    async def test_failed_token_exchange(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(400))
        )
        with self.assertRaises(OAuthError):
            await initiate_login(self.config, FakeOpener(self._success), client)
        await client.aclose()

    def test_pkce_challenge(self):
        verifier = generate_verifier()
        challenge = pkce_challenge(verifier)
        self.assertEqual(len(verifier), 43)
        self.assertNotIn("=", challenge)
        digest = base64.urlsafe_b64decode(challenge + "=")
        self.assertEqual(digest, hashlib.sha256(verifier.encode()).digest())

    def test_origin_of(self):
        self.assertEqual(
            origin_of("https://a.example.com/cb?x=1"), "https://a.example.com"
        )
        self.assertEqual(origin_of("http://localhost:3000/cb"), "http://localhost:3000")
