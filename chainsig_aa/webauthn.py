# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Passkey (WebAuthn) scheme adapter.

Registration runs a credential creation ceremony and extracts the P-256 public key
from the attestation object. Signing runs an assertion ceremony whose challenge is
the SHA-256 digest of the canonical message, so the contract can rebuild the
challenge from the transaction it receives.

The platform's credential store is injected as a :class:`CredentialsContainer`; in a
browser this is ``navigator.credentials``, elsewhere any authenticator bridge that
returns :class:`PublicKeyCredential` values.

Credential Format:
    key_id: ``0x`` hex of the credential raw id
    compressed_public_key: ``0x02``/``0x03`` prefixed SEC1 compressed P-256 key
    signature: ``0x`` hex of the 64 byte r||s form of the assertion signature
    authenticator_data: ``0x`` hex of the authenticator data
    client_data: compact JSON ``{type, challenge, origin, crossOrigin}``

Examples:
    Registering a passkey and signing a transaction::

        adapter = WebAuthnAdapter(container, "wallet.example.com", username="alice")
        identity = await adapter.get_identity()
        result = await adapter.sign(canonical.encode(transaction))
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import io
import json
import logging
import os
import unittest
from dataclasses import dataclass
from typing import Any, Dict, Optional

import cbor2
from ecdsa import NIST256p, SigningKey, VerifyingKey, util
from ecdsa.der import UnexpectedDER
from ecdsa.errors import MalformedPointError
from typing_extensions import Protocol

from .errors import (
    ConstructionError,
    CredentialUnavailable,
    EncodingError,
    InvalidPublicKey,
    UserCancelled,
)
from .identity import Identity, WebAuthnCredentials
from .scheme import AuthResult, require_message

ES256 = -7
DEFAULT_TIMEOUT_MS = 60000
USER_ID_LENGTH = 16

# Authenticator data layout
RP_ID_HASH_LENGTH = 32
FLAGS_LENGTH = 1
SIGN_COUNT_LENGTH = 4
AAGUID_LENGTH = 16
CREDENTIAL_ID_LENGTH_LENGTH = 2
FLAG_ATTESTED_CREDENTIAL_DATA = 0x40

# COSE key parameters
COSE_KTY = 1
COSE_ALG = 3
COSE_CRV = -1
COSE_X = -2
COSE_Y = -3
COSE_KTY_EC2 = 2
COSE_CRV_P256 = 1

CANCELLED_ERRORS = ("NotAllowedError", "AbortError")


class PlatformError(Exception):
    """A DOMException-style failure reported by the credential store."""

    name: str

    def __init__(self, name: str, message: str = ""):
        # Call the base class constructor with the parameters it needs
        super().__init__(message or name)
        self.name = name


@dataclass
class PublicKeyCredential:
    """
    Result of a ceremony.

    Creation fills ``attestation_object``; assertion fills ``authenticator_data`` and
    ``signature``.
    """

    raw_id: bytes
    client_data_json: bytes
    attestation_object: Optional[bytes] = None
    authenticator_data: Optional[bytes] = None
    signature: Optional[bytes] = None
    user_handle: Optional[bytes] = None


class CredentialsContainer(Protocol):
    async def create(self, options: Dict[str, Any]) -> Optional[PublicKeyCredential]:
        ...

    async def get(self, options: Dict[str, Any]) -> Optional[PublicKeyCredential]:
        ...


class WebAuthnAdapter:
    """Passkey scheme adapter bound to one relying party and one platform store."""

    container: Optional[CredentialsContainer]
    rp_id: str
    rp_name: str
    username: Optional[str]
    timeout_ms: int

    def __init__(
        self,
        container: Optional[CredentialsContainer],
        rp_id: str,
        username: Optional[str] = None,
        rp_name: str = "chainsig-aa",
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        self.container = container
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.username = username
        self.timeout_ms = timeout_ms

    def creation_options(self, username: str) -> Dict[str, Any]:
        return {
            "timeout": self.timeout_ms,
            "rp": {"name": self.rp_name, "id": self.rp_id},
            "user": {
                "id": os.urandom(USER_ID_LENGTH),
                "name": username,
                "displayName": username,
            },
            "pubKeyCredParams": [{"alg": ES256, "type": "public-key"}],
            "authenticatorSelection": {
                "requireResidentKey": True,
                "residentKey": "required",
                "userVerification": "required",
                "authenticatorAttachment": "platform",
            },
            "attestation": "direct",
            "challenge": os.urandom(32),
        }

    def request_options(self, challenge: bytes) -> Dict[str, Any]:
        return {
            "timeout": self.timeout_ms,
            "challenge": challenge,
            "rpId": self.rp_id,
            "userVerification": "required",
        }

    async def get_identity(self, operation: str = "create") -> Identity:
        """
        Register a new passkey and return its identity.

        With ``operation="get"`` an existing passkey is asserted instead; the returned
        identity then carries only the key id.
        """
        username = self.username
        if not username:
            raise ConstructionError("WebAuthn registration requires a username")
        if operation == "get":
            return (await self.sign(username)).identity

        logging.debug(f"Starting passkey registration for {username} on {self.rp_id}")
        credential = await self._ceremony("create", self.creation_options(username))
        if credential.attestation_object is None:
            raise CredentialUnavailable("Authenticator returned no attestation")
        compressed_public_key = compressed_public_key_from_attestation(
            credential.attestation_object
        )
        return Identity.webauthn(
            "0x" + credential.raw_id.hex(), "0x" + compressed_public_key.hex()
        )

    async def sign(self, canonical_message: str) -> AuthResult:
        message = require_message(canonical_message)
        challenge = hashlib.sha256(message.encode("utf-8")).digest()

        logging.debug(f"Starting passkey assertion on {self.rp_id}")
        credential = await self._ceremony("get", self.request_options(challenge))
        if credential.signature is None or credential.authenticator_data is None:
            raise CredentialUnavailable("Authenticator returned a partial assertion")

        credentials = WebAuthnCredentials(
            signature="0x" + normalize_signature(credential.signature).hex(),
            authenticator_data="0x" + credential.authenticator_data.hex(),
            client_data=minimal_client_data(credential.client_data_json),
        )
        identity = Identity.webauthn("0x" + credential.raw_id.hex())
        return AuthResult(identity, credentials)

    async def _ceremony(
        self, operation: str, options: Dict[str, Any]
    ) -> PublicKeyCredential:
        if self.container is None:
            raise CredentialUnavailable("Passkeys are not supported on this platform")

        call = getattr(self.container, operation)
        try:
            credential = await asyncio.wait_for(
                call(options), timeout=self.timeout_ms / 1000
            )
        except asyncio.TimeoutError as e:
            raise UserCancelled("Passkey ceremony timed out") from e
        except PlatformError as e:
            if e.name in CANCELLED_ERRORS:
                raise UserCancelled(f"Passkey ceremony aborted: {e}") from e
            raise CredentialUnavailable(f"Passkey ceremony failed: {e.name}") from e

        if credential is None:
            raise UserCancelled("Passkey ceremony returned no credential")
        return credential


def compressed_public_key_from_attestation(attestation_object: bytes) -> bytes:
    """
    Extract the credential's P-256 public key from a CBOR attestation object.

    :return: The 33 byte SEC1 compressed key
    :raises InvalidPublicKey: If the attestation has no usable EC2 P-256 key
    """
    try:
        attestation = cbor2.loads(attestation_object)
        auth_data = attestation["authData"]
    except (cbor2.CBORDecodeError, KeyError, TypeError) as e:
        raise InvalidPublicKey("Malformed attestation object") from e

    offset = RP_ID_HASH_LENGTH
    if len(auth_data) < offset + FLAGS_LENGTH + SIGN_COUNT_LENGTH:
        raise InvalidPublicKey("Authenticator data is truncated")
    flags = auth_data[offset]
    if not flags & FLAG_ATTESTED_CREDENTIAL_DATA:
        raise InvalidPublicKey("Authenticator data carries no credential")
    offset += FLAGS_LENGTH + SIGN_COUNT_LENGTH + AAGUID_LENGTH

    length_end = offset + CREDENTIAL_ID_LENGTH_LENGTH
    credential_id_length = int.from_bytes(auth_data[offset:length_end], "big")
    offset = length_end + credential_id_length

    try:
        cose_key = cbor2.CBORDecoder(io.BytesIO(auth_data[offset:])).decode()
    except cbor2.CBORDecodeError as e:
        raise InvalidPublicKey("Malformed COSE public key") from e

    if (
        not isinstance(cose_key, dict)
        or cose_key.get(COSE_KTY) != COSE_KTY_EC2
        or cose_key.get(COSE_CRV) != COSE_CRV_P256
    ):
        raise InvalidPublicKey("Credential public key is not an EC2 P-256 key")
    if cose_key.get(COSE_ALG, ES256) != ES256:
        raise InvalidPublicKey(f"Unsupported COSE algorithm {cose_key.get(COSE_ALG)}")

    x = cose_key.get(COSE_X)
    y = cose_key.get(COSE_Y)
    if not isinstance(x, bytes) or not isinstance(y, bytes):
        raise InvalidPublicKey("Credential public key lacks coordinates")
    try:
        key = VerifyingKey.from_string(x + y, curve=NIST256p)
    except MalformedPointError as e:
        raise InvalidPublicKey("Credential public key is not on P-256") from e
    return key.to_string("compressed")


def normalize_signature(der_signature: bytes) -> bytes:
    """Convert an ASN.1 DER ECDSA signature into fixed width r||s."""
    order = NIST256p.order
    try:
        r, s = util.sigdecode_der(der_signature, order)
    except UnexpectedDER as e:
        raise EncodingError("Assertion signature is not DER encoded") from e
    return util.sigencode_string(r, s, order)


def minimal_client_data(client_data_json: bytes) -> str:
    """Keep only the client data fields the contract verifies, in their signed order."""
    try:
        client_data = json.loads(client_data_json.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise EncodingError("Client data is not valid JSON") from e

    fields = {
        key: client_data.get(key)
        for key in ("type", "challenge", "origin", "crossOrigin")
        if client_data.get(key) is not None
    }
    return json.dumps(fields, separators=(",", ":"), ensure_ascii=False)


class FakeAuthenticator:
    """Platform authenticator backed by an in-memory P-256 key."""

    def __init__(self, origin: str = "https://wallet.example.com"):
        self.origin = origin
        self.signing_key = SigningKey.generate(curve=NIST256p)
        self.credential_id = os.urandom(16)
        self.sign_count = 0
        self.error: Optional[PlatformError] = None
        self.der_signature: Optional[bytes] = None
        self.last_options: Optional[Dict[str, Any]] = None

    def _auth_data(self, rp_id: str, flags: int, attested: bytes = b"") -> bytes:
        self.sign_count += 1
        return (
            hashlib.sha256(rp_id.encode()).digest()
            + bytes([flags])
            + self.sign_count.to_bytes(SIGN_COUNT_LENGTH, "big")
            + attested
        )

    def _client_data(self, kind: str, challenge: bytes) -> bytes:
        encoded = base64.urlsafe_b64encode(challenge).rstrip(b"=").decode()
        data = {
            "type": kind,
            "challenge": encoded,
            "origin": self.origin,
            "crossOrigin": False,
        }
        return json.dumps(data, separators=(",", ":")).encode()

    async def create(self, options: Dict[str, Any]) -> Optional[PublicKeyCredential]:
        self.last_options = options
        if self.error:
            raise self.error
        point = self.signing_key.get_verifying_key().to_string()
        cose_key = cbor2.dumps(
            {
                COSE_KTY: COSE_KTY_EC2,
                COSE_ALG: ES256,
                COSE_CRV: COSE_CRV_P256,
                COSE_X: point[:32],
                COSE_Y: point[32:],
            }
        )
        attested = (
            bytes(AAGUID_LENGTH)
            + len(self.credential_id).to_bytes(CREDENTIAL_ID_LENGTH_LENGTH, "big")
            + self.credential_id
            + cose_key
        )
        auth_data = self._auth_data(options["rp"]["id"], 0x45, attested)
        attestation = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        return PublicKeyCredential(
            raw_id=self.credential_id,
            client_data_json=self._client_data("webauthn.create", options["challenge"]),
            attestation_object=attestation,
        )

    async def get(self, options: Dict[str, Any]) -> Optional[PublicKeyCredential]:
        self.last_options = options
        if self.error:
            raise self.error
        auth_data = self._auth_data(options["rpId"], 0x05)
        client_data_json = self._client_data("webauthn.get", options["challenge"])
        signature = self.der_signature or self.signing_key.sign_deterministic(
            auth_data + hashlib.sha256(client_data_json).digest(),
            hashfunc=hashlib.sha256,
            sigencode=util.sigencode_der,
        )
        return PublicKeyCredential(
            raw_id=self.credential_id,
            client_data_json=client_data_json,
            authenticator_data=auth_data,
            signature=signature,
        )


class Test(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.authenticator = FakeAuthenticator()
        self.adapter = WebAuthnAdapter(
            self.authenticator, rp_id="wallet.example.com", username="alice"
        )

    async def test_registration(self):
        identity = await self.adapter.get_identity()
        expected_key = self.authenticator.signing_key.get_verifying_key().to_string(
            "compressed"
        )
        self.assertEqual(identity.variant, Identity.WEBAUTHN)
        self.assertEqual(
            identity.identity.key_id, "0x" + self.authenticator.credential_id.hex()
        )
        self.assertEqual(
            identity.identity.compressed_public_key, "0x" + expected_key.hex()
        )
        self.assertIn(identity.identity.compressed_public_key[:4], ("0x02", "0x03"))

        options = self.authenticator.last_options
        self.assertEqual(options["pubKeyCredParams"][0]["alg"], -7)
        selection = options["authenticatorSelection"]
        self.assertEqual(selection["userVerification"], "required")
        self.assertTrue(selection["requireResidentKey"])
        self.assertEqual(options["attestation"], "direct")
        self.assertEqual(options["timeout"], 60000)
        self.assertEqual(len(options["user"]["id"]), 16)

    async def test_sign_produces_verifiable_assertion(self):
        message = '{"account_id":"alice","action":"RemoveAccount","nonce":1}'
        result = await self.adapter.sign(message)
        credentials = result.credentials

        signature = bytes.fromhex(credentials.signature[2:])
        self.assertEqual(len(signature), 64)
        self.assertIsNone(result.identity.identity.compressed_public_key)

        client_data = json.loads(credentials.client_data)
        self.assertEqual(
            list(client_data), ["type", "challenge", "origin", "crossOrigin"]
        )
        challenge = base64.urlsafe_b64decode(client_data["challenge"] + "=")
        self.assertEqual(challenge, hashlib.sha256(message.encode()).digest())

        signed = bytes.fromhex(credentials.authenticator_data[2:]) + hashlib.sha256(
            credentials.client_data.encode()
        ).digest()
        self.assertTrue(
            self.authenticator.signing_key.get_verifying_key().verify(
                signature,
                signed,
                hashfunc=hashlib.sha256,
                sigdecode=util.sigdecode_string,
            )
        )

    async def test_signature_padding_normalized(self):
        order = NIST256p.order
        r = (1 << 255) + 1
        s = 5
        self.authenticator.der_signature = util.sigencode_der(r, s, order)
        result = await self.adapter.sign("{}")
        signature = bytes.fromhex(result.credentials.signature[2:])
        self.assertEqual(len(signature), 64)
        self.assertEqual(int.from_bytes(signature[:32], "big"), r)
        self.assertEqual(signature[32:], bytes(31) + b"\x05")

    async def test_empty_message_rejected(self):
        with self.assertRaises(EncodingError):
            await self.adapter.sign("")

    async def test_error_mapping(self):
        self.authenticator.error = PlatformError("NotAllowedError")
        with self.assertRaises(UserCancelled):
            await self.adapter.sign("{}")
        self.authenticator.error = PlatformError("AbortError")
        with self.assertRaises(UserCancelled):
            await self.adapter.get_identity()
        self.authenticator.error = PlatformError("NotSupportedError")
        with self.assertRaises(CredentialUnavailable):
            await self.adapter.sign("{}")
        with self.assertRaises(CredentialUnavailable):
            await WebAuthnAdapter(None, "wallet.example.com", "alice").get_identity()

    async def test_timeout_is_cancellation(self):
        class Hanging:
            async def get(self, options):
                await asyncio.sleep(10)

        adapter = WebAuthnAdapter(Hanging(), "wallet.example.com", timeout_ms=10)
        with self.assertRaises(UserCancelled):
            await adapter.sign("{}")

    async def test_empty_result_is_cancellation(self):
        class Empty:
            async def get(self, options):
                return None

        with self.assertRaises(UserCancelled):
            await WebAuthnAdapter(Empty(), "wallet.example.com").sign("{}")

    def test_attestation_without_credential_rejected(self):
        auth_data = bytes(32) + b"\x05" + bytes(4)
        with self.assertRaises(InvalidPublicKey):
            compressed_public_key_from_attestation(cbor2.dumps({"authData": auth_data}))
        with self.assertRaises(InvalidPublicKey):
            compressed_public_key_from_attestation(b"\xff\xff")

    def test_minimal_client_data_omits_missing_fields(self):
        raw = json.dumps(
            {"origin": "o", "type": "webauthn.get", "challenge": "c", "other": 1}
        ).encode()
        self.assertEqual(
            minimal_client_data(raw),
            '{"type":"webauthn.get","challenge":"c","origin":"o"}',
        )
