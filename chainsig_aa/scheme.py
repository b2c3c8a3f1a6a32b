# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Common contract of the scheme adapters.

Every authentication scheme exposes the same two coroutines: ``get_identity``, used
when registering the scheme on an account, and ``sign``, which runs the scheme's
challenge/response ceremony over a canonical message and returns the identity that
signed along with its credentials.
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass
from typing import Any, Dict

from typing_extensions import Protocol

from .errors import EncodingError
from .identity import Credentials, Identity, WalletCredentials


@dataclass
class AuthResult:
    """Output of one ``sign`` ceremony; valid for a single operation."""

    identity: Identity
    credentials: Credentials

    def to_json(self) -> Dict[str, Any]:
        return {
            "identity": self.identity.to_json(),
            "credentials": self.credentials.to_json(),
        }


class SchemeAdapter(Protocol):
    """Structural interface implemented by every scheme adapter."""

    async def get_identity(self) -> Identity:
        ...

    async def sign(self, canonical_message: str) -> AuthResult:
        ...


def require_message(canonical_message: str) -> str:
    """Refuse to sign an empty message."""
    if not isinstance(canonical_message, str) or canonical_message == "":
        raise EncodingError("Refusing to sign an empty message")
    return canonical_message


class Test(unittest.TestCase):
    def test_require_message(self):
        self.assertEqual(require_message("{}"), "{}")
        with self.assertRaises(EncodingError):
            require_message("")
        with self.assertRaises(EncodingError):
            require_message(None)  # type: ignore

    def test_auth_result_json(self):
        identity = Identity.account("bob")
        result = AuthResult(identity, WalletCredentials("0x01"))
        self.assertEqual(
            result.to_json(),
            {"identity": {"Account": "bob"}, "credentials": {"signature": "0x01"}},
        )
