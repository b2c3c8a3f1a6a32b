# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Error taxonomy shared by the identity model, the scheme adapters and the builders.

Every error raised by the authorization core derives from AbstractAccountError.
The AuthAdapter dispatcher records which scheme failed on the ``scheme``
attribute and re-raises the original exception.

Error Kinds:
- **Construction**: ConstructionError (malformed identity or payload)
- **Encoding**: EncodingError (canonicalization failed or empty message)
- **Capability**: CredentialUnavailable, ProviderUnavailable, WalletNotAvailable,
  ConnectionFailed
- **Human**: UserCancelled, UserRejected
- **Path derivation**: InvalidPublicKey, MissingIdentifier
- **Credentials**: MissingToken
- **Replay protection**: StaleNonce (recoverable by refetching the account)

Examples:
    Mapping errors to user-facing messages::

        try:
            result = await adapter.sign(transaction, config)
        except ProviderUnavailable:
            print("Install a wallet and try again")
        except (UserCancelled, UserRejected):
            print("Request was cancelled")
        except StaleNonce:
            print("Account has a pending change, refresh and retry")
"""

from __future__ import annotations

import unittest
from typing import Optional


class AbstractAccountError(Exception):
    """Base class for all authorization core errors."""

    scheme: Optional[str]

    def __init__(self, message: str, scheme: Optional[str] = None):
        super().__init__(message)
        self.scheme = scheme


class ConstructionError(AbstractAccountError):
    """A model value was built from malformed input"""


class EncodingError(AbstractAccountError):
    """The value has no canonical representation"""


class CredentialUnavailable(AbstractAccountError):
    """The platform has no authenticator able to run the ceremony"""


class ProviderUnavailable(AbstractAccountError):
    """No compatible injected Ethereum provider is present"""


class WalletNotAvailable(AbstractAccountError):
    """The requested Solana wallet extension is not installed"""


class ConnectionFailed(AbstractAccountError):
    """The wallet refused or failed to connect"""


class UserCancelled(AbstractAccountError):
    """The ceremony was aborted by the user or timed out"""


class UserRejected(AbstractAccountError):
    """The user declined the signature request"""


class InvalidPublicKey(AbstractAccountError):
    """A public key could not be decoded into a supported form"""


class MissingIdentifier(AbstractAccountError):
    """The identity lacks the field its path is derived from"""


class MissingToken(AbstractAccountError):
    """No OIDC token was supplied for signing"""


class StaleNonce(AbstractAccountError):
    """The transaction nonce does not match the account's current nonce"""

    expected: int
    actual: int

    def __init__(self, message: str, expected: int, actual: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class Test(unittest.TestCase):
    def test_scheme_defaults_to_none(self):
        error = UserRejected("declined")
        self.assertIsNone(error.scheme)
        self.assertEqual(str(error), "declined")

    def test_stale_nonce_carries_nonces(self):
        error = StaleNonce("stale", expected=6, actual=5)
        self.assertIsInstance(error, AbstractAccountError)
        self.assertEqual(error.expected, 6)
        self.assertEqual(error.actual, 5)
