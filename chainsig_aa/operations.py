# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Builders turning a logical account action into the transaction the contract expects.

Both builders are constructed with the account id and the nonce last observed on the
account. They do not perform I/O or validate permissions; the nonce must be checked
against fresh account state with :func:`ensure_fresh_nonce` before submission.
"""

from __future__ import annotations

import logging
import unittest
from typing import Optional

from . import canonical
from .errors import StaleNonce
from .identity import (
    Credentials,
    Identity,
    IdentityPermissions,
    IdentityWithPermissions,
    OIDCCredentials,
    WebAuthnCredentials,
)
from .scheme import AuthResult
from .transactions import (
    Action,
    AddIdentity,
    AddIdentityWithAuth,
    Auth,
    RemoveAccount,
    RemoveIdentity,
    Sign,
    SignPayloadsRequest,
    SignRequest,
    Transaction,
    UserOperation,
)


def default_permissions() -> IdentityPermissions:
    return IdentityPermissions(enable_act_as=False)


class OperationBuilder:
    """
    One builder method per action, each returning a Transaction for the account.

    Examples:
        Registering an OIDC identity::

            builder = OperationBuilder("alice.testnet", account.nonce)
            transaction = builder.add_identity(google_identity)
            message = canonical.encode(transaction)
    """

    account_id: str
    nonce: int

    def __init__(self, account_id: str, nonce: int):
        self.account_id = account_id
        self.nonce = nonce

    def add_identity(
        self, identity: Identity, permissions: Optional[IdentityPermissions] = None
    ) -> Transaction:
        entry = IdentityWithPermissions(identity, permissions or default_permissions())
        return self._transaction(AddIdentity(entry))

    def add_identity_with_auth(
        self,
        identity: Identity,
        credentials: Credentials,
        permissions: Optional[IdentityPermissions] = None,
    ) -> Transaction:
        """
        Register an identity together with its own proof of possession.

        :param credentials: Credentials the new identity produced by signing a
            transaction for this account and nonce
        """
        entry = IdentityWithPermissions(identity, permissions or default_permissions())
        return self._transaction(AddIdentityWithAuth(entry, credentials))

    def remove_identity(self, identity: Identity) -> Transaction:
        return self._transaction(RemoveIdentity(identity))

    def remove_account(self) -> Transaction:
        return self._transaction(RemoveAccount())

    def sign_payloads(self, request: SignPayloadsRequest) -> Transaction:
        return self._transaction(Sign(request))

    def _transaction(self, action: object) -> Transaction:
        return Transaction(self.account_id, self.nonce, Action(action))


class TransactionBuilder:
    """Same transactions as OperationBuilder under ``create_*`` names."""

    def __init__(self, account_id: str, nonce: int):
        self._builder = OperationBuilder(account_id, nonce)

    @property
    def account_id(self) -> str:
        return self._builder.account_id

    @property
    def nonce(self) -> int:
        return self._builder.nonce

    def create_add_identity(
        self, identity: Identity, permissions: Optional[IdentityPermissions] = None
    ) -> Transaction:
        return self._builder.add_identity(identity, permissions)

    def create_add_identity_with_auth(
        self,
        identity: Identity,
        credentials: Credentials,
        permissions: Optional[IdentityPermissions] = None,
    ) -> Transaction:
        return self._builder.add_identity_with_auth(identity, credentials, permissions)

    def create_remove_identity(self, identity: Identity) -> Transaction:
        return self._builder.remove_identity(identity)

    def create_remove_account(self) -> Transaction:
        return self._builder.remove_account()

    def create_sign_operation(self, request: SignPayloadsRequest) -> Transaction:
        return self._builder.sign_payloads(request)


def user_operation(
    transaction: Transaction,
    auth_result: AuthResult,
    act_as: Optional[Identity] = None,
) -> UserOperation:
    """Wrap a signed transaction with the signer's identity and credentials."""
    return UserOperation(
        transaction, Auth(auth_result.identity, auth_result.credentials), act_as
    )


def ensure_fresh_nonce(transaction: Transaction, observed_nonce: int):
    """
    Reject a transaction built against an outdated account nonce.

    :param transaction: The transaction about to be submitted
    :param observed_nonce: The nonce just read from the gateway
    :raises StaleNonce: If the two nonces differ
    """
    if transaction.nonce != observed_nonce:
        logging.warning(
            f"Transaction for {transaction.account_id} built with nonce "
            f"{transaction.nonce}, account is at {observed_nonce}"
        )
        raise StaleNonce(
            f"Account {transaction.account_id} has a pending change, refresh and retry",
            expected=observed_nonce,
            actual=transaction.nonce,
        )


class Test(unittest.TestCase):
    def setUp(self):
        self.identity = Identity.oidc(
            "client", "https://accounts.google.com", sub="1234"
        )

    def test_add_identity_defaults_permissions(self):
        transaction = OperationBuilder("alice", 5).add_identity(self.identity)
        self.assertEqual(
            transaction.to_json(),
            {
                "account_id": "alice",
                "nonce": 5,
                "action": {
                    "AddIdentity": {
                        "identity": self.identity.to_json(),
                        "permissions": {"enable_act_as": False},
                    }
                },
            },
        )

    def test_explicit_permissions_kept(self):
        permissions = IdentityPermissions(enable_act_as=True)
        transaction = OperationBuilder("alice", 5).add_identity(
            self.identity, permissions
        )
        entry = transaction.action.action.identity_with_permissions
        self.assertTrue(entry.permissions.enable_act_as)

    def test_add_identity_with_auth_nests_credentials(self):
        credentials = WebAuthnCredentials("0x01", "0x02", '{"type":"webauthn.get"}')
        passkey = Identity.webauthn("0xab", "0x02" + "11" * 32)
        transaction = OperationBuilder("alice", 2).add_identity_with_auth(
            passkey, credentials
        )
        action = transaction.to_json()["action"]["AddIdentityWithAuth"]
        self.assertEqual(action["credentials"], credentials.to_json())
        self.assertEqual(
            action["identity_with_permissions"]["permissions"],
            {"enable_act_as": False},
        )

    def test_remove_and_sign(self):
        builder = OperationBuilder("alice", 3)
        self.assertEqual(builder.remove_account().to_json()["action"], "RemoveAccount")
        self.assertEqual(
            builder.remove_identity(self.identity).to_json()["action"],
            {"RemoveIdentity": self.identity.to_json()},
        )
        request = SignPayloadsRequest("signer", [SignRequest(bytes(32), "ethereum,1")])
        self.assertEqual(builder.sign_payloads(request).action.action.request, request)

    def test_transaction_builder_matches_operation_builder(self):
        operations = OperationBuilder("alice", 7)
        transactions = TransactionBuilder("alice", 7)
        request = SignPayloadsRequest("signer", [SignRequest(bytes(32), "ethereum,1")])
        credentials = OIDCCredentials("token")
        pairs = [
            (operations.add_identity(self.identity),
             transactions.create_add_identity(self.identity)),
            (operations.add_identity_with_auth(self.identity, credentials),
             transactions.create_add_identity_with_auth(self.identity, credentials)),
            (operations.remove_identity(self.identity),
             transactions.create_remove_identity(self.identity)),
            (operations.remove_account(), transactions.create_remove_account()),
            (operations.sign_payloads(request),
             transactions.create_sign_operation(request)),
        ]
        for expected, actual in pairs:
            self.assertEqual(expected, actual)
            self.assertEqual(canonical.encode(expected), canonical.encode(actual))

    def test_user_operation(self):
        transaction = OperationBuilder("alice", 1).remove_account()
        result = AuthResult(self.identity, OIDCCredentials("token"))
        user_op = user_operation(transaction, result)
        self.assertIsNone(user_op.act_as)
        self.assertEqual(user_op.auth.credentials, OIDCCredentials("token"))

        delegated = user_operation(transaction, result, Identity.account("bob"))
        self.assertEqual(delegated.to_json()["act_as"], {"Account": "bob"})

    def test_ensure_fresh_nonce(self):
        transaction = OperationBuilder("alice", 4).remove_account()
        ensure_fresh_nonce(transaction, 4)
        with self.assertRaises(StaleNonce) as context:
            ensure_fresh_nonce(transaction, 5)
        self.assertEqual(context.exception.expected, 5)
        self.assertEqual(context.exception.actual, 4)
