# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Transactions and user operations accepted by the authorization contract.

A Transaction binds one Action to an account id and the account's current nonce. The
canonical JSON of the transaction is what every authentication scheme signs; the
signed transaction is then wrapped with the signer's identity and credentials into a
UserOperation and submitted through ``auth``.

Actions:
    RemoveAccount: Delete the account (the only action without a payload)
    AddIdentity: Register an identity with optional permissions
    AddIdentityWithAuth: Register an identity that proves possession of its key
    RemoveIdentity: Unregister an identity
    Sign: Request chain signatures over payloads via the signer contract

Examples:
    Assembling a user operation::

        transaction = OperationBuilder("alice.testnet", 5).remove_account()
        result = await adapter.sign(transaction, config)
        user_op = UserOperation(transaction, Auth(result.identity, result.credentials))
        await client.auth(user_op)
"""

from __future__ import annotations

import typing
import unittest
from typing import Any, Dict, List, Optional

from .errors import ConstructionError
from .identity import (
    Credentials,
    Identity,
    IdentityPermissions,
    IdentityWithPermissions,
    OIDCCredentials,
    WalletCredentials,
    credentials_from_json,
)


class SignRequest:
    """A 32 byte payload to be signed by the signer contract under a derived path."""

    payload: List[int]
    path: str
    key_version: int

    def __init__(
        self, payload: typing.Union[bytes, List[int]], path: str, key_version: int = 0
    ):
        self.payload = list(payload)
        if any(not 0 <= byte <= 255 for byte in self.payload):
            raise ConstructionError("Sign payload must contain bytes")
        self.path = path
        self.key_version = key_version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignRequest):
            return NotImplemented
        return self.to_json() == other.to_json()

    def to_json(self) -> Dict[str, Any]:
        return {
            "payload": self.payload,
            "path": self.path,
            "key_version": self.key_version,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> SignRequest:
        try:
            return SignRequest(data["payload"], data["path"], data["key_version"])
        except (KeyError, TypeError) as e:
            raise ConstructionError(f"Invalid sign request: {data}") from e


class SignPayloadsRequest:
    contract_id: str
    payloads: List[SignRequest]

    def __init__(self, contract_id: str, payloads: List[SignRequest]):
        self.contract_id = contract_id
        self.payloads = payloads

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignPayloadsRequest):
            return NotImplemented
        return (
            self.contract_id == other.contract_id and self.payloads == other.payloads
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "contract_id": self.contract_id,
            "payloads": [payload.to_json() for payload in self.payloads],
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> SignPayloadsRequest:
        try:
            return SignPayloadsRequest(
                data["contract_id"],
                [SignRequest.from_json(payload) for payload in data["payloads"]],
            )
        except (KeyError, TypeError) as e:
            raise ConstructionError(f"Invalid sign payloads request: {data}") from e


class RemoveAccount:
    def __eq__(self, other: object) -> bool:
        return isinstance(other, RemoveAccount)


class AddIdentity:
    identity_with_permissions: IdentityWithPermissions

    def __init__(self, identity_with_permissions: IdentityWithPermissions):
        self.identity_with_permissions = identity_with_permissions

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddIdentity):
            return NotImplemented
        return self.identity_with_permissions == other.identity_with_permissions

    def to_json(self) -> Dict[str, Any]:
        return self.identity_with_permissions.to_json()

    @staticmethod
    def from_json(data: Dict[str, Any]) -> AddIdentity:
        return AddIdentity(IdentityWithPermissions.from_json(data))


class AddIdentityWithAuth:
    """Registers an identity together with its signature over the same transaction."""

    identity_with_permissions: IdentityWithPermissions
    credentials: Credentials

    def __init__(
        self,
        identity_with_permissions: IdentityWithPermissions,
        credentials: Credentials,
    ):
        self.identity_with_permissions = identity_with_permissions
        self.credentials = credentials

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AddIdentityWithAuth):
            return NotImplemented
        return (
            self.identity_with_permissions == other.identity_with_permissions
            and self.credentials == other.credentials
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "identity_with_permissions": self.identity_with_permissions.to_json(),
            "credentials": self.credentials.to_json(),
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> AddIdentityWithAuth:
        try:
            return AddIdentityWithAuth(
                IdentityWithPermissions.from_json(data["identity_with_permissions"]),
                credentials_from_json(data["credentials"]),
            )
        except (KeyError, TypeError) as e:
            raise ConstructionError(f"Invalid AddIdentityWithAuth: {data}") from e


class RemoveIdentity:
    identity: Identity

    def __init__(self, identity: Identity):
        self.identity = identity

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoveIdentity):
            return NotImplemented
        return self.identity == other.identity

    def to_json(self) -> Dict[str, Any]:
        return self.identity.to_json()

    @staticmethod
    def from_json(data: Dict[str, Any]) -> RemoveIdentity:
        return RemoveIdentity(Identity.from_json(data))


class Sign:
    request: SignPayloadsRequest

    def __init__(self, request: SignPayloadsRequest):
        self.request = request

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sign):
            return NotImplemented
        return self.request == other.request

    def to_json(self) -> Dict[str, Any]:
        return self.request.to_json()

    @staticmethod
    def from_json(data: Dict[str, Any]) -> Sign:
        return Sign(SignPayloadsRequest.from_json(data))


class Action:
    """
    Tagged action of a transaction.

    RemoveAccount serializes to the bare string ``"RemoveAccount"``; every other
    action is a single-key object named after its variant.
    """

    REMOVE_ACCOUNT: str = "RemoveAccount"
    ADD_IDENTITY: str = "AddIdentity"
    ADD_IDENTITY_WITH_AUTH: str = "AddIdentityWithAuth"
    REMOVE_IDENTITY: str = "RemoveIdentity"
    SIGN: str = "Sign"

    variant: str
    action: typing.Any

    def __init__(self, action: typing.Any):
        if isinstance(action, RemoveAccount):
            self.variant = Action.REMOVE_ACCOUNT
        elif isinstance(action, AddIdentity):
            self.variant = Action.ADD_IDENTITY
        elif isinstance(action, AddIdentityWithAuth):
            self.variant = Action.ADD_IDENTITY_WITH_AUTH
        elif isinstance(action, RemoveIdentity):
            self.variant = Action.REMOVE_IDENTITY
        elif isinstance(action, Sign):
            self.variant = Action.SIGN
        else:
            raise ConstructionError(f"Invalid action type: {type(action).__name__}")
        self.action = action

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Action):
            return NotImplemented
        return self.variant == other.variant and self.action == other.action

    def __str__(self) -> str:
        return self.variant

    def to_json(self) -> typing.Union[str, Dict[str, Any]]:
        if self.variant == Action.REMOVE_ACCOUNT:
            return Action.REMOVE_ACCOUNT
        return {self.variant: self.action.to_json()}

    @staticmethod
    def from_json(data: typing.Union[str, Dict[str, Any]]) -> Action:
        if data == Action.REMOVE_ACCOUNT:
            return Action(RemoveAccount())
        if not isinstance(data, dict) or len(data) != 1:
            raise ConstructionError(f"Invalid action: {data}")
        ((variant, inner),) = data.items()

        if variant == Action.ADD_IDENTITY:
            action: typing.Any = AddIdentity.from_json(inner)
        elif variant == Action.ADD_IDENTITY_WITH_AUTH:
            action = AddIdentityWithAuth.from_json(inner)
        elif variant == Action.REMOVE_IDENTITY:
            action = RemoveIdentity.from_json(inner)
        elif variant == Action.SIGN:
            action = Sign.from_json(inner)
        else:
            raise ConstructionError(f"Invalid action type: {variant}")

        return Action(action)


class Transaction:
    """The signed unit: an action bound to an account and its current nonce."""

    account_id: str
    nonce: int
    action: Action

    def __init__(self, account_id: str, nonce: int, action: Action):
        if nonce < 0:
            raise ConstructionError(f"Nonce must be non-negative, got {nonce}")
        self.account_id = account_id
        self.nonce = nonce
        self.action = action

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return NotImplemented
        return (
            self.account_id == other.account_id
            and self.nonce == other.nonce
            and self.action == other.action
        )

    def __str__(self) -> str:
        return f"Transaction({self.account_id}, nonce={self.nonce}, {self.action})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "nonce": self.nonce,
            "action": self.action.to_json(),
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> Transaction:
        try:
            return Transaction(
                data["account_id"], int(data["nonce"]), Action.from_json(data["action"])
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConstructionError(f"Invalid transaction: {data}") from e


class Auth:
    identity: Identity
    credentials: Credentials

    def __init__(self, identity: Identity, credentials: Credentials):
        self.identity = identity
        self.credentials = credentials

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Auth):
            return NotImplemented
        return self.identity == other.identity and self.credentials == other.credentials

    def to_json(self) -> Dict[str, Any]:
        return {
            "identity": self.identity.to_json(),
            "credentials": self.credentials.to_json(),
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> Auth:
        try:
            return Auth(
                Identity.from_json(data["identity"]),
                credentials_from_json(data["credentials"]),
            )
        except (KeyError, TypeError) as e:
            raise ConstructionError(f"Invalid auth: {data}") from e


class UserOperation:
    """
    The authorization envelope submitted to the gateway.

    ``act_as`` is passed through untouched; whether the authenticating identity may
    act as another identity is decided by the contract.
    """

    transaction: Transaction
    auth: Auth
    act_as: Optional[Identity]

    def __init__(
        self, transaction: Transaction, auth: Auth, act_as: Optional[Identity] = None
    ):
        self.transaction = transaction
        self.auth = auth
        self.act_as = act_as

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UserOperation):
            return NotImplemented
        return (
            self.transaction == other.transaction
            and self.auth == other.auth
            and self.act_as == other.act_as
        )

    def to_json(self) -> Dict[str, Any]:
        data = {
            "transaction": self.transaction.to_json(),
            "auth": self.auth.to_json(),
        }
        if self.act_as is not None:
            data["act_as"] = self.act_as.to_json()
        return data

    @staticmethod
    def from_json(data: Dict[str, Any]) -> UserOperation:
        try:
            act_as = data.get("act_as")
            return UserOperation(
                Transaction.from_json(data["transaction"]),
                Auth.from_json(data["auth"]),
                Identity.from_json(act_as) if act_as is not None else None,
            )
        except (KeyError, AttributeError) as e:
            raise ConstructionError(f"Invalid user operation: {data}") from e


class Test(unittest.TestCase):
    def test_remove_account_is_bare_string(self):
        transaction = Transaction("alice", 5, Action(RemoveAccount()))
        self.assertEqual(
            transaction.to_json(),
            {"account_id": "alice", "nonce": 5, "action": "RemoveAccount"},
        )
        self.assertEqual(Transaction.from_json(transaction.to_json()), transaction)

    def test_action_json_shapes(self):
        identity = Identity.account("bob")
        entry = IdentityWithPermissions(identity, IdentityPermissions())
        self.assertEqual(
            Action(AddIdentity(entry)).to_json(),
            {
                "AddIdentity": {
                    "identity": {"Account": "bob"},
                    "permissions": {"enable_act_as": False},
                }
            },
        )
        self.assertEqual(
            Action(RemoveIdentity(identity)).to_json(),
            {"RemoveIdentity": {"Account": "bob"}},
        )
        with_auth = Action(AddIdentityWithAuth(entry, WalletCredentials("0x01")))
        self.assertEqual(
            with_auth.to_json()["AddIdentityWithAuth"]["credentials"],
            {"signature": "0x01"},
        )

    def test_sign_action(self):
        request = SignPayloadsRequest(
            "v1.signer-prod.testnet", [SignRequest(bytes(range(32)), "ethereum,1")]
        )
        action = Action(Sign(request))
        data = action.to_json()
        self.assertEqual(data["Sign"]["contract_id"], "v1.signer-prod.testnet")
        self.assertEqual(data["Sign"]["payloads"][0]["payload"], list(range(32)))
        self.assertEqual(data["Sign"]["payloads"][0]["key_version"], 0)
        self.assertEqual(Action.from_json(data), action)

    def test_sign_request_rejects_non_bytes(self):
        with self.assertRaises(ConstructionError):
            SignRequest([256], "ethereum,1")

    def test_unknown_action_rejected(self):
        with self.assertRaises(ConstructionError):
            Action.from_json({"Transfer": {}})
        with self.assertRaises(ConstructionError):
            Action.from_json("Transfer")
        with self.assertRaises(ConstructionError):
            Action("RemoveAccount")

    def test_user_operation_omits_missing_act_as(self):
        transaction = Transaction("alice", 1, Action(RemoveAccount()))
        auth = Auth(Identity.oidc("c", "i", sub="s"), OIDCCredentials("token"))
        user_op = UserOperation(transaction, auth)
        self.assertNotIn("act_as", user_op.to_json())

        delegated = UserOperation(transaction, auth, Identity.account("bob"))
        self.assertEqual(delegated.to_json()["act_as"], {"Account": "bob"})
        self.assertEqual(UserOperation.from_json(delegated.to_json()), delegated)
        self.assertEqual(UserOperation.from_json(user_op.to_json()), user_op)

    def test_negative_nonce_rejected(self):
        with self.assertRaises(ConstructionError):
            Transaction("alice", -1, Action(RemoveAccount()))
