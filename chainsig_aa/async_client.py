# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous gateway to the abstract account contract on NEAR.

:class:`AccountGateway` is what the rest of the package needs from the contract:
current account state, discovery queries and the single mutating entry point
``auth``. :class:`AbstractAccountClient` implements it over a NEAR JSON-RPC node.

Read methods are contract view calls (``query`` with ``call_function``), which need no
key. Mutating methods are FunctionCall transactions signed with the relayer key given
to the client and submitted with ``broadcast_tx_commit``, so they return once the
transaction, and any promise it spawned, has executed.

Examples:
    Submitting a signed operation::

        client = AbstractAccountClient(
            "https://rpc.testnet.near.org",
            "abstract-account.testnet",
            signer_id="relayer.testnet",
            signer_key=PrivateKey.from_str(os.getenv("CHAINSIG_AA_SIGNER_KEY")),
        )

        builder = await client.operation_builder("alice")
        transaction = builder.sign_payloads(sign_request)
        result = await auth_adapter.sign(transaction, config)
        signature = await client.auth(user_operation(transaction, result))

        await client.close()

Error Handling:
    - ApiError: The node answered with an HTTP error, a JSON-RPC error, or a failed
      transaction outcome
    - AccountNotFound: The contract holds no account with the requested id
"""

import base64
import json
import logging
import unittest
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import base58
import httpx
from nacl.signing import SigningKey
from typing_extensions import Protocol

from . import canonical
from .borsh import Deserializer
from .errors import ConstructionError
from .identity import (
    Identity,
    IdentityPermissions,
    IdentityWithPermissions,
    WalletCredentials,
    WalletType,
)
from .metadata import Metadata
from .near import FunctionCall, PrivateKey, SignedTransaction, Transaction
from .operations import OperationBuilder
from .transactions import Auth, UserOperation

TGAS = 10**12


@dataclass
class ClientConfig:
    """Configuration for :class:`AbstractAccountClient`.

    Attributes:
        gas: Gas attached to change calls, 300 Tgas by default
        deposit: Attached deposit in yoctoNEAR
        finality: Block finality used for view calls and access key lookups
        http2: Enable HTTP/2
        timeout: Read timeout in seconds; ``broadcast_tx_commit`` waits for
            execution, so this bounds how long a submission may take
        api_key: Optional bearer token for hosted RPC providers
    """

    gas: int = 300 * TGAS
    deposit: int = 0
    finality: str = "final"
    http2: bool = True
    timeout: float = 60.0
    api_key: Optional[str] = None


class Account:
    """State of one abstract account as stored by the contract."""

    identities: List[IdentityWithPermissions]
    nonce: int

    def __init__(self, identities: List[IdentityWithPermissions], nonce: int):
        self.identities = identities
        self.nonce = nonce

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Account):
            return NotImplemented
        return self.identities == other.identities and self.nonce == other.nonce

    def __str__(self) -> str:
        return f"Account(identities={len(self.identities)}, nonce={self.nonce})"

    def to_json(self) -> Dict[str, Any]:
        return {
            "identities": [entry.to_json() for entry in self.identities],
            "nonce": self.nonce,
        }

    @staticmethod
    def from_json(data: Dict[str, Any]) -> "Account":
        return Account(
            [IdentityWithPermissions.from_json(item) for item in data["identities"]],
            int(data["nonce"]),
        )


@dataclass
class StorageBalance:
    total: int
    available: int


class AccountGateway(Protocol):
    async def get_account_by_id(self, account_id: str) -> Optional[Account]:
        ...

    async def auth(
        self,
        user_op: UserOperation,
        gas: Optional[int] = None,
        deposit: Optional[int] = None,
    ) -> Any:
        ...

    async def list_account_ids(self) -> List[str]:
        ...

    async def list_auth_identities(
        self, account_id: str
    ) -> Optional[List[IdentityWithPermissions]]:
        ...

    async def get_account_by_auth_identity(self, identity: Identity) -> List[str]:
        ...


class AbstractAccountClient:
    """NEAR JSON-RPC implementation of :class:`AccountGateway`."""

    client: httpx.AsyncClient
    client_config: ClientConfig
    rpc_url: str
    contract_id: str
    signer_id: Optional[str]
    signer_key: Optional[PrivateKey]

    def __init__(
        self,
        rpc_url: str,
        contract_id: str,
        signer_id: Optional[str] = None,
        signer_key: Optional[PrivateKey] = None,
        client_config: ClientConfig = ClientConfig(),
    ):
        self.rpc_url = rpc_url
        self.contract_id = contract_id
        self.signer_id = signer_id
        self.signer_key = signer_key
        # Default limits
        limits = httpx.Limits()
        # No pool timeout: requests queue for as long as earlier ones make progress.
        timeout = httpx.Timeout(client_config.timeout, pool=None)
        headers = {Metadata.CLIENT_HEADER: Metadata.get_client_header_val()}
        self.client = httpx.AsyncClient(
            http2=client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
        )
        self.client_config = client_config
        if client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {client_config.api_key}"

    async def close(self):
        await self.client.aclose()

    #
    # Account accessors
    #

    async def get_account_by_id(self, account_id: str) -> Optional[Account]:
        """
        Fetch an account's registered identities and its current nonce.

        :return: The account, or None if the contract does not know ``account_id``
        """
        data = await self.view("get_account_by_id", {"account_id": account_id})
        return None if data is None else Account.from_json(data)

    async def list_account_ids(self) -> List[str]:
        return await self.view("list_account_ids", {})

    async def list_auth_identities(
        self, account_id: str
    ) -> Optional[List[IdentityWithPermissions]]:
        data = await self.view("list_identities", {"account_id": account_id})
        if data is None:
            return None
        return [IdentityWithPermissions.from_json(item) for item in data]

    async def get_account_by_auth_identity(self, identity: Identity) -> List[str]:
        """Ids of every account that registered ``identity``."""
        return await self.view("get_account_by_identity", {"identity": identity})

    async def get_all_contracts(self) -> List[str]:
        """Auth contracts the account contract delegates verification to."""
        return await self.view("get_all_contracts", {})

    async def get_signer_account(self) -> str:
        return await self.view("get_signer_account", {})

    async def storage_balance_of(self, account_id: str) -> Optional[StorageBalance]:
        data = await self.view("storage_balance_of", {"account_id": account_id})
        if data is None:
            return None
        return StorageBalance(int(data["total"]), int(data["available"]))

    async def operation_builder(self, account_id: str) -> OperationBuilder:
        """
        Builder for ``account_id`` at the account's current nonce.

        :raises AccountNotFound: If the contract does not know ``account_id``
        """
        account = await self.get_account_by_id(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id)
        return OperationBuilder(account_id, account.nonce)

    #
    # Change methods
    #

    async def auth(
        self,
        user_op: UserOperation,
        gas: Optional[int] = None,
        deposit: Optional[int] = None,
    ) -> Any:
        """
        Submit a signed operation.

        :return: The contract's return value, e.g. the chain signature of a Sign action
        :raises ApiError: If submission fails or the contract rejects the operation
        """
        return await self.function_call("auth", {"user_op": user_op}, gas, deposit)

    async def add_account(
        self,
        account_id: str,
        identity: IdentityWithPermissions,
        gas: Optional[int] = None,
        deposit: Optional[int] = None,
    ) -> Any:
        """Register a new account controlled by ``identity``."""
        return await self.function_call(
            "add_account",
            {"account_id": account_id, "identity": identity},
            gas,
            deposit,
        )

    async def storage_deposit(
        self, account_id: Optional[str] = None, deposit: Optional[int] = None
    ) -> StorageBalance:
        args = {} if account_id is None else {"account_id": account_id}
        data = await self.function_call("storage_deposit", args, None, deposit)
        return StorageBalance(int(data["total"]), int(data["available"]))

    async def view(self, method_name: str, args: Any) -> Any:
        """
        Call a contract view method and decode its JSON return value.

        :param args: Arguments, encoded as canonical JSON
        """
        result = await self._rpc(
            "query",
            {
                "request_type": "call_function",
                "finality": self.client_config.finality,
                "account_id": self.contract_id,
                "method_name": method_name,
                "args_base64": base64.b64encode(canonical.encode_bytes(args)).decode(),
            },
        )
        return json.loads(bytes(result["result"])) if result["result"] else None

    async def function_call(
        self,
        method_name: str,
        args: Any,
        gas: Optional[int] = None,
        deposit: Optional[int] = None,
    ) -> Any:
        """Sign and submit a FunctionCall on the contract, returning its result."""
        signed_transaction = await self.create_signed_transaction(
            FunctionCall.with_json(
                method_name,
                args,
                gas if gas is not None else self.client_config.gas,
                deposit if deposit is not None else self.client_config.deposit,
            )
        )
        return await self.submit_transaction(signed_transaction)

    async def create_signed_transaction(
        self, action: FunctionCall
    ) -> SignedTransaction:
        if self.signer_id is None or self.signer_key is None:
            raise ConstructionError("A signer is required for change methods")

        public_key = self.signer_key.public_key()
        access_key = await self._rpc(
            "query",
            {
                "request_type": "view_access_key",
                "finality": self.client_config.finality,
                "account_id": self.signer_id,
                "public_key": str(public_key),
            },
        )
        transaction = Transaction(
            self.signer_id,
            public_key,
            int(access_key["nonce"]) + 1,
            self.contract_id,
            base58.b58decode(access_key["block_hash"]),
            [action],
        )
        return transaction.sign(self.signer_key)

    async def submit_transaction(self, signed_transaction: SignedTransaction) -> Any:
        outcome = await self._rpc(
            "broadcast_tx_commit",
            [base64.b64encode(signed_transaction.to_bytes()).decode()],
        )
        transaction_hash = outcome.get("transaction", {}).get("hash")
        status = outcome.get("status", {})
        if "Failure" in status:
            raise ApiError(f"{status['Failure']} - {transaction_hash}", 200)
        logging.info(f"Submitted transaction {transaction_hash}")

        value = status.get("SuccessValue")
        if not value:
            return None
        return json.loads(base64.b64decode(value))

    async def _rpc(self, method: str, params: Any) -> Any:
        response = await self.client.post(
            self.rpc_url,
            json={
                "jsonrpc": "2.0",
                "id": "chainsig-aa",
                "method": method,
                "params": params,
            },
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        body = response.json()
        if "error" in body:
            raise ApiError(json.dumps(body["error"]), response.status_code)
        result = body["result"]
        # Query failures are reported inside an otherwise successful result.
        if isinstance(result, dict) and "error" in result:
            raise ApiError(result["error"], response.status_code)
        return result


class ApiError(Exception):
    """The node returned an error or the transaction failed"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class AccountNotFound(Exception):
    """The account was not found"""

    account_id: str

    def __init__(self, message: str, account_id: str):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.account_id = account_id


class Test(unittest.IsolatedAsyncioTestCase):
    CONTRACT = "abstract-account.testnet"
    BLOCK_HASH = base58.b58encode(b"\x07" * 32).decode()

    async def asyncSetUp(self):
        self.identity = IdentityWithPermissions(
            Identity.wallet(WalletType.Solana, "5Ahh"), IdentityPermissions(True)
        )
        self.accounts = {"alice": {"identities": [self.identity.to_json()], "nonce": 4}}
        self.submitted: List[SignedTransaction] = []
        self.key = PrivateKey(SigningKey(b"\x02" * 32))
        self.client = AbstractAccountClient(
            "https://rpc.example", self.CONTRACT, "relayer.testnet", self.key
        )
        await self._use_transport(self._handle)

    async def _use_transport(self, handler: Callable[..., httpx.Response]):
        await self.client.close()
        self.client.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def asyncTearDown(self):
        await self.client.close()

    def _handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        params = body["params"]
        if body["method"] == "query" and params["request_type"] == "view_access_key":
            return self._result({"nonce": 41, "block_hash": self.BLOCK_HASH})
        if body["method"] == "query":
            args = json.loads(base64.b64decode(params["args_base64"]))
            views = {
                "get_account_by_id": lambda: self.accounts.get(args["account_id"]),
                "list_account_ids": lambda: list(self.accounts),
                "list_identities": lambda: None,
                "get_account_by_identity": lambda: ["alice"],
            }
            if params["method_name"] not in views:
                return self._result({"error": "MethodNotFound"})
            value = json.dumps(views[params["method_name"]]()).encode()
            return self._result({"result": list(value)})
        if body["method"] == "broadcast_tx_commit":
            der = Deserializer(base64.b64decode(params[0]))
            signed = SignedTransaction.deserialize(der)
            self.submitted.append(signed)
            call = signed.transaction.actions[0]
            if call.method_name == "add_account":
                return self._result({"status": {"Failure": {"ActionError": "exists"}}})
            value = base64.b64encode(b'{"big_r":"02ab"}').decode()
            return self._result(
                {"status": {"SuccessValue": value}, "transaction": {"hash": "H"}}
            )
        return httpx.Response(400, text="bad request")

    def _result(self, result: Any) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": "x", "result": result})

    async def test_views(self):
        account = await self.client.get_account_by_id("alice")
        self.assertEqual(account, Account([self.identity], 4))
        self.assertIsNone(await self.client.get_account_by_id("bob"))
        self.assertEqual(await self.client.list_account_ids(), ["alice"])
        self.assertIsNone(await self.client.list_auth_identities("bob"))
        self.assertEqual(
            await self.client.get_account_by_auth_identity(self.identity.identity),
            ["alice"],
        )
        with self.assertRaises(ApiError):
            await self.client.get_signer_account()

    async def test_operation_builder_uses_observed_nonce(self):
        builder = await self.client.operation_builder("alice")
        self.assertEqual(builder.remove_account().nonce, 4)
        with self.assertRaises(AccountNotFound) as context:
            await self.client.operation_builder("bob")
        self.assertEqual(context.exception.account_id, "bob")

    async def test_auth_submits_signed_function_call(self):
        transaction = OperationBuilder("alice", 4).remove_account()
        user_op = UserOperation(
            transaction,
            Auth(self.identity.identity, WalletCredentials("c2ln")),
        )
        result = await self.client.auth(user_op)
        self.assertEqual(result, {"big_r": "02ab"})

        signed = self.submitted[0]
        self.assertTrue(signed.verify())
        self.assertEqual(signed.transaction.nonce, 42)
        self.assertEqual(signed.transaction.receiver_id, self.CONTRACT)
        self.assertEqual(signed.transaction.block_hash, b"\x07" * 32)
        call = signed.transaction.actions[0]
        self.assertEqual(call.gas, 300 * TGAS)
        self.assertEqual(call.deposit, 0)
        self.assertEqual(json.loads(call.args), {"user_op": user_op.to_json()})

    async def test_failed_transaction(self):
        with self.assertRaises(ApiError):
            await self.client.add_account("alice", self.identity, deposit=10**21)
        self.assertEqual(self.submitted[0].transaction.actions[0].deposit, 10**21)

    async def test_change_methods_require_signer(self):
        client = AbstractAccountClient("https://rpc.example", self.CONTRACT)
        with self.assertRaises(ConstructionError):
            await client.add_account("alice", self.identity)
        await client.close()

    async def test_replaced_transport_closes_previous_client(self):
        previous = self.client.client
        await self._use_transport(self._handle)
        self.assertTrue(previous.is_closed)
        self.assertFalse(self.client.client.is_closed)

    async def test_http_and_rpc_errors(self):
        def rpc_error(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, json={"error": {"name": "HANDLER_ERROR"}, "id": "x"}
            )

        await self._use_transport(rpc_error)
        with self.assertRaises(ApiError) as context:
            await self.client.list_account_ids()
        self.assertEqual(context.exception.status_code, 200)

        await self._use_transport(
            lambda request: httpx.Response(503, text="unavailable")
        )
        with self.assertRaises(ApiError) as context:
            await self.client.list_account_ids()
        self.assertEqual(context.exception.status_code, 503)
