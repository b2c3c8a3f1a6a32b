# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line helpers for inspecting what the signer and the contract see.

Supported Commands:
- canonicalize: Print the canonical form of a JSON document, the exact text that
  scheme adapters sign
- derive-path: Print the key derivation path of an identity
- account: Print an account's identities and nonce as stored by the contract

Examples:
    Canonicalizing a transaction before signing it::

        python -m chainsig_aa.cli canonicalize --file transaction.json

    Deriving the path of a wallet identity::

        python -m chainsig_aa.cli derive-path \\
            --identity '{"Wallet": {"wallet_type": "Solana", "public_key": "5Ahh..."}}'

    Reading an account::

        python -m chainsig_aa.cli account \\
            --account-id alice \\
            --rpc-url https://rpc.testnet.near.org \\
            --contract-id abstract-account.testnet
"""

import argparse
import asyncio
import contextlib
import io
import json
import os
import sys
import tempfile
import unittest
from typing import List
from unittest import mock

from . import canonical
from .async_client import AbstractAccountClient, Account
from .errors import AbstractAccountError
from .identity import Identity
from .path import derive_path


def canonicalize_file(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return canonical.encode(json.load(f))


def identity_path(identity_json: str) -> str:
    return derive_path(Identity.from_json(json.loads(identity_json)))


async def show_account(account_id: str, rpc_url: str, contract_id: str) -> str:
    client = AbstractAccountClient(rpc_url, contract_id)
    try:
        account = await client.get_account_by_id(account_id)
    finally:
        await client.close()
    if account is None:
        return "null"
    return json.dumps(account.to_json(), indent=2)


async def main(args: List[str]):
    parser = argparse.ArgumentParser(description="chainsig-aa command line tools")
    parser.add_argument(
        "command",
        type=str,
        help="The command to execute",
        choices=["canonicalize", "derive-path", "account"],
    )
    parser.add_argument("--file", help="JSON document to canonicalize", type=str)
    parser.add_argument(
        "--identity", help="Identity in its tagged JSON form", type=str
    )
    parser.add_argument("--account-id", help="Abstract account id", type=str)
    parser.add_argument("--rpc-url", help="NEAR JSON-RPC endpoint", type=str)
    parser.add_argument(
        "--contract-id", help="Account id of the abstract account contract", type=str
    )

    parsed_args = parser.parse_args(args)

    if parsed_args.command == "canonicalize":
        if parsed_args.file is None:
            parser.error("Missing required argument '--file'")
        try:
            print(canonicalize_file(parsed_args.file))
        except FileNotFoundError:
            parser.error(f"File not found: {parsed_args.file}")
        except json.JSONDecodeError as e:
            parser.error(f"Invalid JSON: {e}")
    elif parsed_args.command == "derive-path":
        if parsed_args.identity is None:
            parser.error("Missing required argument '--identity'")
        try:
            print(identity_path(parsed_args.identity))
        except json.JSONDecodeError as e:
            parser.error(f"Invalid JSON: {e}")
        except AbstractAccountError as e:
            parser.error(str(e))
    elif parsed_args.command == "account":
        for name in ("account_id", "rpc_url", "contract_id"):
            if getattr(parsed_args, name) is None:
                parser.error(f"Missing required argument '--{name.replace('_', '-')}'")
        print(
            await show_account(
                parsed_args.account_id, parsed_args.rpc_url, parsed_args.contract_id
            )
        )


def run():
    asyncio.run(main(sys.argv[1:]))


class Test(unittest.IsolatedAsyncioTestCase):
    async def _run(self, args: List[str]) -> str:
        output = io.StringIO()
        with contextlib.redirect_stdout(output):
            await main(args)
        return output.getvalue().strip()

    async def test_canonicalize(self):
        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, "transaction.json")
            with open(path, "w", encoding="utf-8") as f:
                json.dump(
                    {"nonce": 1.0, "account_id": "alice", "action": "RemoveAccount"}, f
                )
            output = await self._run(["canonicalize", "--file", path])
        self.assertEqual(
            output, '{"account_id":"alice","action":"RemoveAccount","nonce":1}'
        )

    async def test_derive_path(self):
        identity = '{"OIDC": {"client_id": "c", "issuer": "https://i", "sub": "42"}}'
        output = await self._run(["derive-path", "--identity", identity])
        self.assertEqual(output, "oidc/https://i/c/42")

    async def test_account(self):
        account = Account([], 3)
        with mock.patch.object(
            AbstractAccountClient, "get_account_by_id", return_value=account
        ):
            output = await self._run(
                [
                    "account",
                    "--account-id",
                    "alice",
                    "--rpc-url",
                    "https://rpc.example",
                    "--contract-id",
                    "aa.testnet",
                ]
            )
        self.assertEqual(json.loads(output), {"identities": [], "nonce": 3})

    async def test_missing_arguments(self):
        with contextlib.redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                await main(["derive-path"])
            with self.assertRaises(SystemExit):
                await main(["account", "--account-id", "alice"])
            with self.assertRaises(SystemExit):
                await main(["derive-path", "--identity", '{"Passkey": {}}'])


if __name__ == "__main__":
    run()
