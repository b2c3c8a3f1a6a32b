# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Register identities on an abstract account and request a chain signature.

The platform handles a browser would inject, the passkey authenticator and the Solana
wallet extension, are replaced by the in-memory implementations shipped with the
package, so the script runs unattended. Every operation it submits is a real
canonical transaction signed through :class:`~chainsig_aa.auth_adapter.AuthAdapter`.

Workflow:
    1. Create a passkey and register a new account controlled by it
    2. Add a Solana wallet to the account, authorized by the passkey
    3. Ask for a signature over a 32 byte payload, authorized by the wallet, under
       the path derived from the wallet identity

Without CHAINSIG_AA_SIGNER_ID and CHAINSIG_AA_SIGNER_KEY the script only prints the
canonical messages it would have signed.

Examples:
    python -m examples.register_and_sign
"""

import asyncio
import hashlib
import os

from chainsig_aa import canonical
from chainsig_aa.async_client import AbstractAccountClient
from chainsig_aa.auth_adapter import (
    SOLANA,
    AuthAdapter,
    AuthConfig,
    WalletConfig,
    WebAuthnConfig,
)
from chainsig_aa.near import PrivateKey
from chainsig_aa.operations import OperationBuilder, user_operation
from chainsig_aa.path import derive_path
from chainsig_aa.solana import FakeSolanaWallet
from chainsig_aa.transactions import SignPayloadsRequest, SignRequest
from chainsig_aa.webauthn import FakeAuthenticator

from .common import CONTRACT_ID, MPC_CONTRACT_ID, RPC_URL, SIGNER_ID, SIGNER_KEY


async def main():
    signer_key = PrivateKey.from_str(SIGNER_KEY) if SIGNER_KEY else None
    client = AbstractAccountClient(RPC_URL, CONTRACT_ID, SIGNER_ID, signer_key)
    adapter = AuthAdapter(
        credentials=FakeAuthenticator(),
        rp_id="wallet.example.com",
        solana_wallets={"phantom": FakeSolanaWallet()},
    )
    account_id = f"example-{os.urandom(4).hex()}"
    passkey = AuthConfig(WebAuthnConfig(account_id))
    wallet = AuthConfig(WalletConfig(SOLANA, "phantom"))
    online = signer_key is not None

    passkey_identity = await adapter.get_identity_with_permissions(passkey)
    wallet_identity = await adapter.get_identity(wallet)

    print("\n=== Identities ===")
    print(f"Passkey: {derive_path(passkey_identity.identity)}")
    print(f"Wallet: {derive_path(wallet_identity)}")

    if online:
        await client.add_account(account_id, passkey_identity)
        builder = await client.operation_builder(account_id)
    else:
        builder = OperationBuilder(account_id, 0)

    transaction = builder.add_identity(wallet_identity)
    result = await adapter.sign(transaction, passkey)
    # Assertions only name the credential; the contract matches the registered key.
    result.identity = result.identity.inject_compressed_public_key([passkey_identity])
    print("\n=== Add wallet ===")
    print(canonical.encode(transaction))
    if online:
        await client.auth(user_operation(transaction, result))
        builder = await client.operation_builder(account_id)
    else:
        builder = OperationBuilder(account_id, builder.nonce + 1)

    payload = hashlib.sha256(b"hello from chainsig-aa").digest()
    transaction = builder.sign_payloads(
        SignPayloadsRequest(MPC_CONTRACT_ID, [SignRequest(payload, path="")])
    )
    result = await adapter.sign(transaction, wallet)
    print("\n=== Sign payload ===")
    print(canonical.encode(transaction))
    if online:
        signature = await client.auth(user_operation(transaction, result))
        print(f"Signature: {signature}")

    await client.close()


if __name__ == "__main__":
    asyncio.run(main())
