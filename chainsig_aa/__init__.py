# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
chainsig-aa - client library for contract controlled abstract accounts.

An abstract account lives in a smart contract and is controlled by any of the
identities registered on it: WebAuthn passkeys, Ethereum or Solana wallets, and OIDC
identity tokens. Every state change is a ``Transaction`` carrying the account's
nonce, serialized to canonical JSON (RFC 8785) and signed by one identity through its
scheme. The contract re-derives the same canonical bytes to verify the proof and, for
``Sign`` actions, requests a chain signature under the path derived from the identity.

Modules:
- **identity**, **transactions**: the data model, as tagged variants with ``to_json``
  and ``from_json`` in the contract's JSON shape
- **canonical**: the canonical JSON encoder
- **path**: identity to key derivation path
- **webauthn**, **ethereum**, **solana**, **oidc**: one adapter per scheme
- **auth_adapter**: ``AuthConfig`` and the ``AuthAdapter`` dispatcher
- **oauth**: PKCE popup login producing the ID token used by the OIDC scheme
- **operations**: ``OperationBuilder`` / ``TransactionBuilder``
- **async_client**: the contract gateway over NEAR JSON-RPC
- **borsh**, **near**: NEAR transaction encoding and keys for the gateway

Quick Start:
    Registering a Solana wallet on an existing account, then signing a payload::

        import asyncio
        from chainsig_aa.async_client import AbstractAccountClient
        from chainsig_aa.auth_adapter import (
            AuthAdapter,
            AuthConfig,
            WalletConfig,
            WebAuthnConfig,
        )
        from chainsig_aa.operations import user_operation
        from chainsig_aa.transactions import SignPayloadsRequest, SignRequest

        async def main():
            client = AbstractAccountClient(rpc_url, contract_id, signer_id, key)
            adapter = AuthAdapter(solana_wallets={"phantom": phantom})
            config = AuthConfig(WalletConfig("solana", "phantom"))
            passkey_config = AuthConfig(WebAuthnConfig("alice", operation="get"))

            builder = await client.operation_builder("alice")
            identity = await adapter.get_identity(config)
            transaction = builder.add_identity(identity)
            result = await adapter.sign(transaction, passkey_config)
            await client.auth(user_operation(transaction, result))

            builder = await client.operation_builder("alice")
            request = SignRequest(payload_hash, path="", key_version=0)
            transaction = builder.sign_payloads(
                SignPayloadsRequest("v1.signer-prod.testnet", [request])
            )
            result = await adapter.sign(transaction, config)
            signature = await client.auth(user_operation(transaction, result))

            await client.close()

        asyncio.run(main())

Requirements:
    - httpx for JSON-RPC and the OAuth token exchange
    - ecdsa and cbor2 for WebAuthn keys and attestations
    - eth-keys and eth-utils for Ethereum key recovery and addresses
    - pynacl and base58 for Solana signatures and NEAR keys
    - PyJWT for reading ID token claims

License:
    Apache License 2.0
"""
