# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Shared configuration for the example scripts.

Environment Variables:
    CHAINSIG_AA_RPC_URL: NEAR JSON-RPC endpoint
    CHAINSIG_AA_CONTRACT_ID: Account id of the abstract account contract
    CHAINSIG_AA_SIGNER_ID: Relayer account that pays for submitted operations
    CHAINSIG_AA_SIGNER_KEY: Relayer full access key, ``ed25519:<base58>``
    CHAINSIG_AA_MPC_CONTRACT_ID: Chain signature contract targeted by Sign actions
"""

import os

RPC_URL = os.getenv("CHAINSIG_AA_RPC_URL", "https://rpc.testnet.near.org")

CONTRACT_ID = os.getenv("CHAINSIG_AA_CONTRACT_ID", "abstract-account.testnet")

# Change methods are skipped when no relayer is configured
SIGNER_ID = os.getenv("CHAINSIG_AA_SIGNER_ID")
SIGNER_KEY = os.getenv("CHAINSIG_AA_SIGNER_KEY")

MPC_CONTRACT_ID = os.getenv("CHAINSIG_AA_MPC_CONTRACT_ID", "v1.signer-prod.testnet")
