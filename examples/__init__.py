"""
Example scripts for chainsig-aa.

- register_and_sign.py: registers a Solana wallet and a passkey on an account, then
  requests a chain signature authorized by the passkey

Run them as modules, configured through the variables in examples.common::

    CHAINSIG_AA_SIGNER_ID=relayer.testnet \\
    CHAINSIG_AA_SIGNER_KEY=ed25519:... \\
    python -m examples.register_and_sign
"""
