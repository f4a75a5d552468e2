"""
CCTP Relay: Token Transfers With Payloads

Lets a program burn tokens on one chain and deliver, alongside the mint on
another chain, an opaque payload that the receiving program can trust was
produced by exactly that burn. Minting is delegated to the circle-style
burn/mint subsystem; authenticity of the message carrying the payload is
delegated to an attested message relay.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                            TOKEN RELAY                                  │
    │                                                                         │
    │  FACADE                                                                 │
    │    relay.py        TokenRelay: transfer, redeem, redeem_and_mint        │
    │                                                                         │
    │  PROTOCOL                                                               │
    │    witness.py      Single-use burn witness and publish                  │
    │    correlator.py   Tie a verified message to exactly one burn           │
    │    ratchet.py      Dependency-only upgrades that never downgrade        │
    │    ledger.py       Consume-once registry of message digests             │
    │    codec.py        Byte-exact Deposit encoding and tagged envelope      │
    │                                                                         │
    │  FOUNDATION                                                             │
    │    hardening.py    Errors, validators, single-use capabilities          │
    │    interfaces.py   Burn/mint, message relay and upgrade protocols       │
    │    adapters.py     In-memory collaborators with Ed25519 guardians       │
    │    config.py       YAML + environment configuration, schema checked     │
    │    observability.py Structured logs and hash-chained audit trail        │
    │                                                                         │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Deposit: The transfer descriptor carried in every relayed message. All of
    its fields except the auxiliary payload are copied from the burn.

    Burn Witness: Proof that a burn happened. Only a burn produces one and
    only publish spends one, so every published Deposit maps to exactly one
    burn.

    Replay Ledger: Digests of verified messages already processed. A digest
    is consumed at most once; a failed redemption releases it.

Copyright © 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.1.0"


# Lazy imports to avoid pulling in cryptography and yaml on package import
def __getattr__(name):
    """Lazy import relay modules on first access."""

    if name in ("Deposit", "Payload", "PayloadKind", "encode_deposit", "decode_deposit",
                "encode_payload", "decode_payload", "MAX_AUX_PAYLOAD_LENGTH",
                "DEPOSIT_FIXED_LENGTH"):
        from cctp_relay import codec
        return getattr(codec, name)

    if name in ("BurnWitness", "burn", "burn_with_caller", "publish"):
        from cctp_relay import witness
        return getattr(witness, name)

    if name in ("AcceptedTransfer", "consume_payload", "mint"):
        from cctp_relay import correlator
        return getattr(correlator, name)

    if name in ("DependencyUpgradeCap", "CheckToken", "TrackedDependency", "init_upgrade_policy",
                "authorize_upgrade", "commit_upgrade", "check_dep_versions"):
        from cctp_relay import ratchet
        return getattr(ratchet, name)

    if name in ("ReplayLedger",):
        from cctp_relay import ledger
        return getattr(ledger, name)

    if name in ("TokenRelay",):
        from cctp_relay import relay
        return getattr(relay, name)

    if name in ("RelayError", "CodecError", "CorrelationError", "UpgradeError",
                "CapabilityError", "PublishFailed", "external_address"):
        from cctp_relay import hardening
        return getattr(hardening, name)

    if name in ("ConfigManager", "get_config"):
        from cctp_relay import config
        return getattr(config, name)

    raise AttributeError(f"module 'cctp_relay' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Codec
    "Deposit",
    "Payload",
    "PayloadKind",
    "encode_deposit",
    "decode_deposit",
    "encode_payload",
    "decode_payload",
    "MAX_AUX_PAYLOAD_LENGTH",
    "DEPOSIT_FIXED_LENGTH",
    # Protocol
    "BurnWitness",
    "burn",
    "burn_with_caller",
    "publish",
    "AcceptedTransfer",
    "consume_payload",
    "mint",
    "DependencyUpgradeCap",
    "CheckToken",
    "TrackedDependency",
    "init_upgrade_policy",
    "authorize_upgrade",
    "commit_upgrade",
    "check_dep_versions",
    "ReplayLedger",
    "TokenRelay",
    # Errors
    "RelayError",
    "CodecError",
    "CorrelationError",
    "UpgradeError",
    "CapabilityError",
    "PublishFailed",
    "external_address",
    # Config
    "ConfigManager",
    "get_config",
]
