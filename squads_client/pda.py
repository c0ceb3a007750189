"""
Program derived address helpers for the Squads v4 program.

Every seed tuple starts with the literal "multisig" prefix used by the
deployed program. All functions return ``(address, bump)`` and take an
optional ``program_id`` for forks and test deployments.
"""

import struct
from typing import Optional, Sequence

from solders.pubkey import Pubkey

from .errors import DerivationExhausted, InvalidArgument

SQUADS_PROGRAM_ID = Pubkey.from_string("SQDS4ep65T869zMMBKyuUq6aD6EgTu8psMjkvj52pCf")

SEED_PREFIX = b"multisig"
SEED_PROGRAM_CONFIG = b"program_config"
SEED_MULTISIG = b"multisig"
SEED_VAULT = b"vault"
SEED_TRANSACTION = b"transaction"
SEED_PROPOSAL = b"proposal"
SEED_SPENDING_LIMIT = b"spending_limit"
SEED_EPHEMERAL_SIGNER = b"ephemeral_signer"

MAX_SEEDS = 16
MAX_SEED_LEN = 32


def create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Optional[Pubkey]:
    """Address for ``seeds`` (bump included), or None when the hash lands on the curve."""
    try:
        return Pubkey.create_program_address(list(seeds), program_id)
    except Exception:
        # solders raises its unexported PubkeyError; with seeds already
        # checked by the caller that only happens for an on-curve hash
        return None


def find_program_address(seeds: Sequence[bytes], program_id: Optional[Pubkey] = None) -> tuple[Pubkey, int]:
    """Search bumps from 255 down to 0 for the first off-curve address."""
    if program_id is None:
        program_id = SQUADS_PROGRAM_ID
    seeds = [bytes(seed) for seed in seeds]
    if len(seeds) >= MAX_SEEDS:
        raise InvalidArgument(f"At most {MAX_SEEDS - 1} seeds allowed besides the bump, got {len(seeds)}")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InvalidArgument(f"Seed longer than {MAX_SEED_LEN} bytes: {seed!r}")

    for bump in range(255, -1, -1):
        address = create_program_address(seeds + [bytes([bump])], program_id)
        if address is not None:
            return address, bump
    raise DerivationExhausted(f"No valid bump for seeds {seeds!r} under {program_id}")


def _u8(value: int, name: str) -> bytes:
    if not 0 <= value <= 0xFF:
        raise InvalidArgument(f"{name} must fit in u8, got {value}")
    return bytes([value])


def _u64(value: int, name: str) -> bytes:
    if not 0 <= value < 1 << 64:
        raise InvalidArgument(f"{name} must fit in u64, got {value}")
    return struct.pack("<Q", value)


def get_program_config_pda(program_id: Optional[Pubkey] = None) -> tuple[Pubkey, int]:
    return find_program_address([SEED_PREFIX, SEED_PROGRAM_CONFIG], program_id)


def get_multisig_pda(create_key: Pubkey, program_id: Optional[Pubkey] = None) -> tuple[Pubkey, int]:
    return find_program_address([SEED_PREFIX, SEED_MULTISIG, bytes(create_key)], program_id)


def get_vault_pda(multisig: Pubkey, vault_index: int = 0, program_id: Optional[Pubkey] = None) -> tuple[Pubkey, int]:
    return find_program_address(
        [SEED_PREFIX, bytes(multisig), SEED_VAULT, _u8(vault_index, "vault_index")],
        program_id,
    )


def get_transaction_pda(
    multisig: Pubkey, transaction_index: int, program_id: Optional[Pubkey] = None
) -> tuple[Pubkey, int]:
    return find_program_address(
        [SEED_PREFIX, bytes(multisig), SEED_TRANSACTION, _u64(transaction_index, "transaction_index")],
        program_id,
    )


def get_proposal_pda(
    multisig: Pubkey, transaction_index: int, program_id: Optional[Pubkey] = None
) -> tuple[Pubkey, int]:
    return find_program_address(
        [
            SEED_PREFIX,
            bytes(multisig),
            SEED_TRANSACTION,
            _u64(transaction_index, "transaction_index"),
            SEED_PROPOSAL,
        ],
        program_id,
    )


def get_spending_limit_pda(
    multisig: Pubkey, create_key: Pubkey, program_id: Optional[Pubkey] = None
) -> tuple[Pubkey, int]:
    """``create_key`` is any caller-chosen 32-byte identifier for the limit."""
    key = bytes(create_key)
    if len(key) != 32:
        raise InvalidArgument(f"Spending limit create key must be 32 bytes, got {len(key)}")
    return find_program_address([SEED_PREFIX, bytes(multisig), SEED_SPENDING_LIMIT, key], program_id)


def get_ephemeral_signer_pda(
    transaction: Pubkey, ephemeral_signer_index: int, program_id: Optional[Pubkey] = None
) -> tuple[Pubkey, int]:
    return find_program_address(
        [
            SEED_PREFIX,
            bytes(transaction),
            SEED_EPHEMERAL_SIGNER,
            _u8(ephemeral_signer_index, "ephemeral_signer_index"),
        ],
        program_id,
    )
