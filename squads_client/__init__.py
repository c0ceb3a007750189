"""Squads v4 Client - Derive, decode, build and submit Squads v4 multisig operations on Solana."""

__version__ = "1.0.0"

from .client import Deadline, SquadsClient
from .codec import decode, decode_account, encode
from .config import ClientConfig
from .errors import (
    AlreadyVoted,
    CodecError,
    ConfirmationTimeout,
    DerivationExhausted,
    DiscriminatorMismatch,
    InsufficientPermission,
    InvalidArgument,
    InvalidEnumTag,
    MissingSigner,
    NotAMember,
    NotFound,
    OperationCancelled,
    SquadsError,
    StaleProposal,
    StateError,
    TransactionFailed,
    TransportError,
    TruncatedData,
    ValidationError,
    WrongState,
)
from .pda import (
    SQUADS_PROGRAM_ID,
    find_program_address,
    get_ephemeral_signer_pda,
    get_multisig_pda,
    get_program_config_pda,
    get_proposal_pda,
    get_spending_limit_pda,
    get_transaction_pda,
    get_vault_pda,
)
from .proposal import Vote, cast_vote, is_stale, transition
from .signing import KeypairSigner, TransactionSigner
from .transport import RpcTransport, Transport
from .types import (
    ConfigTransaction,
    Member,
    Multisig,
    Period,
    Permission,
    ProgramConfig,
    Proposal,
    ProposalState,
    ProposalStatus,
    SpendingLimit,
    VaultTransaction,
)

__all__ = [
    "SquadsClient",
    "Deadline",
    "ClientConfig",
    "decode",
    "decode_account",
    "encode",
    "SQUADS_PROGRAM_ID",
    "find_program_address",
    "get_program_config_pda",
    "get_multisig_pda",
    "get_vault_pda",
    "get_transaction_pda",
    "get_proposal_pda",
    "get_spending_limit_pda",
    "get_ephemeral_signer_pda",
    "Vote",
    "cast_vote",
    "is_stale",
    "transition",
    "TransactionSigner",
    "KeypairSigner",
    "Transport",
    "RpcTransport",
    "Member",
    "Multisig",
    "Permission",
    "Period",
    "Proposal",
    "ProposalState",
    "ProposalStatus",
    "VaultTransaction",
    "ConfigTransaction",
    "SpendingLimit",
    "ProgramConfig",
    "SquadsError",
    "ValidationError",
    "InvalidArgument",
    "NotAMember",
    "InsufficientPermission",
    "AlreadyVoted",
    "MissingSigner",
    "CodecError",
    "DiscriminatorMismatch",
    "TruncatedData",
    "InvalidEnumTag",
    "DerivationExhausted",
    "NotFound",
    "TransportError",
    "TransactionFailed",
    "ConfirmationTimeout",
    "OperationCancelled",
    "StateError",
    "WrongState",
    "StaleProposal",
]
