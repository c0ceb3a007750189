"""Type definitions for Squads v4 accounts and config actions."""

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Optional, Union

from solders.pubkey import Pubkey


def _spare():
    # bytes past the decoded layout; written back verbatim, ignored by equality
    return field(default=b"", repr=False, compare=False)


def _freeze(obj, *names: str) -> None:
    # list arguments are stored as tuples so snapshots compare and stay immutable
    for name in names:
        object.__setattr__(obj, name, tuple(getattr(obj, name)))


class Permission(IntFlag):
    """Member permission bits."""
    INITIATE = 1
    VOTE = 2
    EXECUTE = 4


ALL_PERMISSIONS = int(Permission.INITIATE | Permission.VOTE | Permission.EXECUTE)

_PERMISSION_NAMES = (
    (Permission.INITIATE, "Initiate"),
    (Permission.VOTE, "Vote"),
    (Permission.EXECUTE, "Execute"),
)


@dataclass(frozen=True)
class Member:
    """Multisig member and its permission mask."""
    key: Pubkey
    permissions: int = ALL_PERMISSIONS

    def has(self, permission: Permission) -> bool:
        return bool(self.permissions & permission)

    def permission_names(self) -> list[str]:
        names = [name for flag, name in _PERMISSION_NAMES if self.permissions & flag]
        return names if names else ["None"]


class ProposalState(IntEnum):
    """Proposal status variants, valued by their on-chain tag."""
    DRAFT = 0
    ACTIVE = 1
    REJECTED = 2
    APPROVED = 3
    EXECUTING = 4
    EXECUTED = 5
    CANCELLED = 6


@dataclass(frozen=True)
class ProposalStatus:
    """Status variant plus the unix timestamp it was entered at (None for Executing)."""
    state: ProposalState
    timestamp: Optional[int] = None


class Period(IntEnum):
    """Spending limit reset cadence."""
    ONE_TIME = 0
    DAY = 1
    WEEK = 2
    MONTH = 3

    @property
    def seconds(self) -> Optional[int]:
        return {
            Period.ONE_TIME: None,
            Period.DAY: 86_400,
            Period.WEEK: 7 * 86_400,
            Period.MONTH: 30 * 86_400,
        }[self]


@dataclass(frozen=True)
class AddMember:
    new_member: Member


@dataclass(frozen=True)
class RemoveMember:
    old_member: Pubkey


@dataclass(frozen=True)
class ChangeThreshold:
    new_threshold: int


@dataclass(frozen=True)
class SetTimeLock:
    new_time_lock: int


@dataclass(frozen=True)
class AddSpendingLimit:
    create_key: Pubkey
    vault_index: int
    mint: Pubkey
    amount: int
    period: Period
    members: tuple[Pubkey, ...]
    destinations: tuple[Pubkey, ...] = ()

    def __post_init__(self):
        _freeze(self, "members", "destinations")


@dataclass(frozen=True)
class RemoveSpendingLimit:
    spending_limit: Pubkey


@dataclass(frozen=True)
class SetRentCollector:
    new_rent_collector: Optional[Pubkey]


ConfigAction = Union[
    AddMember,
    RemoveMember,
    ChangeThreshold,
    SetTimeLock,
    AddSpendingLimit,
    RemoveSpendingLimit,
    SetRentCollector,
]

# Borsh variant order of the program's ConfigAction enum
CONFIG_ACTION_TYPES = (
    AddMember,
    RemoveMember,
    ChangeThreshold,
    SetTimeLock,
    AddSpendingLimit,
    RemoveSpendingLimit,
    SetRentCollector,
)


@dataclass(frozen=True)
class Multisig:
    """Squads v4 multisig account."""
    create_key: Pubkey
    config_authority: Optional[Pubkey]  # None means autonomous
    threshold: int
    time_lock: int
    transaction_index: int
    stale_transaction_index: int
    rent_collector: Optional[Pubkey]
    bump: int
    members: tuple[Member, ...]
    padding: bytes = _spare()

    def __post_init__(self):
        _freeze(self, "members")

    @property
    def is_autonomous(self) -> bool:
        return self.config_authority is None

    def member(self, key: Pubkey) -> Optional[Member]:
        for m in self.members:
            if m.key == key:
                return m
        return None

    def is_member(self, key: Pubkey) -> bool:
        return self.member(key) is not None

    def num_voters(self) -> int:
        return sum(1 for m in self.members if m.has(Permission.VOTE))

    def num_proposers(self) -> int:
        return sum(1 for m in self.members if m.has(Permission.INITIATE))

    def num_executors(self) -> int:
        return sum(1 for m in self.members if m.has(Permission.EXECUTE))

    def cutoff(self) -> int:
        """Rejections needed to reject a proposal."""
        return self.num_voters() - self.threshold + 1


@dataclass(frozen=True)
class Proposal:
    """Voting state for one transaction index."""
    multisig: Pubkey
    transaction_index: int
    status: ProposalStatus
    bump: int
    approved: tuple[Pubkey, ...] = ()
    rejected: tuple[Pubkey, ...] = ()
    cancelled: tuple[Pubkey, ...] = ()
    padding: bytes = _spare()

    def __post_init__(self):
        _freeze(self, "approved", "rejected", "cancelled")

    @property
    def state(self) -> ProposalState:
        return self.status.state

    def has_approved(self, key: Pubkey) -> bool:
        return key in self.approved

    def has_rejected(self, key: Pubkey) -> bool:
        return key in self.rejected

    def has_cancelled(self, key: Pubkey) -> bool:
        return key in self.cancelled

    def has_voted(self, key: Pubkey) -> bool:
        return self.has_approved(key) or self.has_rejected(key) or self.has_cancelled(key)


@dataclass(frozen=True)
class CompiledInstruction:
    program_id_index: int
    account_indexes: bytes
    data: bytes


@dataclass(frozen=True)
class MessageAddressTableLookup:
    account_key: Pubkey
    writable_indexes: bytes
    readonly_indexes: bytes


@dataclass(frozen=True)
class VaultTransactionMessage:
    """Inner message executed by the vault, with account keys in header order."""
    num_signers: int
    num_writable_signers: int
    num_writable_non_signers: int
    account_keys: tuple[Pubkey, ...]
    instructions: tuple[CompiledInstruction, ...]
    address_table_lookups: tuple[MessageAddressTableLookup, ...] = ()

    def __post_init__(self):
        _freeze(self, "account_keys", "instructions", "address_table_lookups")

    def num_all_account_keys(self) -> int:
        from_lookups = sum(
            len(lookup.writable_indexes) + len(lookup.readonly_indexes)
            for lookup in self.address_table_lookups
        )
        return len(self.account_keys) + from_lookups

    def is_signer_index(self, index: int) -> bool:
        return index < self.num_signers

    def is_static_writable_index(self, index: int) -> bool:
        if index >= len(self.account_keys):
            return False
        if index < self.num_writable_signers:
            return True
        if index >= self.num_signers:
            return index - self.num_signers < self.num_writable_non_signers
        return False


@dataclass(frozen=True)
class VaultTransaction:
    """Immutable vault transaction payload."""
    multisig: Pubkey
    creator: Pubkey
    index: int
    bump: int
    vault_index: int
    vault_bump: int
    ephemeral_signer_bumps: bytes
    message: VaultTransactionMessage
    padding: bytes = _spare()


@dataclass(frozen=True)
class ConfigTransaction:
    """Immutable config transaction payload."""
    multisig: Pubkey
    creator: Pubkey
    index: int
    bump: int
    actions: tuple[ConfigAction, ...]
    padding: bytes = _spare()

    def __post_init__(self):
        _freeze(self, "actions")


@dataclass(frozen=True)
class SpendingLimit:
    """Periodically reset budget that members may spend without a proposal."""
    multisig: Pubkey
    create_key: Pubkey
    vault_index: int
    mint: Pubkey
    amount: int
    period: Period
    remaining_amount: int
    last_reset: int
    bump: int
    members: tuple[Pubkey, ...]
    destinations: tuple[Pubkey, ...] = ()
    padding: bytes = _spare()

    def __post_init__(self):
        _freeze(self, "members", "destinations")

    def can_use(self, member: Pubkey) -> bool:
        return member in self.members

    def is_destination_allowed(self, destination: Pubkey) -> bool:
        return not self.destinations or destination in self.destinations

    def available(self, now: int) -> int:
        """Amount spendable at unix time ``now``, accounting for a due period reset."""
        period_seconds = self.period.seconds
        if period_seconds is not None and now - self.last_reset > period_seconds:
            return self.amount
        return self.remaining_amount


@dataclass(frozen=True)
class ProgramConfig:
    """Global program settings, including the creation-fee treasury."""
    authority: Pubkey
    multisig_creation_fee: int
    treasury: Pubkey
    padding: bytes = _spare()


Account = Union[Multisig, Proposal, VaultTransaction, ConfigTransaction, SpendingLimit, ProgramConfig]
