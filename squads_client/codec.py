"""
Binary codec for Squads v4 accounts.

Anchor account layout:
- bytes 0-7: discriminator, sha256("account:<Name>")[:8]
- then Borsh fields in declaration order: little-endian integers, 32-byte
  pubkeys, u32-prefixed vectors, 1-byte option flags, 1-byte enum tags

The Reader and Writer here are also used to encode instruction arguments.
"""

import hashlib
import struct
from dataclasses import replace
from typing import Callable, Optional, Sequence, Type, TypeVar, get_args

from solders.pubkey import Pubkey

from .errors import DiscriminatorMismatch, InvalidArgument, InvalidEnumTag, TruncatedData
from .types import (
    CONFIG_ACTION_TYPES,
    Account,
    AddMember,
    AddSpendingLimit,
    ChangeThreshold,
    CompiledInstruction,
    ConfigAction,
    ConfigTransaction,
    Member,
    MessageAddressTableLookup,
    Multisig,
    Period,
    ProgramConfig,
    Proposal,
    ProposalState,
    ProposalStatus,
    RemoveMember,
    RemoveSpendingLimit,
    SetRentCollector,
    SetTimeLock,
    SpendingLimit,
    VaultTransaction,
    VaultTransactionMessage,
)

T = TypeVar("T")

DISCRIMINATOR_SIZE = 8

MULTISIG_DISCRIMINATOR = bytes.fromhex("e07479ba44a14fec")
PROPOSAL_DISCRIMINATOR = bytes.fromhex("1a5ebdbb74883521")
VAULT_TRANSACTION_DISCRIMINATOR = bytes.fromhex("a8faa264510ea2cf")
CONFIG_TRANSACTION_DISCRIMINATOR = bytes.fromhex("5e080423718b8b70")
SPENDING_LIMIT_DISCRIMINATOR = bytes.fromhex("0ac91ba0dac3de98")
PROGRAM_CONFIG_DISCRIMINATOR = bytes.fromhex("c4d25ae790958c3f")


def discriminator(namespace: str, name: str) -> bytes:
    """Anchor discriminator: first 8 bytes of sha256("<namespace>:<name>")."""
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:DISCRIMINATOR_SIZE]


class Reader:
    """Sequential little-endian reader over account or argument bytes."""

    def __init__(self, data: bytes, offset: int = 0, address: Optional[str] = None):
        self.data = bytes(data)
        self.offset = offset
        self.address = address

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise TruncatedData(
                f"Need {size} bytes at offset {self.offset}, only {self.remaining} left",
                self.address,
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def _unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))[0]

    def u8(self) -> int:
        return self._unpack("<B")

    def u16(self) -> int:
        return self._unpack("<H")

    def u32(self) -> int:
        return self._unpack("<I")

    def u64(self) -> int:
        return self._unpack("<Q")

    def i64(self) -> int:
        return self._unpack("<q")

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.take(32))

    def tag(self, limit: int, what: str) -> int:
        value = self.u8()
        if value >= limit:
            raise InvalidEnumTag(
                f"{what} tag {value} at offset {self.offset - 1} is out of range", self.address
            )
        return value

    def option(self, read: Callable[[], T]) -> Optional[T]:
        if self.tag(2, "Option") == 0:
            return None
        return read()

    def vec(self, read: Callable[[], T], min_item_size: int = 1) -> tuple[T, ...]:
        count = self.u32()
        # reject absurd counts before looping over them
        if count * min_item_size > self.remaining:
            raise TruncatedData(
                f"Vector of {count} items at offset {self.offset - 4} exceeds {self.remaining} remaining bytes",
                self.address,
            )
        return tuple(read() for _ in range(count))

    def byte_vec(self) -> bytes:
        return self.take(self.u32())


class Writer:
    """Sequential little-endian writer; the inverse of Reader."""

    def __init__(self):
        self.buf = bytearray()

    def getvalue(self) -> bytes:
        return bytes(self.buf)

    def raw(self, data: bytes) -> "Writer":
        self.buf += data
        return self

    def _pack(self, fmt: str, value: int) -> "Writer":
        try:
            self.buf += struct.pack(fmt, value)
        except struct.error as e:
            raise InvalidArgument(f"Value {value!r} does not fit {fmt}: {e}") from e
        return self

    def u8(self, value: int) -> "Writer":
        return self._pack("<B", value)

    def u16(self, value: int) -> "Writer":
        return self._pack("<H", value)

    def u32(self, value: int) -> "Writer":
        return self._pack("<I", value)

    def u64(self, value: int) -> "Writer":
        return self._pack("<Q", value)

    def i64(self, value: int) -> "Writer":
        return self._pack("<q", value)

    def bool(self, value: bool) -> "Writer":
        return self.u8(1 if value else 0)

    def pubkey(self, key: Pubkey) -> "Writer":
        if not isinstance(key, Pubkey):
            raise InvalidArgument(f"Expected a Pubkey, got {type(key).__name__}")
        self.buf += bytes(key)
        return self

    def option(self, value, write: Callable) -> "Writer":
        if value is None:
            return self.u8(0)
        self.u8(1)
        write(value)
        return self

    def vec(self, items: Sequence, write: Callable) -> "Writer":
        self.u32(len(items))
        for item in items:
            write(item)
        return self

    def byte_vec(self, data: bytes) -> "Writer":
        self.u32(len(data))
        return self.raw(bytes(data))

    def string(self, value: str) -> "Writer":
        return self.byte_vec(value.encode("utf-8"))


# Shared field codecs

def read_member(r: Reader) -> Member:
    key = r.pubkey()
    return Member(key=key, permissions=r.u8())


def write_member(w: Writer, member: Member) -> None:
    w.pubkey(member.key).u8(member.permissions)


def read_period(r: Reader) -> Period:
    return Period(r.tag(len(Period), "Period"))


def read_config_action(r: Reader) -> ConfigAction:
    kind = CONFIG_ACTION_TYPES[r.tag(len(CONFIG_ACTION_TYPES), "ConfigAction")]
    if kind is AddMember:
        return AddMember(read_member(r))
    if kind is RemoveMember:
        return RemoveMember(r.pubkey())
    if kind is ChangeThreshold:
        return ChangeThreshold(r.u16())
    if kind is SetTimeLock:
        return SetTimeLock(r.u32())
    if kind is AddSpendingLimit:
        return AddSpendingLimit(
            create_key=r.pubkey(),
            vault_index=r.u8(),
            mint=r.pubkey(),
            amount=r.u64(),
            period=read_period(r),
            members=r.vec(r.pubkey, 32),
            destinations=r.vec(r.pubkey, 32),
        )
    if kind is RemoveSpendingLimit:
        return RemoveSpendingLimit(r.pubkey())
    return SetRentCollector(r.option(r.pubkey))


def write_config_action(w: Writer, action: ConfigAction) -> None:
    try:
        w.u8(CONFIG_ACTION_TYPES.index(type(action)))
    except ValueError:
        raise InvalidArgument(f"Unknown config action: {action!r}") from None
    if isinstance(action, AddMember):
        write_member(w, action.new_member)
    elif isinstance(action, RemoveMember):
        w.pubkey(action.old_member)
    elif isinstance(action, ChangeThreshold):
        w.u16(action.new_threshold)
    elif isinstance(action, SetTimeLock):
        w.u32(action.new_time_lock)
    elif isinstance(action, AddSpendingLimit):
        w.pubkey(action.create_key).u8(action.vault_index).pubkey(action.mint)
        w.u64(action.amount).u8(Period(action.period))
        w.vec(action.members, w.pubkey).vec(action.destinations, w.pubkey)
    elif isinstance(action, RemoveSpendingLimit):
        w.pubkey(action.spending_limit)
    else:
        w.option(action.new_rent_collector, w.pubkey)


# Account bodies (everything after the discriminator)

def _read_multisig(r: Reader) -> Multisig:
    create_key = r.pubkey()
    config_authority = r.pubkey()
    threshold = r.u16()
    time_lock = r.u32()
    transaction_index = r.u64()
    stale_transaction_index = r.u64()
    # No padding when the option is None, bump follows the flag directly
    rent_collector = r.option(r.pubkey)
    bump = r.u8()
    members = r.vec(lambda: read_member(r), 33)
    return Multisig(
        create_key=create_key,
        config_authority=None if config_authority == Pubkey.default() else config_authority,
        threshold=threshold,
        time_lock=time_lock,
        transaction_index=transaction_index,
        stale_transaction_index=stale_transaction_index,
        rent_collector=rent_collector,
        bump=bump,
        members=members,
    )


def _write_multisig(w: Writer, ms: Multisig) -> None:
    w.pubkey(ms.create_key)
    w.pubkey(Pubkey.default() if ms.config_authority is None else ms.config_authority)
    w.u16(ms.threshold).u32(ms.time_lock)
    w.u64(ms.transaction_index).u64(ms.stale_transaction_index)
    w.option(ms.rent_collector, w.pubkey)
    w.u8(ms.bump)
    w.vec(ms.members, lambda m: write_member(w, m))


def _read_proposal_status(r: Reader) -> ProposalStatus:
    state = ProposalState(r.tag(len(ProposalState), "ProposalStatus"))
    if state is ProposalState.EXECUTING:
        return ProposalStatus(state)
    return ProposalStatus(state, r.i64())


def _write_proposal_status(w: Writer, status: ProposalStatus) -> None:
    state = ProposalState(status.state)
    w.u8(state)
    if state is ProposalState.EXECUTING:
        if status.timestamp is not None:
            raise InvalidArgument("Executing proposal status carries no timestamp")
        return
    if status.timestamp is None:
        raise InvalidArgument(f"{state.name.title()} proposal status needs a timestamp")
    w.i64(status.timestamp)


def _read_proposal(r: Reader) -> Proposal:
    return Proposal(
        multisig=r.pubkey(),
        transaction_index=r.u64(),
        status=_read_proposal_status(r),
        bump=r.u8(),
        approved=r.vec(r.pubkey, 32),
        rejected=r.vec(r.pubkey, 32),
        cancelled=r.vec(r.pubkey, 32),
    )


def _write_proposal(w: Writer, p: Proposal) -> None:
    w.pubkey(p.multisig).u64(p.transaction_index)
    _write_proposal_status(w, p.status)
    w.u8(p.bump)
    w.vec(p.approved, w.pubkey).vec(p.rejected, w.pubkey).vec(p.cancelled, w.pubkey)


def _read_vault_message(r: Reader) -> VaultTransactionMessage:
    def read_instruction():
        return CompiledInstruction(
            program_id_index=r.u8(),
            account_indexes=r.byte_vec(),
            data=r.byte_vec(),
        )

    def read_lookup():
        return MessageAddressTableLookup(
            account_key=r.pubkey(),
            writable_indexes=r.byte_vec(),
            readonly_indexes=r.byte_vec(),
        )

    return VaultTransactionMessage(
        num_signers=r.u8(),
        num_writable_signers=r.u8(),
        num_writable_non_signers=r.u8(),
        account_keys=r.vec(r.pubkey, 32),
        instructions=r.vec(read_instruction, 9),
        address_table_lookups=r.vec(read_lookup, 40),
    )


def _write_vault_message(w: Writer, msg: VaultTransactionMessage) -> None:
    def write_instruction(ix: CompiledInstruction):
        w.u8(ix.program_id_index).byte_vec(ix.account_indexes).byte_vec(ix.data)

    def write_lookup(lookup: MessageAddressTableLookup):
        w.pubkey(lookup.account_key)
        w.byte_vec(lookup.writable_indexes).byte_vec(lookup.readonly_indexes)

    w.u8(msg.num_signers).u8(msg.num_writable_signers).u8(msg.num_writable_non_signers)
    w.vec(msg.account_keys, w.pubkey)
    w.vec(msg.instructions, write_instruction)
    w.vec(msg.address_table_lookups, write_lookup)


def _read_vault_transaction(r: Reader) -> VaultTransaction:
    return VaultTransaction(
        multisig=r.pubkey(),
        creator=r.pubkey(),
        index=r.u64(),
        bump=r.u8(),
        vault_index=r.u8(),
        vault_bump=r.u8(),
        ephemeral_signer_bumps=r.byte_vec(),
        message=_read_vault_message(r),
    )


def _write_vault_transaction(w: Writer, tx: VaultTransaction) -> None:
    w.pubkey(tx.multisig).pubkey(tx.creator).u64(tx.index)
    w.u8(tx.bump).u8(tx.vault_index).u8(tx.vault_bump)
    w.byte_vec(tx.ephemeral_signer_bumps)
    _write_vault_message(w, tx.message)


def _read_config_transaction(r: Reader) -> ConfigTransaction:
    return ConfigTransaction(
        multisig=r.pubkey(),
        creator=r.pubkey(),
        index=r.u64(),
        bump=r.u8(),
        actions=r.vec(lambda: read_config_action(r), 2),
    )


def _write_config_transaction(w: Writer, tx: ConfigTransaction) -> None:
    w.pubkey(tx.multisig).pubkey(tx.creator).u64(tx.index).u8(tx.bump)
    w.vec(tx.actions, lambda a: write_config_action(w, a))


def _read_spending_limit(r: Reader) -> SpendingLimit:
    return SpendingLimit(
        multisig=r.pubkey(),
        create_key=r.pubkey(),
        vault_index=r.u8(),
        mint=r.pubkey(),
        amount=r.u64(),
        period=read_period(r),
        remaining_amount=r.u64(),
        last_reset=r.i64(),
        bump=r.u8(),
        members=r.vec(r.pubkey, 32),
        destinations=r.vec(r.pubkey, 32),
    )


def _write_spending_limit(w: Writer, sl: SpendingLimit) -> None:
    w.pubkey(sl.multisig).pubkey(sl.create_key).u8(sl.vault_index).pubkey(sl.mint)
    w.u64(sl.amount).u8(Period(sl.period)).u64(sl.remaining_amount).i64(sl.last_reset)
    w.u8(sl.bump)
    w.vec(sl.members, w.pubkey).vec(sl.destinations, w.pubkey)


def _read_program_config(r: Reader) -> ProgramConfig:
    return ProgramConfig(
        authority=r.pubkey(),
        multisig_creation_fee=r.u64(),
        treasury=r.pubkey(),
    )


def _write_program_config(w: Writer, pc: ProgramConfig) -> None:
    w.pubkey(pc.authority).u64(pc.multisig_creation_fee).pubkey(pc.treasury)


_CODECS = {
    Multisig: (MULTISIG_DISCRIMINATOR, _read_multisig, _write_multisig),
    Proposal: (PROPOSAL_DISCRIMINATOR, _read_proposal, _write_proposal),
    VaultTransaction: (VAULT_TRANSACTION_DISCRIMINATOR, _read_vault_transaction, _write_vault_transaction),
    ConfigTransaction: (CONFIG_TRANSACTION_DISCRIMINATOR, _read_config_transaction, _write_config_transaction),
    SpendingLimit: (SPENDING_LIMIT_DISCRIMINATOR, _read_spending_limit, _write_spending_limit),
    ProgramConfig: (PROGRAM_CONFIG_DISCRIMINATOR, _read_program_config, _write_program_config),
}

if set(_CODECS) != set(get_args(Account)):
    raise RuntimeError("Account codec table does not cover every account type")

_BY_DISCRIMINATOR = {disc: account_type for account_type, (disc, _, _) in _CODECS.items()}


def _check_header(data: bytes, expected: bytes, name: str, address: Optional[str]) -> None:
    if len(data) < DISCRIMINATOR_SIZE:
        raise TruncatedData(f"{name} account data is {len(data)} bytes, shorter than its discriminator", address)
    if data[:DISCRIMINATOR_SIZE] != expected:
        raise DiscriminatorMismatch(
            f"Expected {name} discriminator {expected.hex()}, got {data[:DISCRIMINATOR_SIZE].hex()}",
            address,
        )


def decode(account_type: Type[T], data: bytes, address: Optional[str] = None) -> T:
    """Decode ``data`` as ``account_type``. Trailing bytes (spare account space) are kept as ``padding``."""
    disc, read, _ = _CODECS[account_type]
    _check_header(data, disc, account_type.__name__, address)
    r = Reader(data, DISCRIMINATOR_SIZE, address)
    account = read(r)
    if r.remaining:
        account = replace(account, padding=r.take(r.remaining))
    return account


def encode(account: Account) -> bytes:
    """Encode an account, discriminator included."""
    try:
        disc, _, write = _CODECS[type(account)]
    except KeyError:
        raise InvalidArgument(f"Not an account type: {type(account).__name__}") from None
    w = Writer().raw(disc)
    write(w, account)
    w.raw(account.padding)
    return w.getvalue()


def decode_account(data: bytes, address: Optional[str] = None) -> Account:
    """Decode any known account by its discriminator."""
    if len(data) < DISCRIMINATOR_SIZE:
        raise TruncatedData(f"Account data is {len(data)} bytes, shorter than a discriminator", address)
    account_type = _BY_DISCRIMINATOR.get(bytes(data[:DISCRIMINATOR_SIZE]))
    if account_type is None:
        raise DiscriminatorMismatch(
            f"Unknown account discriminator {bytes(data[:DISCRIMINATOR_SIZE]).hex()}", address
        )
    return decode(account_type, data, address)


def decode_multisig(data: bytes, address: Optional[str] = None) -> Multisig:
    return decode(Multisig, data, address)


def decode_proposal(data: bytes, address: Optional[str] = None) -> Proposal:
    return decode(Proposal, data, address)


def decode_vault_transaction(data: bytes, address: Optional[str] = None) -> VaultTransaction:
    return decode(VaultTransaction, data, address)


def decode_config_transaction(data: bytes, address: Optional[str] = None) -> ConfigTransaction:
    return decode(ConfigTransaction, data, address)


def decode_spending_limit(data: bytes, address: Optional[str] = None) -> SpendingLimit:
    return decode(SpendingLimit, data, address)


def decode_program_config(data: bytes, address: Optional[str] = None) -> ProgramConfig:
    return decode(ProgramConfig, data, address)
