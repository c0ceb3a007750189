"""
Instruction builders for the Squads v4 program.

Each builder returns a ``solders`` Instruction whose data is the 8-byte
discriminator sha256("global:<instruction>")[:8] followed by the Borsh
encoded arguments. Account order is fixed by the program. Builders validate
their arguments and never touch the network.
"""

from typing import Optional, Sequence

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from . import pda
from .codec import Writer, write_config_action, write_member
from .errors import InsufficientPermission, InvalidArgument
from .message import encode_transaction_message
from .types import (
    AddMember,
    AddSpendingLimit,
    ChangeThreshold,
    ConfigAction,
    Member,
    Period,
    Permission,
    RemoveSpendingLimit,
    SetTimeLock,
    SpendingLimit,
    VaultTransaction,
    VaultTransactionMessage,
)

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

MAX_MEMBERS = 0xFFFF
MAX_TIME_LOCK = 3 * 30 * 24 * 60 * 60

MULTISIG_CREATE_V2 = bytes.fromhex("32ddc75d28f58be9")
MULTISIG_ADD_SPENDING_LIMIT = bytes.fromhex("0bf29f2a56c55973")
VAULT_TRANSACTION_CREATE = bytes.fromhex("30fa4ea8d0e2dad3")
VAULT_TRANSACTION_EXECUTE = bytes.fromhex("c208a15799a419ab")
CONFIG_TRANSACTION_CREATE = bytes.fromhex("9bec57e4894b5127")
CONFIG_TRANSACTION_EXECUTE = bytes.fromhex("7292f4bdfc8c2428")
PROPOSAL_CREATE = bytes.fromhex("dc3c49e01e6c4f9f")
PROPOSAL_ACTIVATE = bytes.fromhex("0b225cf89a1b336a")
PROPOSAL_APPROVE = bytes.fromhex("9025a488bcd82af8")
PROPOSAL_REJECT = bytes.fromhex("f33e869ce66af687")
PROPOSAL_CANCEL = bytes.fromhex("1b2a7fed26a354cb")
SPENDING_LIMIT_USE = bytes.fromhex("1039827fc1149b86")


def _program(program_id: Optional[Pubkey]) -> Pubkey:
    return pda.SQUADS_PROGRAM_ID if program_id is None else program_id


def _meta(key: Pubkey, signer: bool = False, writable: bool = False) -> AccountMeta:
    return AccountMeta(pubkey=key, is_signer=signer, is_writable=writable)


def _instruction(program_id: Pubkey, discriminator: bytes, accounts: list[AccountMeta],
                 args: Optional[Writer] = None) -> Instruction:
    data = discriminator + (args.getvalue() if args is not None else b"")
    return Instruction(program_id, data, accounts)


def _check_transaction_index(transaction_index: int) -> None:
    if transaction_index < 1:
        raise InvalidArgument(f"Transaction index starts at 1, got {transaction_index}")


def _check_unique(keys: Sequence[Pubkey], what: str) -> None:
    seen = set()
    for key in keys:
        if key in seen:
            raise InvalidArgument(f"Duplicate {what}: {key}")
        seen.add(key)


def validate_members(members: Sequence[Member], threshold: int) -> None:
    """Check the member list and threshold the way the program does on creation."""
    if not members:
        raise InvalidArgument("At least one member is required")
    if len(members) > MAX_MEMBERS:
        raise InvalidArgument(f"At most {MAX_MEMBERS} members allowed, got {len(members)}")
    _check_unique([m.key for m in members], "member")
    for m in members:
        if not 0 <= m.permissions <= 7:
            raise InvalidArgument(f"Unknown permission bits {m.permissions:#x} for {m.key}")

    voters = sum(1 for m in members if m.has(Permission.VOTE))
    if not any(m.has(Permission.INITIATE) for m in members):
        raise InvalidArgument("At least one member needs the Initiate permission")
    if voters == 0:
        raise InvalidArgument("At least one member needs the Vote permission")
    if not any(m.has(Permission.EXECUTE) for m in members):
        raise InvalidArgument("At least one member needs the Execute permission")
    if not 1 <= threshold <= voters:
        raise InvalidArgument(f"Threshold must be between 1 and {voters} voting members, got {threshold}")


def _check_time_lock(time_lock: int) -> None:
    if not 0 <= time_lock <= MAX_TIME_LOCK:
        raise InvalidArgument(f"Time lock must be between 0 and {MAX_TIME_LOCK} seconds, got {time_lock}")


def _write_memo(w: Writer, memo: Optional[str]) -> Writer:
    return w.option(memo, w.string)


def multisig_create_v2(
    program_config: Pubkey,
    treasury: Pubkey,
    create_key: Pubkey,
    creator: Pubkey,
    threshold: int,
    members: Sequence[Member],
    time_lock: int = 0,
    config_authority: Optional[Pubkey] = None,
    rent_collector: Optional[Pubkey] = None,
    memo: Optional[str] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    """
    Create a multisig at the PDA of ``create_key``.

    ``config_authority=None`` creates an autonomous multisig governed by its
    members; an address makes that key the controlling authority.
    """
    program_id = _program(program_id)
    validate_members(members, threshold)
    _check_time_lock(time_lock)
    multisig, _ = pda.get_multisig_pda(create_key, program_id)

    args = Writer()
    args.option(config_authority, args.pubkey)
    args.u16(threshold)
    args.vec(members, lambda m: write_member(args, m))
    args.u32(time_lock)
    args.option(rent_collector, args.pubkey)
    _write_memo(args, memo)

    accounts = [
        _meta(program_config),
        _meta(treasury, writable=True),
        _meta(multisig, writable=True),
        _meta(create_key, signer=True),
        _meta(creator, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return _instruction(program_id, MULTISIG_CREATE_V2, accounts, args)


def _validate_spending_limit(amount: int, members: Sequence[Pubkey], destinations: Sequence[Pubkey]) -> None:
    if amount <= 0:
        raise InvalidArgument(f"Spending limit amount must be positive, got {amount}")
    if not members:
        raise InvalidArgument("A spending limit needs at least one member")
    _check_unique(members, "spending limit member")
    _check_unique(destinations, "spending limit destination")


def multisig_add_spending_limit(
    multisig: Pubkey,
    config_authority: Pubkey,
    create_key: Pubkey,
    mint: Pubkey,
    amount: int,
    period: Period,
    members: Sequence[Pubkey],
    destinations: Sequence[Pubkey] = (),
    vault_index: int = 0,
    rent_payer: Optional[Pubkey] = None,
    memo: Optional[str] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    """Add a spending limit to a controlled multisig. ``mint`` is Pubkey.default() for SOL."""
    program_id = _program(program_id)
    _validate_spending_limit(amount, members, destinations)
    spending_limit, _ = pda.get_spending_limit_pda(multisig, create_key, program_id)

    args = Writer()
    args.pubkey(create_key).u8(vault_index).pubkey(mint).u64(amount).u8(Period(period))
    args.vec(members, args.pubkey).vec(destinations, args.pubkey)
    _write_memo(args, memo)

    accounts = [
        _meta(multisig),
        _meta(config_authority, signer=True),
        _meta(spending_limit, writable=True),
        _meta(config_authority if rent_payer is None else rent_payer, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return _instruction(program_id, MULTISIG_ADD_SPENDING_LIMIT, accounts, args)


def vault_transaction_create(
    multisig: Pubkey,
    creator: Pubkey,
    transaction_index: int,
    message: VaultTransactionMessage,
    vault_index: int = 0,
    ephemeral_signers: int = 0,
    rent_payer: Optional[Pubkey] = None,
    memo: Optional[str] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    """``transaction_index`` must be the multisig's current index plus one."""
    program_id = _program(program_id)
    _check_transaction_index(transaction_index)
    transaction, _ = pda.get_transaction_pda(multisig, transaction_index, program_id)

    args = Writer()
    args.u8(vault_index).u8(ephemeral_signers)
    args.byte_vec(encode_transaction_message(message))
    _write_memo(args, memo)

    accounts = [
        _meta(multisig, writable=True),
        _meta(transaction, writable=True),
        _meta(creator, signer=True),
        _meta(creator if rent_payer is None else rent_payer, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return _instruction(program_id, VAULT_TRANSACTION_CREATE, accounts, args)


def vault_transaction_execute_accounts(
    vault_transaction: VaultTransaction,
    program_id: Optional[Pubkey] = None,
) -> list[AccountMeta]:
    """Remaining accounts for executing a stored vault transaction, in message order."""
    program_id = _program(program_id)
    message = vault_transaction.message
    if message.address_table_lookups:
        raise InvalidArgument("Vault transactions using address lookup tables are not supported")

    vault, _ = pda.get_vault_pda(vault_transaction.multisig, vault_transaction.vault_index, program_id)
    transaction, _ = pda.get_transaction_pda(vault_transaction.multisig, vault_transaction.index, program_id)
    # vault and ephemeral signers sign inside the program, not on the outer transaction
    program_signers = {vault}
    for i in range(len(vault_transaction.ephemeral_signer_bumps)):
        program_signers.add(pda.get_ephemeral_signer_pda(transaction, i, program_id)[0])

    return [
        _meta(
            key,
            signer=message.is_signer_index(i) and key not in program_signers,
            writable=message.is_static_writable_index(i),
        )
        for i, key in enumerate(message.account_keys)
    ]


def vault_transaction_execute(
    multisig: Pubkey,
    member: Pubkey,
    transaction_index: int,
    remaining_accounts: Sequence[AccountMeta] = (),
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    program_id = _program(program_id)
    _check_transaction_index(transaction_index)
    proposal, _ = pda.get_proposal_pda(multisig, transaction_index, program_id)
    transaction, _ = pda.get_transaction_pda(multisig, transaction_index, program_id)

    accounts = [
        _meta(multisig),
        _meta(proposal, writable=True),
        _meta(transaction),
        _meta(member, signer=True),
    ]
    accounts.extend(remaining_accounts)
    return _instruction(program_id, VAULT_TRANSACTION_EXECUTE, accounts)


def validate_config_action(action: ConfigAction) -> None:
    if isinstance(action, AddMember):
        if not 0 <= action.new_member.permissions <= 7:
            raise InvalidArgument(f"Unknown permission bits {action.new_member.permissions:#x}")
    elif isinstance(action, ChangeThreshold):
        if action.new_threshold < 1:
            raise InvalidArgument(f"Threshold must be at least 1, got {action.new_threshold}")
    elif isinstance(action, SetTimeLock):
        _check_time_lock(action.new_time_lock)
    elif isinstance(action, AddSpendingLimit):
        _validate_spending_limit(action.amount, action.members, action.destinations)


def config_transaction_create(
    multisig: Pubkey,
    creator: Pubkey,
    transaction_index: int,
    actions: Sequence[ConfigAction],
    rent_payer: Optional[Pubkey] = None,
    memo: Optional[str] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    program_id = _program(program_id)
    _check_transaction_index(transaction_index)
    if not actions:
        raise InvalidArgument("A config transaction needs at least one action")
    for action in actions:
        validate_config_action(action)
    transaction, _ = pda.get_transaction_pda(multisig, transaction_index, program_id)

    args = Writer()
    args.vec(actions, lambda a: write_config_action(args, a))
    _write_memo(args, memo)

    accounts = [
        _meta(multisig, writable=True),
        _meta(transaction, writable=True),
        _meta(creator, signer=True),
        _meta(creator if rent_payer is None else rent_payer, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return _instruction(program_id, CONFIG_TRANSACTION_CREATE, accounts, args)


def config_transaction_execute(
    multisig: Pubkey,
    member: Pubkey,
    transaction_index: int,
    rent_payer: Optional[Pubkey] = None,
    spending_limits: Sequence[Pubkey] = (),
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    """``spending_limits`` lists the PDAs added or removed by the transaction's actions."""
    program_id = _program(program_id)
    _check_transaction_index(transaction_index)
    proposal, _ = pda.get_proposal_pda(multisig, transaction_index, program_id)
    transaction, _ = pda.get_transaction_pda(multisig, transaction_index, program_id)

    accounts = [
        _meta(multisig, writable=True),
        _meta(member, signer=True),
        _meta(proposal, writable=True),
        _meta(transaction, writable=True),
        # absent optional accounts are passed as the program id
        _meta(rent_payer, signer=True, writable=True) if rent_payer is not None else _meta(program_id),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    accounts.extend(_meta(key, writable=True) for key in spending_limits)
    return _instruction(program_id, CONFIG_TRANSACTION_EXECUTE, accounts)


def config_action_spending_limits(
    multisig: Pubkey, actions: Sequence[ConfigAction], program_id: Optional[Pubkey] = None
) -> list[Pubkey]:
    """Spending limit PDAs touched by ``actions``, for config_transaction_execute."""
    keys = []
    for action in actions:
        if isinstance(action, AddSpendingLimit):
            keys.append(pda.get_spending_limit_pda(multisig, action.create_key, program_id)[0])
        elif isinstance(action, RemoveSpendingLimit):
            keys.append(action.spending_limit)
    return keys


def proposal_create(
    multisig: Pubkey,
    creator: Pubkey,
    transaction_index: int,
    draft: bool = False,
    rent_payer: Optional[Pubkey] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    program_id = _program(program_id)
    _check_transaction_index(transaction_index)
    proposal, _ = pda.get_proposal_pda(multisig, transaction_index, program_id)

    args = Writer().u64(transaction_index)
    args.bool(draft)

    accounts = [
        _meta(multisig),
        _meta(proposal, writable=True),
        _meta(creator, signer=True),
        _meta(creator if rent_payer is None else rent_payer, signer=True, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
    ]
    return _instruction(program_id, PROPOSAL_CREATE, accounts, args)


def _proposal_accounts(multisig: Pubkey, member: Pubkey, transaction_index: int,
                       program_id: Pubkey) -> list[AccountMeta]:
    _check_transaction_index(transaction_index)
    proposal, _ = pda.get_proposal_pda(multisig, transaction_index, program_id)
    return [
        _meta(multisig),
        _meta(member, signer=True, writable=True),
        _meta(proposal, writable=True),
    ]


def proposal_activate(
    multisig: Pubkey,
    member: Pubkey,
    transaction_index: int,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    program_id = _program(program_id)
    accounts = _proposal_accounts(multisig, member, transaction_index, program_id)
    return _instruction(program_id, PROPOSAL_ACTIVATE, accounts)


def _proposal_vote(discriminator: bytes, multisig: Pubkey, member: Pubkey, transaction_index: int,
                   memo: Optional[str], program_id: Optional[Pubkey]) -> Instruction:
    program_id = _program(program_id)
    accounts = _proposal_accounts(multisig, member, transaction_index, program_id)
    return _instruction(program_id, discriminator, accounts, _write_memo(Writer(), memo))


def proposal_approve(multisig: Pubkey, member: Pubkey, transaction_index: int,
                     memo: Optional[str] = None, program_id: Optional[Pubkey] = None) -> Instruction:
    return _proposal_vote(PROPOSAL_APPROVE, multisig, member, transaction_index, memo, program_id)


def proposal_reject(multisig: Pubkey, member: Pubkey, transaction_index: int,
                    memo: Optional[str] = None, program_id: Optional[Pubkey] = None) -> Instruction:
    return _proposal_vote(PROPOSAL_REJECT, multisig, member, transaction_index, memo, program_id)


def proposal_cancel(multisig: Pubkey, member: Pubkey, transaction_index: int,
                    memo: Optional[str] = None, program_id: Optional[Pubkey] = None) -> Instruction:
    return _proposal_vote(PROPOSAL_CANCEL, multisig, member, transaction_index, memo, program_id)


def _mint_name(mint: Optional[Pubkey]) -> str:
    return "SOL" if mint is None else str(mint)


def validate_spending_limit_use(
    limit: SpendingLimit,
    member: Pubkey,
    destination: Pubkey,
    amount: int,
    mint: Optional[Pubkey] = None,
    now: Optional[int] = None,
) -> None:
    """Reject a spend the program would refuse, before any instruction is built."""
    if not limit.can_use(member):
        raise InsufficientPermission(f"{member} is not allowed to use spending limit {limit.create_key}")
    if not limit.is_destination_allowed(destination):
        raise InvalidArgument(f"Destination {destination} is not allowed by the spending limit")
    expected_mint = None if limit.mint == Pubkey.default() else limit.mint
    if (mint is None) != (expected_mint is None) or (mint is not None and mint != expected_mint):
        raise InvalidArgument(f"Spending limit is for mint {_mint_name(expected_mint)}, got {_mint_name(mint)}")
    available = limit.available(now) if now is not None else limit.remaining_amount
    if amount > available:
        raise InvalidArgument(f"Amount {amount} exceeds the {available} remaining in the spending limit")


def spending_limit_use(
    multisig: Pubkey,
    member: Pubkey,
    spending_limit: Pubkey,
    destination: Pubkey,
    amount: int,
    decimals: int,
    vault_index: int = 0,
    mint: Optional[Pubkey] = None,
    vault_token_account: Optional[Pubkey] = None,
    destination_token_account: Optional[Pubkey] = None,
    token_program: Optional[Pubkey] = None,
    memo: Optional[str] = None,
    limit: Optional[SpendingLimit] = None,
    now: Optional[int] = None,
    program_id: Optional[Pubkey] = None,
) -> Instruction:
    """
    Spend from the vault under a spending limit.

    When the decoded ``limit`` is supplied, membership, destination, mint and
    the remaining amount (reset if its period elapsed before ``now``) are
    checked first. SPL transfers need ``mint`` and both token accounts.
    """
    program_id = _program(program_id)
    if amount <= 0:
        raise InvalidArgument(f"Amount must be positive, got {amount}")
    if mint is not None and None in (vault_token_account, destination_token_account, token_program):
        raise InvalidArgument("Token transfers need the vault and destination token accounts and the token program")
    if limit is not None:
        validate_spending_limit_use(limit, member, destination, amount, mint, now)
    vault, _ = pda.get_vault_pda(multisig, vault_index, program_id)

    args = Writer().u64(amount)
    args.u8(decimals)
    _write_memo(args, memo)

    def optional(key: Optional[Pubkey], writable: bool = False) -> AccountMeta:
        return _meta(program_id) if key is None else _meta(key, writable=writable)

    accounts = [
        _meta(multisig),
        _meta(member, signer=True),
        _meta(spending_limit, writable=True),
        _meta(vault, writable=True),
        _meta(destination, writable=True),
        _meta(SYSTEM_PROGRAM_ID),
        optional(mint),
        optional(vault_token_account, writable=True),
        optional(destination_token_account, writable=True),
        optional(token_program),
    ]
    return _instruction(program_id, SPENDING_LIMIT_USE, accounts, args)
