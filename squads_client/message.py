"""
Vault transaction messages.

The vault_transaction_create argument carries the inner message in a compact
form: u8 counts for account keys, instructions, account indexes and lookups,
and a u16 count for instruction data. The stored VaultTransaction account
re-encodes the same message with regular u32-prefixed vectors.
"""

from typing import Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import CompileError, MessageV0
from solders.pubkey import Pubkey

from .codec import Reader, Writer
from .errors import InvalidArgument
from .types import CompiledInstruction, MessageAddressTableLookup, VaultTransactionMessage


def compile_transaction_message(vault: Pubkey, instructions: Sequence[Instruction]) -> VaultTransactionMessage:
    """Compile instructions with ``vault`` as payer into the program's message layout."""
    if not instructions:
        raise InvalidArgument("A vault transaction needs at least one instruction")
    try:
        compiled = MessageV0.try_compile(vault, list(instructions), [], Hash.default())
    except CompileError as e:
        raise InvalidArgument(f"Could not compile vault message: {e}") from e

    header = compiled.header
    account_keys = tuple(compiled.account_keys)
    num_signers = header.num_required_signatures
    return VaultTransactionMessage(
        num_signers=num_signers,
        num_writable_signers=num_signers - header.num_readonly_signed_accounts,
        num_writable_non_signers=len(account_keys) - num_signers - header.num_readonly_unsigned_accounts,
        account_keys=account_keys,
        instructions=tuple(
            CompiledInstruction(
                program_id_index=ix.program_id_index,
                account_indexes=bytes(ix.accounts),
                data=bytes(ix.data),
            )
            for ix in compiled.instructions
        ),
    )


def encode_transaction_message(message: VaultTransactionMessage) -> bytes:
    w = Writer()

    def small_vec(items, write):
        w.u8(len(items))
        for item in items:
            write(item)

    def write_instruction(ix: CompiledInstruction):
        w.u8(ix.program_id_index)
        small_vec(ix.account_indexes, w.u8)
        w.u16(len(ix.data)).raw(bytes(ix.data))

    def write_lookup(lookup: MessageAddressTableLookup):
        w.pubkey(lookup.account_key)
        small_vec(lookup.writable_indexes, w.u8)
        small_vec(lookup.readonly_indexes, w.u8)

    w.u8(message.num_signers).u8(message.num_writable_signers).u8(message.num_writable_non_signers)
    small_vec(message.account_keys, w.pubkey)
    small_vec(message.instructions, write_instruction)
    small_vec(message.address_table_lookups, write_lookup)
    return w.getvalue()


def decode_transaction_message(data: bytes) -> VaultTransactionMessage:
    r = Reader(data)

    def small_bytes() -> bytes:
        return r.take(r.u8())

    def read_instruction():
        program_id_index = r.u8()
        account_indexes = small_bytes()
        return CompiledInstruction(program_id_index, account_indexes, r.take(r.u16()))

    def read_lookup():
        return MessageAddressTableLookup(r.pubkey(), small_bytes(), small_bytes())

    num_signers = r.u8()
    num_writable_signers = r.u8()
    num_writable_non_signers = r.u8()
    account_keys = tuple(r.pubkey() for _ in range(r.u8()))
    instructions = tuple(read_instruction() for _ in range(r.u8()))
    lookups = tuple(read_lookup() for _ in range(r.u8()))
    return VaultTransactionMessage(
        num_signers=num_signers,
        num_writable_signers=num_writable_signers,
        num_writable_non_signers=num_writable_non_signers,
        account_keys=account_keys,
        instructions=instructions,
        address_table_lookups=lookups,
    )
