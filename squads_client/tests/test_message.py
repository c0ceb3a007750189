import unittest
from unittest import TestCase

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from squads_client.errors import InvalidArgument, TruncatedData
from squads_client.message import (
    compile_transaction_message,
    decode_transaction_message,
    encode_transaction_message,
)
from squads_client.tests.fakes import key


class TestCompileTransactionMessage(TestCase):
    def setUp(self):
        self.vault = key(20)
        self.destination = key(21)
        self.program = key(22)
        self.transfer = Instruction(
            self.program,
            b"\x02\x00\x00\x00" + (1_000_000).to_bytes(8, "little"),
            [
                AccountMeta(self.vault, is_signer=True, is_writable=True),
                AccountMeta(self.destination, is_signer=False, is_writable=True),
            ],
        )

    def test_vault_is_the_only_signer(self):
        message = compile_transaction_message(self.vault, [self.transfer])

        self.assertEqual(message.account_keys[0], self.vault)
        self.assertEqual(message.num_signers, 1)
        self.assertEqual(message.num_writable_signers, 1)
        self.assertEqual(message.num_writable_non_signers, 1)
        self.assertEqual(set(message.account_keys), {self.vault, self.destination, self.program})

    def test_instruction_indexes_point_at_account_keys(self):
        message = compile_transaction_message(self.vault, [self.transfer])
        compiled = message.instructions[0]

        self.assertEqual(message.account_keys[compiled.program_id_index], self.program)
        self.assertEqual(
            [message.account_keys[i] for i in compiled.account_indexes],
            [self.vault, self.destination],
        )
        self.assertEqual(compiled.data, bytes(self.transfer.data))

    def test_writability_flags(self):
        message = compile_transaction_message(self.vault, [self.transfer])
        program_index = message.account_keys.index(self.program)
        destination_index = message.account_keys.index(self.destination)

        self.assertTrue(message.is_signer_index(0))
        self.assertTrue(message.is_static_writable_index(0))
        self.assertTrue(message.is_static_writable_index(destination_index))
        self.assertFalse(message.is_signer_index(destination_index))
        self.assertFalse(message.is_static_writable_index(program_index))

    def test_empty_instruction_list(self):
        with self.assertRaises(InvalidArgument):
            compile_transaction_message(self.vault, [])

    def test_too_many_accounts(self):
        accounts = [AccountMeta(Pubkey.from_bytes(i.to_bytes(32, "big")), False, False) for i in range(1, 301)]
        with self.assertRaises(InvalidArgument) as ctx:
            compile_transaction_message(self.vault, [Instruction(self.program, b"", accounts)])
        self.assertIn("Could not compile vault message", str(ctx.exception))


class TestTransactionMessageBytes(TestCase):
    def test_small_vector_prefixes(self):
        vault, program = key(20), key(22)
        message = compile_transaction_message(vault, [Instruction(program, b"\xaa\xbb", [])])
        raw = encode_transaction_message(message)

        # header, then a u8 key count
        self.assertEqual(raw[:4], bytes([1, 1, 0, 2]))
        self.assertEqual(raw[4:36], bytes(vault))
        # one instruction: program index, no accounts, u16 data length
        self.assertEqual(raw[68:74], bytes([1, 1, 0, 2, 0]) + b"\xaa")
        self.assertEqual(raw[-1:], b"\x00")
        self.assertEqual(decode_transaction_message(raw), message)

    def test_truncated_bytes(self):
        message = compile_transaction_message(key(20), [Instruction(key(22), b"\x01", [])])
        with self.assertRaises(TruncatedData):
            decode_transaction_message(encode_transaction_message(message)[:-3])


if __name__ == "__main__":
    unittest.main()
