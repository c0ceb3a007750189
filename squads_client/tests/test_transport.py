import base64
import unittest
from unittest import TestCase, mock

import requests
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.signature import Signature
from solders.transaction import Transaction

from squads_client.errors import InvalidArgument, TransactionFailed, TransportError
from squads_client.tests.fakes import key
from squads_client.transport import RpcTransport, SignatureStatus


def rpc_response(body):
    response = mock.Mock()
    response.json.return_value = body
    return response


class RpcTestCase(TestCase):
    def setUp(self):
        self.session = mock.Mock()
        self.session.headers = {}
        self.transport = RpcTransport("https://rpc.example", commitment="confirmed", session=self.session)

    def respond(self, body):
        self.session.post.return_value = rpc_response(body)

    def sent(self):
        return self.session.post.call_args.kwargs["json"]


class TestRequests(RpcTestCase):
    def test_user_agent(self):
        self.assertIn("squads-client", self.session.headers["User-Agent"])

    def test_latest_blockhash(self):
        blockhash = Hash.new_unique()
        self.respond({"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": {"blockhash": str(blockhash), "lastValidBlockHeight": 10}}})

        self.assertEqual(self.transport.latest_blockhash(), blockhash)
        self.assertEqual(self.sent()["method"], "getLatestBlockhash")
        self.assertEqual(self.sent()["params"], [{"commitment": "confirmed"}])

    def test_http_failure_is_transport_error(self):
        self.session.post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(TransportError):
            self.transport.latest_blockhash()

    def test_rpc_error_is_transport_error(self):
        self.respond({"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "Node is behind"}})
        with self.assertRaises(TransportError) as ctx:
            self.transport.latest_blockhash()
        self.assertNotIsInstance(ctx.exception, TransactionFailed)

    def test_bad_commitment(self):
        with self.assertRaises(InvalidArgument):
            RpcTransport("https://rpc.example", commitment="max", session=self.session)


class TestSubmit(RpcTestCase):
    def setUp(self):
        super().setUp()
        payer = Keypair()
        message = Message.new_with_blockhash([Instruction(key(70), b"\x01", [])], payer.pubkey(), Hash.default())
        self.transaction = Transaction([payer], message, Hash.default())

    def test_submit_sends_base64(self):
        signature = self.transaction.signatures[0]
        self.respond({"jsonrpc": "2.0", "id": 1, "result": str(signature)})

        self.assertEqual(self.transport.submit(self.transaction), signature)
        encoded, options = self.sent()["params"]
        self.assertEqual(base64.b64decode(encoded), bytes(self.transaction))
        self.assertEqual(options["encoding"], "base64")

    def test_preflight_failure(self):
        self.respond({"jsonrpc": "2.0", "id": 1, "error": {
            "code": -32002,
            "message": "Transaction simulation failed: Error processing Instruction 0",
        }})
        with self.assertRaises(TransactionFailed) as ctx:
            self.transport.submit(self.transaction)
        self.assertEqual(ctx.exception.signature, str(self.transaction.signatures[0]))


class TestConfirm(RpcTestCase):
    def setUp(self):
        super().setUp()
        self.signature = Signature.new_unique()

    def statuses(self, *values):
        self.respond({"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 5}, "value": list(values)}})

    def test_unknown_signature(self):
        self.statuses(None)
        self.assertIsNone(self.transport.confirm(self.signature))

    def test_below_requested_commitment(self):
        self.statuses({"slot": 5, "confirmations": 0, "err": None, "confirmationStatus": "processed"})
        self.assertIsNone(self.transport.confirm(self.signature, "confirmed"))

    def test_reached(self):
        self.statuses({"slot": 5, "confirmations": None, "err": None, "confirmationStatus": "finalized"})
        status = self.transport.confirm(self.signature, "confirmed")
        self.assertEqual(status, SignatureStatus(5, "finalized", None))
        self.assertEqual(self.sent()["params"], [[str(self.signature)]])

    def test_on_chain_error(self):
        self.statuses({"slot": 5, "confirmations": 1, "err": {"InstructionError": [0, {"Custom": 6005}]},
                       "confirmationStatus": "confirmed"})
        with self.assertRaises(TransactionFailed) as ctx:
            self.transport.confirm(self.signature)
        self.assertEqual(ctx.exception.err, {"InstructionError": [0, {"Custom": 6005}]})

    def test_signature_status_reached(self):
        self.assertTrue(SignatureStatus(1, "confirmed").reached("processed"))
        self.assertFalse(SignatureStatus(1, "confirmed").reached("finalized"))
        self.assertTrue(SignatureStatus(1, None, None).reached("finalized"))
        self.assertFalse(SignatureStatus(1, None, 3).reached("confirmed"))


class TestFetchAccount(RpcTestCase):
    def test_missing_account(self):
        self.respond({"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": None}})
        self.assertIsNone(self.transport.fetch_account(key(1)))

    def test_account_data(self):
        self.respond({"jsonrpc": "2.0", "id": 1, "result": {"context": {"slot": 1}, "value": {
            "data": [base64.b64encode(b"\x01\x02\x03").decode(), "base64"],
            "executable": False,
            "lamports": 1_000_000,
            "owner": str(key(9)),
        }}})

        self.assertEqual(self.transport.fetch_account(key(1)), b"\x01\x02\x03")
        address, options = self.sent()["params"]
        self.assertEqual(address, str(key(1)))
        self.assertEqual(options["encoding"], "base64")

    def test_unexpected_encoding(self):
        self.respond({"jsonrpc": "2.0", "id": 1, "result": {"value": {"data": "AQID"}}})
        with self.assertRaises(TransportError):
            self.transport.fetch_account(key(1))


if __name__ == "__main__":
    unittest.main()
