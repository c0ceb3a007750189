import os
import tempfile
import unittest
from unittest import TestCase, mock

from squads_client.config import DEFAULT_ENDPOINT, ClientConfig, get_rpc_endpoint
from squads_client.errors import InvalidArgument
from squads_client.pda import SQUADS_PROGRAM_ID
from squads_client.tests.fakes import key


class EnvTestCase(TestCase):
    env = {}

    def setUp(self):
        patcher = mock.patch.dict(os.environ, self.env, clear=True)
        patcher.start()
        self.addCleanup(patcher.stop)
        dotenv = mock.patch("squads_client.config.load_dotenv")
        dotenv.start()
        self.addCleanup(dotenv.stop)

    def write_yaml(self, text: str) -> str:
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            f.write(text)
        self.addCleanup(os.unlink, f.name)
        return f.name


class TestDefaults(EnvTestCase):
    def test_defaults(self):
        config = ClientConfig.from_env()
        self.assertEqual(config.endpoint, DEFAULT_ENDPOINT)
        self.assertEqual(config.program_id, SQUADS_PROGRAM_ID)
        self.assertEqual(config.commitment, "confirmed")
        self.assertEqual(config.max_attempts, 10)
        self.assertIsNone(get_rpc_endpoint())

    def test_validation(self):
        for bad in ({"commitment": "max"}, {"max_attempts": 0}, {"backoff_initial": 0},
                    {"backoff_initial": 4.0, "backoff_max": 1.0}, {"request_timeout": -1},
                    {"program_id": "not-an-address"}):
            with self.subTest(**{k: str(v) for k, v in bad.items()}):
                with self.assertRaises(InvalidArgument):
                    ClientConfig(**bad)

    def test_unknown_override(self):
        with self.assertRaises(InvalidArgument):
            ClientConfig.from_env(endpont="https://typo.example")


class TestEnvironment(EnvTestCase):
    env = {
        "SOLANA_RPC_URL": "https://rpc.example",
        "SQUADS_PROGRAM_ID": str(key(5)),
        "SQUADS_COMMITMENT": "finalized",
        "SQUADS_MAX_ATTEMPTS": "4",
    }

    def test_environment_values(self):
        config = ClientConfig.from_env()
        self.assertEqual(config.endpoint, "https://rpc.example")
        self.assertEqual(config.program_id, key(5))
        self.assertEqual(config.commitment, "finalized")
        self.assertEqual(config.max_attempts, 4)

    def test_helius_key_wins(self):
        with mock.patch.dict(os.environ, {"HELIUS_API_KEY": "abc"}):
            self.assertEqual(get_rpc_endpoint(), "https://mainnet.helius-rpc.com/?api-key=abc")

    def test_overrides_beat_environment(self):
        config = ClientConfig.from_env(endpoint="https://override.example", commitment=None)
        self.assertEqual(config.endpoint, "https://override.example")
        self.assertEqual(config.commitment, "finalized")

    def test_yaml_beats_environment(self):
        path = self.write_yaml("commitment: processed\nmax_attempts: 2\n")
        config = ClientConfig.load(path)
        self.assertEqual(config.commitment, "processed")
        self.assertEqual(config.max_attempts, 2)
        self.assertEqual(config.endpoint, "https://rpc.example")

        config = ClientConfig.load(path, max_attempts=7)
        self.assertEqual(config.max_attempts, 7)


class TestBadInput(EnvTestCase):
    env = {"SQUADS_MAX_ATTEMPTS": "many"}

    def test_non_integer_attempts(self):
        with self.assertRaises(InvalidArgument):
            ClientConfig.from_env()

    def test_yaml_ignores_environment(self):
        path = self.write_yaml(f"program_id: {key(6)}\nbackoff_max: 2.5\n")
        config = ClientConfig.from_yaml(path)
        self.assertEqual(config.program_id, key(6))
        self.assertEqual(config.backoff_max, 2.5)

    def test_malformed_yaml(self):
        for text in ("endpoint: [unclosed\n", "- just\n- a list\n", "colour: blue\n"):
            with self.subTest(text=text):
                with self.assertRaises(InvalidArgument):
                    ClientConfig.from_yaml(self.write_yaml(text))

    def test_missing_file(self):
        with self.assertRaises(InvalidArgument):
            ClientConfig.from_yaml("/nonexistent/squads.yaml")


if __name__ == "__main__":
    unittest.main()
