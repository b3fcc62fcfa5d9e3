import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pystreams import BranchingMode, UserConfig
from pystreams.channels.exceptions import ConfigurationError


class TestUserConfig(unittest.TestCase):
    def test_recommended(self):
        cfg = UserConfig.recommended()
        self.assertEqual(cfg.suite_id, 0x0001)
        self.assertEqual(cfg.branching, BranchingMode.SINGLE)
        self.assertIsNone(cfg.channel_nonce)
        self.assertTrue(cfg.auto_accept_subscribers)

    def test_validation(self):
        with self.assertRaises(ConfigurationError):
            UserConfig(suite_id=0x0002)
        with self.assertRaises(ConfigurationError):
            UserConfig(max_fetch_rounds=0)
        with self.assertRaises(ConfigurationError):
            UserConfig(channel_nonce=1 << 64)

    def test_from_env_mapping(self):
        cfg = UserConfig.from_env(
            env={
                "PYSTREAMS_SUITE_ID": "0x0003",
                "PYSTREAMS_BRANCHING": "multi",
                "PYSTREAMS_CHANNEL_NONCE": "42",
                "PYSTREAMS_AUTO_ACCEPT": "false",
                "PYSTREAMS_MAX_FETCH_ROUNDS": "5",
                "UNRELATED": "ignored",
            }
        )
        self.assertEqual(cfg.suite_id, 0x0003)
        self.assertEqual(cfg.branching, BranchingMode.MULTI)
        self.assertEqual(cfg.channel_nonce, 42)
        self.assertFalse(cfg.auto_accept_subscribers)
        self.assertEqual(cfg.max_fetch_rounds, 5)

    def test_from_env_custom_prefix_and_blank_values(self):
        cfg = UserConfig.from_env(prefix="APP_", env={"APP_BRANCHING": "  ", "PYSTREAMS_BRANCHING": "multi"})
        self.assertEqual(cfg.branching, BranchingMode.SINGLE)

    def test_from_env_invalid(self):
        for key, value in (("BRANCHING", "sideways"), ("SUITE_ID", "abc"), ("SUITE_ID", "0x0002"),
                           ("MAX_FETCH_ROUNDS", "-1")):
            with self.subTest(key=key, value=value):
                with self.assertRaises(ConfigurationError):
                    UserConfig.from_env(env={f"PYSTREAMS_{key}": value})

    def test_from_dotenv_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text("PYSTREAMS_BRANCHING=multi\nPYSTREAMS_SUITE_ID=0x0005\n")
            with mock.patch.dict(os.environ, {"PYSTREAMS_SUITE_ID": "0x0007"}, clear=False):
                os.environ.pop("PYSTREAMS_BRANCHING", None)
                cfg = UserConfig.from_env(dotenv_path=path)
            self.assertEqual(cfg.branching, BranchingMode.MULTI)
            # variables already set win over the file
            self.assertEqual(cfg.suite_id, 0x0007)


if __name__ == "__main__":
    unittest.main()
