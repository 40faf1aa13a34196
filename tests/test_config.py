import tempfile
import unittest
from pathlib import Path

from lumenitos.config import Settings, admin_secret, load_settings, relay_api_key, write_config
from lumenitos.constants import DEFAULT_INSTRUCTION_MARGIN, MAINNET_PASSPHRASE


class ConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "lumenitos.toml"

    def test_defaults(self) -> None:
        settings = Settings()
        self.assertEqual(settings.network, "testnet")
        self.assertEqual(settings.instruction_margin, DEFAULT_INSTRUCTION_MARGIN)
        self.assertEqual(settings.auth_validity_ledgers, 60)
        self.assertEqual(settings.ttl_bump_threshold, 17_280)
        self.assertEqual(settings.resolved_rpc_url, "https://soroban-testnet.stellar.org")

    def test_file_then_env_then_overrides(self) -> None:
        self.path.write_text(
            "[network]\n"
            'name = "mainnet"\n'
            'rpc_url = "https://rpc.example"\n'
            "[tuning]\n"
            "instruction_margin = 2000000\n"
            "poll_interval = 1\n"
            "[wallet]\n"
            'keypair = "owner.secret"\n'
        )
        settings = load_settings(self.path, environ={"LUMENITOS_INSTRUCTION_MARGIN": "3000000"})
        self.assertEqual(settings.network_passphrase, MAINNET_PASSPHRASE)
        self.assertEqual(settings.resolved_rpc_url, "https://rpc.example")
        self.assertEqual(settings.instruction_margin, 3_000_000)
        self.assertEqual(settings.poll_interval, 1.0)
        self.assertEqual(settings.keypair_path, "owner.secret")
        self.assertEqual(settings.source, str(self.path))

        overridden = load_settings(self.path, environ={}, network="testnet", rpc_url=None)
        self.assertEqual(overridden.network, "testnet")
        self.assertEqual(overridden.instruction_margin, 2_000_000)

    def test_missing_explicit_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_settings(Path(self.tmp.name) / "absent.toml", environ={})

    def test_invalid_values(self) -> None:
        with self.assertRaises(ValueError):
            Settings(network="futurenet")
        with self.assertRaises(ValueError):
            Settings(instruction_margin=-1)
        self.path.write_text('[tuning]\nttl_bump_threshold = "soon"\n')
        with self.assertRaises(ValueError):
            load_settings(self.path, environ={})
        with self.assertRaises(ValueError):
            load_settings(None, environ={"LUMENITOS_INSTRUCTION_MARGIN": "lots"})

    def test_ttl_extension_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            Settings(max_ttl_extension=0)
        self.path.write_text("[tuning]\nmax_ttl_extension = -5\n")
        with self.assertRaises(ValueError):
            load_settings(self.path, environ={})

    def test_write_then_load(self) -> None:
        settings = Settings(rpc_url="https://rpc.example", account_wasm_hash="ab" * 32, keypair_path="k")
        write_config(self.path, settings)
        loaded = load_settings(self.path, environ={})
        self.assertEqual(loaded, settings)

    def test_write_refuses_existing_file(self) -> None:
        self.path.write_text("")
        with self.assertRaises(ValueError):
            write_config(self.path, Settings())
        write_config(self.path, Settings(), overwrite=True)
        self.assertIn("[network]", self.path.read_text())

    def test_relay_url_and_key(self) -> None:
        self.assertEqual(Settings().resolved_relay_url, "https://channels.openzeppelin.com/testnet")
        self.path.write_text('[network]\nrelay_url = "https://relay.example"\n')
        settings = load_settings(self.path, environ={})
        self.assertEqual(settings.resolved_relay_url, "https://relay.example")
        write_config(self.path, settings, overwrite=True)
        self.assertEqual(load_settings(self.path, environ={}).relay_url, "https://relay.example")
        self.assertNotIn("api", self.path.read_text().lower())
        self.assertIsNone(relay_api_key({}))
        self.assertEqual(relay_api_key({"LUMENITOS_RELAY_API_KEY": " key "}), "key")

    def test_admin_secret_from_env(self) -> None:
        self.assertIsNone(admin_secret({}))
        self.assertEqual(admin_secret({"LUMENITOS_ADMIN_SECRET": " SABC \n"}), "SABC")


if __name__ == "__main__":
    unittest.main()
