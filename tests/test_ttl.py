import hashlib
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from stellar_sdk import Keypair

from lumenitos.errors import SubmissionFailed
from lumenitos.ledger import LedgerEntry, LedgerRead, code_ledger_key, instance_ledger_key
from lumenitos.submit import SubmissionResult
from lumenitos.ttl import (
    DEGRADED,
    HEALTHY,
    UNHEALTHY,
    Classification,
    TTLLifecycleManager,
    TTLRecord,
    TrackedResource,
    classify,
    shared_resources,
)

from _fakes import CONTRACT, SETTINGS, FakeTransport

CURRENT = 100_000
THRESHOLD = SETTINGS.ttl_bump_threshold


def _read(entries):
    out = {}
    for key, live_until in entries:
        out[key.to_xdr()] = LedgerEntry(key=key, data=None, live_until_ledger=live_until)
    return LedgerRead(latest_ledger=CURRENT, entries=out)


def _ok(label):
    return SubmissionResult(hash=hashlib.sha256(label.encode()).hexdigest(), status="SUCCESS")


class ClassifyTests(unittest.TestCase):
    def test_boundaries(self) -> None:
        self.assertIs(classify(CURRENT, None, THRESHOLD), Classification.MISSING)
        self.assertIs(classify(CURRENT, CURRENT, THRESHOLD), Classification.ARCHIVED)
        self.assertIs(classify(CURRENT, CURRENT - 5, THRESHOLD), Classification.ARCHIVED)
        self.assertIs(classify(CURRENT, CURRENT + 1, THRESHOLD), Classification.NEAR_EXPIRY)
        self.assertIs(classify(CURRENT, CURRENT + THRESHOLD - 1, THRESHOLD), Classification.NEAR_EXPIRY)
        self.assertIs(classify(CURRENT, CURRENT + THRESHOLD, THRESHOLD), Classification.LIVE)

    def test_ten_ledgers_left_needs_bump(self) -> None:
        record = TTLRecord.from_ledger(CURRENT, CURRENT + 10, 50_000)
        self.assertIs(record.classification, Classification.NEAR_EXPIRY)
        self.assertTrue(record.needs_bump)
        self.assertFalse(record.needs_restore)

    def test_near_expiry_record(self) -> None:
        record = TTLRecord.from_ledger(CURRENT, CURRENT + 10_000, THRESHOLD)
        self.assertEqual(
            record.to_dict(),
            {
                "installed": True,
                "archived": False,
                "ttlRemaining": 10_000,
                "needsBump": True,
                "needsRestore": False,
            },
        )

    def test_missing_record(self) -> None:
        record = TTLRecord.from_ledger(CURRENT, None, THRESHOLD)
        self.assertFalse(record.installed)
        self.assertTrue(record.needs_restore)
        self.assertIsNone(record.ttl_remaining)


class LifecycleManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.wasm = b"\x00asm\x01\x00\x00\x00account"
        self.wasm_path = Path(self.tmp.name) / "simple_account.wasm"
        self.wasm_path.write_bytes(self.wasm)
        self.code_key = code_ledger_key(hashlib.sha256(self.wasm).digest())
        self.instance_key = instance_ledger_key(CONTRACT)
        self.resources = [
            TrackedResource("account_wasm", self.code_key, self.wasm_path),
            TrackedResource("factory_instance", self.instance_key),
        ]
        self.admin = Keypair.random()

    def _manager(self, admin=True):
        return TTLLifecycleManager(
            FakeTransport(),
            SETTINGS,
            self.resources,
            self.admin if admin else None,
            sleep=lambda _: None,
        )

    def test_report_near_expiry_is_degraded(self) -> None:
        read = _read([(self.code_key, CURRENT + 10_000), (self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read) as mock_read:
            report = self._manager().report()
        mock_read.assert_called_once()
        self.assertEqual(report.status, DEGRADED)
        self.assertTrue(report.resources["account_wasm"].to_dict()["needsBump"])
        self.assertFalse(report.resources["factory_instance"].to_dict()["needsBump"])

    def test_report_all_live_is_healthy(self) -> None:
        read = _read([(self.code_key, CURRENT + 400_000), (self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read):
            self.assertEqual(self._manager().report().status, HEALTHY)

    def test_query_failure_is_unhealthy_and_needs_restore(self) -> None:
        with patch("lumenitos.ttl.read_ledger_entries", side_effect=ConnectionError("rpc down")):
            report = self._manager().report()
        self.assertEqual(report.status, UNHEALTHY)
        status = report.resources["account_wasm"].to_dict()
        self.assertTrue(status["needsRestore"])
        self.assertIn("rpc down", status["error"])
        self.assertEqual(report.to_dict()["status"], "unhealthy")

    def test_live_resources_send_nothing(self) -> None:
        read = _read([(self.code_key, CURRENT + 400_000), (self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read), patch(
            "lumenitos.ttl.run_transaction"
        ) as mock_run:
            result = self._manager().maintain(bump=True, install=True)
        mock_run.assert_not_called()
        self.assertEqual(result.actions, [])
        self.assertFalse(result.report_only)

    def test_near_expiry_bumped(self) -> None:
        before = _read([(self.code_key, CURRENT + 10_000), (self.instance_key, CURRENT + 400_000)])
        after = _read([(self.code_key, CURRENT + 500_000), (self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", side_effect=[before, after]), patch(
            "lumenitos.ttl.run_transaction", side_effect=lambda *a, **kw: _ok(kw["label"])
        ) as mock_run:
            result = self._manager().maintain(bump=True)

        self.assertEqual(mock_run.call_count, 1)
        self.assertEqual(mock_run.call_args.kwargs["label"], "bump account_wasm")
        self.assertEqual(mock_run.call_args.kwargs["max_attempts"], SETTINGS.maintenance_poll_attempts)
        envelope = mock_run.call_args.args[1]
        footprint = envelope.transaction.soroban_data.resources.footprint
        self.assertEqual([key.to_xdr() for key in footprint.read_only], [self.code_key.to_xdr()])
        self.assertEqual([a.to_dict()["action"] for a in result.actions], ["bump"])
        self.assertEqual(result.after.status, HEALTHY)

    def test_near_expiry_without_bump_flag_untouched(self) -> None:
        read = _read([(self.code_key, CURRENT + 10_000), (self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read), patch(
            "lumenitos.ttl.run_transaction"
        ) as mock_run:
            result = self._manager().maintain(bump=False)
        mock_run.assert_not_called()
        self.assertEqual(result.actions, [])

    def test_missing_code_restore_fails_then_install(self) -> None:
        before = _read([(self.instance_key, CURRENT + 400_000)])
        after = _read([(self.code_key, CURRENT + 500_000), (self.instance_key, CURRENT + 400_000)])

        def run(*args, **kwargs):
            if kwargs["label"].startswith("restore"):
                raise SubmissionFailed("11" * 32, "entry not archived")
            return _ok(kwargs["label"])

        with patch("lumenitos.ttl.read_ledger_entries", side_effect=[before, after]), patch(
            "lumenitos.ttl.run_transaction", side_effect=run
        ):
            result = self._manager().maintain(bump=True, install=True)

        actions = [(a.action, a.success) for a in result.actions]
        self.assertEqual(actions, [("restore", False), ("install", True), ("bump", True)])
        self.assertEqual(result.actions[0].hash, "11" * 32)
        self.assertEqual(result.after.status, HEALTHY)

    def test_missing_without_install_flag_untouched(self) -> None:
        read = _read([(self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read), patch(
            "lumenitos.ttl.run_transaction"
        ) as mock_run:
            result = self._manager().maintain(bump=True, install=False)
        mock_run.assert_not_called()
        self.assertEqual(result.before.status, DEGRADED)

    def test_archived_factory_instance_restored_then_bumped(self) -> None:
        before = _read([(self.code_key, CURRENT + 400_000), (self.instance_key, CURRENT - 1)])
        after = _read([(self.code_key, CURRENT + 400_000), (self.instance_key, CURRENT + 500_000)])
        with patch("lumenitos.ttl.read_ledger_entries", side_effect=[before, after]), patch(
            "lumenitos.ttl.run_transaction", side_effect=lambda *a, **kw: _ok(kw["label"])
        ) as mock_run:
            result = self._manager().maintain(bump=True)

        labels = [c.kwargs["label"] for c in mock_run.call_args_list]
        self.assertEqual(labels, ["restore factory_instance", "bump factory_instance"])
        self.assertTrue(all(a.success for a in result.actions))

    def test_failed_instance_restore_does_not_install(self) -> None:
        read = _read([(self.code_key, CURRENT + 400_000), (self.instance_key, CURRENT - 1)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read), patch(
            "lumenitos.ttl.run_transaction", side_effect=SubmissionFailed("22" * 32, "boom")
        ):
            result = self._manager().maintain(bump=True, install=True)
        self.assertEqual([(a.action, a.success) for a in result.actions], [("restore", False)])

    def test_install_refuses_mismatched_wasm(self) -> None:
        self.wasm_path.write_bytes(b"something else")
        before = _read([(self.instance_key, CURRENT + 400_000)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=before), patch(
            "lumenitos.ttl.run_transaction", side_effect=SubmissionFailed("33" * 32, "not archived")
        ) as mock_run:
            result = self._manager().maintain(bump=True, install=True)
        self.assertEqual([(a.action, a.success) for a in result.actions], [("restore", False), ("install", False)])
        self.assertIn("does not hash", result.actions[1].error)
        self.assertEqual(mock_run.call_count, 1)

    def test_without_key_only_reports(self) -> None:
        read = _read([(self.code_key, CURRENT + 10_000), (self.instance_key, CURRENT - 1)])
        with patch("lumenitos.ttl.read_ledger_entries", return_value=read), patch(
            "lumenitos.ttl.run_transaction"
        ) as mock_run:
            manager = self._manager(admin=False)
            result = manager.maintain(bump=True, install=True)
        mock_run.assert_not_called()
        self.assertTrue(result.report_only)
        self.assertFalse(manager.maintenance_enabled)
        self.assertEqual(result.to_dict()["before"]["status"], DEGRADED)


class SharedResourcesTests(unittest.TestCase):
    def test_default_resources(self) -> None:
        settings = SETTINGS.with_overrides(account_wasm_hash="ab" * 32)
        names = [r.name for r in shared_resources(settings)]
        self.assertEqual(names, ["account_wasm", "factory_instance", "factory_wasm"])
        factory = [r for r in shared_resources(settings) if r.name == "factory_instance"][0]
        self.assertFalse(factory.installable)


if __name__ == "__main__":
    unittest.main()
