import io
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from lumenitos.faucet import fund_account, fund_testnet_account
from lumenitos.submit import SubmissionResult

from _fakes import CONTRACT, OWNER, SETTINGS, FakeTransport


def _http_error(code, body):
    return urllib.error.HTTPError("https://friendbot", code, "err", {}, io.BytesIO(body))


class FaucetTests(unittest.TestCase):
    def test_funds_account(self) -> None:
        with patch("lumenitos.faucet.urllib.request.urlopen", return_value=MagicMock()) as mock_open:
            self.assertTrue(fund_testnet_account("https://friendbot", OWNER.public_key))
        request = mock_open.call_args.args[0]
        self.assertIn(f"addr={OWNER.public_key}", request.full_url)

    def test_already_funded_is_not_an_error(self) -> None:
        error = _http_error(400, b'{"detail": "createAccountAlreadyExist: account already funded"}')
        with patch("lumenitos.faucet.urllib.request.urlopen", side_effect=error):
            self.assertFalse(fund_testnet_account("https://friendbot", OWNER.public_key))

    def test_other_errors_raise(self) -> None:
        error = _http_error(400, b'{"detail": "bad address"}')
        with patch("lumenitos.faucet.urllib.request.urlopen", side_effect=error):
            with self.assertRaises(ValueError):
                fund_testnet_account("https://friendbot", "GBAD")

    def test_mainnet_refused(self) -> None:
        with self.assertRaises(ValueError):
            fund_account(FakeTransport(), OWNER.public_key, SETTINGS.with_overrides(network="mainnet"))

    def test_contract_funded_through_owner(self) -> None:
        with patch("lumenitos.faucet.fund_testnet_account", return_value=True) as mock_fund, patch(
            "lumenitos.faucet.send_from_classic_account", return_value=SubmissionResult("aa", "SUCCESS")
        ) as mock_send:
            result = fund_account(FakeTransport(), CONTRACT, SETTINGS, OWNER)
        mock_fund.assert_called_once_with(SETTINGS.friendbot_url, OWNER.public_key)
        self.assertEqual(mock_send.call_args.args[2], CONTRACT)
        self.assertEqual(mock_send.call_args.args[3], "5000")
        self.assertEqual(result.transfer.hash, "aa")


if __name__ == "__main__":
    unittest.main()
