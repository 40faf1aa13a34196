import io
import json
import unittest
import urllib.error
from unittest.mock import MagicMock, Mock, patch

from stellar_sdk import scval
from stellar_sdk import xdr as stellar_xdr

from lumenitos.auth import AddressCredential, parse_auth_entry, signature_payload
from lumenitos.errors import RelayError
from lumenitos.gasless import (
    RelayClient,
    RelayResult,
    create_relay_client,
    deploy_account_contract_gasless,
    send_gasless_from_classic,
    send_gasless_from_contract,
)
from lumenitos.ledger import network_id_hash
from lumenitos.wallet import account_contract_address

from _fakes import (
    DESTINATION,
    OWNER,
    PASSPHRASE,
    SETTINGS,
    XLM,
    FakeTransport,
    address_entry,
    simulate_response,
    source_entry,
)

NETWORK_ID = network_id_hash(PASSPHRASE)
VALID_UNTIL = 1_000 + SETTINGS.auth_validity_ledgers


def _relay(tx_hash="ef" * 32):
    relay = Mock(spec=RelayClient)
    relay.submit_soroban_transaction.return_value = RelayResult(tx_hash, "pending", "tx-1")
    return relay


def _submitted(relay, call=-1):
    func, auth = relay.submit_soroban_transaction.call_args_list[call].args
    host_function = stellar_xdr.HostFunction.from_xdr(func)
    entries = [parse_auth_entry(stellar_xdr.SorobanAuthorizationEntry.from_xdr(raw)) for raw in auth]
    return host_function.invoke_contract, entries


class GaslessSendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.contract = account_contract_address(OWNER.public_key, SETTINGS)

    def test_contract_send_relays_signed_func_and_auth(self) -> None:
        transport = FakeTransport(simulate=[simulate_response([address_entry(self.contract, nonce=42)])])
        relay = _relay()
        with patch("lumenitos.gasless.contract_instance_exists", return_value=True):
            result = send_gasless_from_contract(transport, OWNER, DESTINATION, "1.5", SETTINGS, relay)

        self.assertEqual(result.hash, "ef" * 32)
        self.assertEqual(transport.sent, [])
        invoke, entries = _submitted(relay)
        self.assertEqual(invoke.function_name.sc_symbol, b"transfer")
        self.assertEqual(scval.from_address(invoke.args[0]).address, self.contract)
        self.assertEqual(scval.from_address(invoke.args[1]).address, DESTINATION)
        self.assertEqual(scval.from_int128(invoke.args[2]), 15_000_000)

        self.assertEqual(len(entries), 1)
        signed = entries[0]
        self.assertIsInstance(signed, AddressCredential)
        self.assertEqual(signed.address, self.contract)
        self.assertEqual(signed.nonce, 42)
        self.assertEqual(signed.signature_expiration_ledger, VALID_UNTIL)
        OWNER.verify(signature_payload(signed, NETWORK_ID), scval.from_bytes(signed.signature))

    def test_contract_send_deploys_missing_account_first(self) -> None:
        transport = FakeTransport(
            simulate=[simulate_response([]), simulate_response([address_entry(self.contract)])]
        )
        relay = _relay()
        with patch("lumenitos.gasless.contract_instance_exists", return_value=False):
            send_gasless_from_contract(transport, OWNER, DESTINATION, "1", SETTINGS, relay, sleep=lambda _: None)

        self.assertEqual(relay.submit_soroban_transaction.call_count, 2)
        create, create_auth = _submitted(relay, 0)
        self.assertEqual(create.function_name.sc_symbol, b"create")
        self.assertEqual(scval.from_bytes(create.args[0]), OWNER.raw_public_key())
        self.assertEqual(create_auth, [])
        self.assertEqual(transport.polled, ["ef" * 32])
        transfer, _ = _submitted(relay)
        self.assertEqual(transfer.function_name.sc_symbol, b"transfer")

    def test_classic_send_turns_source_entry_into_owner_signature(self) -> None:
        transport = FakeTransport(simulate=[simulate_response([source_entry()])])
        relay = _relay()
        send_gasless_from_classic(transport, OWNER, DESTINATION, "2", SETTINGS, relay, nonce_source=lambda: 7)

        invoke, entries = _submitted(relay)
        self.assertEqual(scval.from_address(invoke.args[0]).address, OWNER.public_key)
        signed = entries[0]
        self.assertIsInstance(signed, AddressCredential)
        self.assertEqual(signed.address, OWNER.public_key)
        self.assertEqual(signed.nonce, 7)
        self.assertEqual(signed.signature_expiration_ledger, VALID_UNTIL)
        self.assertEqual(signed.invocation, source_entry().root_invocation)
        items = signed.signature.vec.sc_vec
        fields = {scval.from_symbol(e.key): scval.from_bytes(e.val) for e in items[0].map.sc_map}
        self.assertEqual(fields["public_key"], OWNER.raw_public_key())
        OWNER.verify(signature_payload(signed, NETWORK_ID), fields["signature"])

    def test_classic_send_draws_fresh_nonces(self) -> None:
        transport = FakeTransport(simulate=[simulate_response([source_entry()]), simulate_response([source_entry()])])
        relay = _relay()
        send_gasless_from_classic(transport, OWNER, DESTINATION, "2", SETTINGS, relay)
        send_gasless_from_classic(transport, OWNER, DESTINATION, "2", SETTINGS, relay)
        first = _submitted(relay, 0)[1][0].nonce
        second = _submitted(relay, 1)[1][0].nonce
        self.assertNotEqual(first, second)
        self.assertTrue(0 <= first < 2**63)

    def test_deploy_waits_for_relayed_hash(self) -> None:
        transport = FakeTransport(simulate=[simulate_response([])])
        address = deploy_account_contract_gasless(transport, OWNER, SETTINGS, _relay("12" * 32), sleep=lambda _: None)
        self.assertEqual(address, self.contract)
        self.assertEqual(transport.polled, ["12" * 32])

    def test_invalid_destination_rejected_before_relay(self) -> None:
        relay = _relay()
        with self.assertRaises(ValueError):
            send_gasless_from_classic(FakeTransport(), OWNER, "nowhere", "1", SETTINGS, relay)
        relay.submit_soroban_transaction.assert_not_called()


def _response(body):
    response = MagicMock()
    response.__enter__.return_value.read.return_value = json.dumps(body).encode()
    return response


class RelayClientTests(unittest.TestCase):
    def test_requires_api_key(self) -> None:
        with self.assertRaises(RelayError):
            create_relay_client(SETTINGS, environ={})

    def test_uses_network_default_url(self) -> None:
        client = create_relay_client(SETTINGS.with_overrides(network="mainnet"), environ={"LUMENITOS_RELAY_API_KEY": "k"})
        self.assertEqual(client.base_url, "https://channels.openzeppelin.com")

    def test_posts_func_and_auth(self) -> None:
        client = RelayClient("https://relay.example/testnet/", "secret-key")
        body = {"success": True, "data": {"hash": "ab" * 32, "status": "confirmed", "transactionId": "t-9"}}
        with patch("lumenitos.gasless.urllib.request.urlopen", return_value=_response(body)) as mock_open:
            result = client.submit_soroban_transaction("AAAA", ["BBBB", "CCCC"])

        request = mock_open.call_args.args[0]
        self.assertEqual(request.full_url, "https://relay.example/testnet")
        self.assertEqual(request.get_header("Authorization"), "Bearer secret-key")
        self.assertEqual(json.loads(request.data), {"params": {"func": "AAAA", "auth": ["BBBB", "CCCC"]}})
        self.assertEqual(result.to_dict(), {"hash": "ab" * 32, "status": "confirmed", "transactionId": "t-9"})

    def test_reported_failure_raises(self) -> None:
        client = RelayClient("https://relay.example", "k")
        body = {"success": False, "error": "simulation failed"}
        with patch("lumenitos.gasless.urllib.request.urlopen", return_value=_response(body)):
            with self.assertRaises(RelayError) as ctx:
                client.submit_soroban_transaction("AAAA", [])
        self.assertIn("simulation failed", str(ctx.exception))

    def test_client_error_not_retried(self) -> None:
        client = RelayClient("https://relay.example", "k")
        error = urllib.error.HTTPError(
            "https://relay.example", 401, "Unauthorized", None, io.BytesIO(b'{"error": "bad key"}')
        )
        with patch("lumenitos.gasless.urllib.request.urlopen", side_effect=error) as mock_open:
            with self.assertRaises(RelayError) as ctx:
                client.submit_soroban_transaction("AAAA", [])
        self.assertEqual(ctx.exception.status, 401)
        self.assertIn("bad key", ctx.exception.detail)
        self.assertEqual(mock_open.call_count, 1)


if __name__ == "__main__":
    unittest.main()
