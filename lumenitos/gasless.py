"""Fee-free submission through a hosted relayer (OpenZeppelin Channels).

The relayer is the transaction source and pays every fee. It accepts only the
host function and its authorization entries, so whatever the owner has to
authorize must travel as signed address-credential entries:

* contract account: the entries simulation returns, signed as usual;
* classic account: the source-account entries simulation returns are turned
  into address entries for the owner's ``G...`` address with a random nonce,
  because the owner is no longer the transaction source.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from stellar_sdk import Address, Keypair, TransactionEnvelope, scval
from stellar_sdk.operation import InvokeHostFunction

from .auth import AddressCredential, AuthEntry, AuthorizerKind, SourceAccountCredential
from .config import RELAY_API_KEY_ENV, Settings, relay_api_key
from .errors import RelayError
from .ledger import contract_instance_exists
from .pipeline import prepare_envelope, require_keypair
from .simulate import SimulationResult, simulate_transaction
from .submit import Sleeper, wait_for_transaction
from .transport import RpcTransport
from .wallet import account_contract_address, check_transfer, factory_create_envelope, transfer_envelope

logger = logging.getLogger(__name__)

_RETRY_CODES = {429, 500, 502, 503, 504}
# Int64 nonce; stay non-negative.
_NONCE_BITS = 63

NonceSource = Callable[[], int]


def random_nonce() -> int:
    return secrets.randbits(_NONCE_BITS)


@dataclass
class RelayResult:
    hash: Optional[str]
    status: Optional[str]
    transaction_id: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"hash": self.hash, "status": self.status, "transactionId": self.transaction_id}


def _parse_response(body: Mapping[str, Any]) -> RelayResult:
    if body.get("success") is False:
        raise RelayError(str(body.get("error") or body.get("message") or "relayer reported failure"))
    data = body.get("data") if isinstance(body.get("data"), dict) else body
    result = RelayResult(
        hash=data.get("hash"),
        status=data.get("status"),
        transaction_id=data.get("transactionId"),
    )
    if result.hash is None and result.transaction_id is None:
        raise RelayError(f"unexpected relayer response: {json.dumps(body)[:200]}")
    return result


class RelayClient:
    """Minimal JSON client for the relayer's Soroban submission endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str], *, retries: int = 3, timeout: float = 30.0):
        if not api_key:
            raise RelayError(f"relayer not configured: set {RELAY_API_KEY_ENV}")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.retries = retries
        self.timeout = timeout

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        req = urllib.request.Request(
            self.base_url,
            data=json.dumps(payload).encode(),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
            method="POST",
        )
        for attempt in range(self.retries + 1):
            try:
                with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                    return json.loads(resp.read().decode())
            except urllib.error.HTTPError as exc:
                if exc.code in _RETRY_CODES and attempt < self.retries:
                    time.sleep(0.25 * (2**attempt))
                    continue
                body = exc.read().decode(errors="replace")
                raise RelayError(body or str(exc.reason), status=exc.code) from exc
            except urllib.error.URLError as exc:
                if attempt < self.retries:
                    time.sleep(0.25 * (2**attempt))
                    continue
                raise RelayError(f"transport error: {exc}") from exc
        raise RelayError("request failed after retries")

    def submit_soroban_transaction(self, func: str, auth: List[str]) -> RelayResult:
        logger.info("submitting to relayer %s (%d auth entries)", self.base_url, len(auth))
        result = _parse_response(self._post({"params": {"func": func, "auth": auth}}))
        logger.info("relayer accepted %s (status %s)", result.hash or result.transaction_id, result.status)
        return result


def create_relay_client(settings: Settings, environ: Mapping[str, str] | None = None) -> RelayClient:
    return RelayClient(settings.resolved_relay_url, relay_api_key(environ))


def relay_payload(envelope: TransactionEnvelope) -> Tuple[str, List[str]]:
    """Base64 host function and auth entries of the envelope's only invocation."""
    operations = envelope.transaction.operations
    if len(operations) != 1 or not isinstance(operations[0], InvokeHostFunction):
        raise ValueError("relayed transactions must hold exactly one contract invocation")
    op = operations[0]
    return op.host_function.to_xdr(), [entry.to_xdr() for entry in op.auth]


def owner_address_entries(
    entries: List[AuthEntry],
    owner_public_key: str,
    nonce_source: NonceSource = random_nonce,
) -> List[AuthEntry]:
    """Rewrite source-account entries as unsigned address entries for the owner."""
    owner_address = Address(owner_public_key).to_xdr_sc_address()
    out: List[AuthEntry] = []
    for entry in entries:
        if isinstance(entry, SourceAccountCredential):
            entry = AddressCredential(
                sc_address=owner_address,
                nonce=nonce_source(),
                signature_expiration_ledger=0,
                signature=scval.to_void(),
                invocation=entry.invocation,
            )
        out.append(entry)
    return out


def _relay(
    relay: RelayClient,
    simulation: SimulationResult,
    owner: Keypair,
    settings: Settings,
    authorizer: AuthorizerKind,
    instruction_margin: Optional[int] = None,
) -> RelayResult:
    envelope = prepare_envelope(
        simulation,
        owner,
        settings,
        authorizer=authorizer,
        instruction_margin=instruction_margin,
    )
    func, auth = relay_payload(envelope)
    return relay.submit_soroban_transaction(func, auth)


def deploy_account_contract_gasless(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    settings: Settings,
    relay: RelayClient,
    *,
    sleep: Sleeper = time.sleep,
) -> str:
    """Create the owner's account contract with the relayer paying the fee.

    ``factory.create`` needs no authorization; anyone may pay for it.
    """
    owner = require_keypair(keypair, "deploy")
    address = account_contract_address(owner.public_key, settings)
    simulation = simulate_transaction(transport, factory_create_envelope(transport, owner, settings), "factory.create")
    result = _relay(relay, simulation, owner, settings, AuthorizerKind.CONTRACT)
    if result.hash:
        wait_for_transaction(
            transport,
            result.hash,
            max_attempts=settings.max_poll_attempts,
            interval=settings.poll_interval,
            sleep=sleep,
        )
    logger.info("deployed account contract %s through relayer", address)
    return address


def send_gasless_from_contract(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    destination: str,
    amount: str | Decimal,
    settings: Settings,
    relay: RelayClient,
    *,
    authorizer: AuthorizerKind = AuthorizerKind.CONTRACT,
    sleep: Sleeper = time.sleep,
) -> RelayResult:
    owner = require_keypair(keypair, "transfer")
    stroops = check_transfer(destination, amount)
    contract = account_contract_address(owner.public_key, settings)
    if not contract_instance_exists(transport, contract):
        logger.info("account contract %s not deployed yet", contract)
        deploy_account_contract_gasless(transport, owner, settings, relay, sleep=sleep)
    envelope = transfer_envelope(transport, owner, contract, destination, stroops, settings)
    simulation = simulate_transaction(transport, envelope, "xlm.transfer")
    return _relay(relay, simulation, owner, settings, authorizer)


def send_gasless_from_classic(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    destination: str,
    amount: str | Decimal,
    settings: Settings,
    relay: RelayClient,
    *,
    nonce_source: NonceSource = random_nonce,
) -> RelayResult:
    """Transfer from the owner's classic account without the owner paying fees.

    The owner's key check is native to the network, so the signature uses the
    ``{public_key, signature}`` list encoding and needs no instruction margin.
    """
    owner = require_keypair(keypair, "transfer")
    stroops = check_transfer(destination, amount)
    envelope = transfer_envelope(transport, owner, owner.public_key, destination, stroops, settings)
    simulation = simulate_transaction(transport, envelope, "xlm.transfer")
    simulation = replace(
        simulation,
        auth_entries=owner_address_entries(simulation.auth_entries, owner.public_key, nonce_source),
    )
    return _relay(relay, simulation, owner, settings, AuthorizerKind.NATIVE, instruction_margin=0)
