"""Account-level operations built on the transaction pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from stellar_sdk import Address, Keypair, TransactionEnvelope, scval
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.soroban_rpc import EventFilter, EventFilterType

from .address import derive_contract_address, owner_key_bytes
from .amounts import decode_address, decode_amount, stroops_to_xlm, xlm_to_stroops
from .auth import AuthorizerKind
from .config import Settings
from .constants import DEPLOY_BASE_FEE, HISTORY_EVENT_LIMIT, HISTORY_LEDGER_WINDOW
from .errors import SimulationFailure
from .ledger import contract_instance_exists, native_asset_contract
from .pipeline import require_keypair, run_transaction
from .simulate import build_invocation, simulate_invocation
from .submit import Sleeper, SubmissionResult
from .transport import RpcTransport

logger = logging.getLogger(__name__)


def account_contract_address(owner_public_key: bytes | str, settings: Settings) -> str:
    """Address of the owner's account contract as created by the factory."""
    return derive_contract_address(owner_public_key, settings.factory_address, settings.network_passphrase)


def factory_create_envelope(transport: RpcTransport, owner: Keypair, settings: Settings) -> TransactionEnvelope:
    """Unsimulated ``factory.create(owner_key)`` call sourced from the owner's account."""
    return build_invocation(
        transport.get_account(owner.public_key),
        settings.factory_address,
        "create",
        [scval.to_bytes(owner_key_bytes(owner.public_key))],
        settings.network_passphrase,
        base_fee=DEPLOY_BASE_FEE,
    )


def deploy_account_contract(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    settings: Settings,
    *,
    sleep: Sleeper = time.sleep,
) -> str:
    owner = require_keypair(keypair, "deploy")
    address = account_contract_address(owner.public_key, settings)
    envelope = factory_create_envelope(transport, owner, settings)
    result = run_transaction(transport, envelope, owner, settings, label="factory.create", sleep=sleep)
    logger.info("deployed account contract %s (%s)", address, result.hash)
    return address


def ensure_account_contract(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    settings: Settings,
    *,
    sleep: Sleeper = time.sleep,
) -> str:
    owner = require_keypair(keypair, "deploy")
    address = account_contract_address(owner.public_key, settings)
    if contract_instance_exists(transport, address):
        return address
    logger.info("account contract %s not deployed yet", address)
    return deploy_account_contract(transport, owner, settings, sleep=sleep)


def check_transfer(destination: str, amount: str | Decimal) -> int:
    """Validate a transfer request and return the amount in stroops."""
    try:
        Address(destination)
    except ValueError as exc:
        raise ValueError(f"invalid destination address '{destination}'") from exc
    return xlm_to_stroops(amount)


def transfer_envelope(
    transport: RpcTransport,
    owner: Keypair,
    from_address: str,
    destination: str,
    stroops: int,
    settings: Settings,
) -> TransactionEnvelope:
    return build_invocation(
        transport.get_account(owner.public_key),
        native_asset_contract(settings.network_passphrase),
        "transfer",
        [scval.to_address(from_address), scval.to_address(destination), scval.to_int128(stroops)],
        settings.network_passphrase,
    )


def send_from_contract_account(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    destination: str,
    amount: str | Decimal,
    settings: Settings,
    *,
    authorizer: AuthorizerKind = AuthorizerKind.CONTRACT,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    """Move XLM out of the owner's account contract.

    The owner's classic account pays fees; the contract authorizes the
    transfer through a signed address-credential entry.
    """
    owner = require_keypair(keypair, "transfer")
    stroops = check_transfer(destination, amount)
    contract = ensure_account_contract(transport, owner, settings, sleep=sleep)
    envelope = transfer_envelope(transport, owner, contract, destination, stroops, settings)
    return run_transaction(
        transport, envelope, owner, settings, label="xlm.transfer", authorizer=authorizer, sleep=sleep
    )


def send_from_classic_account(
    transport: RpcTransport,
    keypair: Optional[Keypair],
    destination: str,
    amount: str | Decimal,
    settings: Settings,
    *,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    owner = require_keypair(keypair, "transfer")
    stroops = check_transfer(destination, amount)
    envelope = transfer_envelope(transport, owner, owner.public_key, destination, stroops, settings)
    return run_transaction(transport, envelope, owner, settings, label="xlm.transfer", sleep=sleep)


def get_balance(transport: RpcTransport, address: str, settings: Settings) -> Decimal:
    """XLM balance held by ``address`` (account or contract)."""
    try:
        simulation = simulate_invocation(
            transport,
            native_asset_contract(settings.network_passphrase),
            "balance",
            [scval.to_address(address)],
            settings.network_passphrase,
        )
    except SimulationFailure as exc:
        logger.info("balance of %s unavailable, reporting zero: %s", address, exc.detail)
        return Decimal(0)
    if simulation.return_value is None:
        return Decimal(0)
    value = decode_amount(simulation.return_value)
    if not value.recognized:
        logger.warning("unrecognized balance value for %s", address)
    return stroops_to_xlm(value.amount)


@dataclass
class TransferRecord:
    tx_hash: str
    ledger: int
    timestamp: str
    from_address: str
    to_address: str
    amount: Decimal
    direction: str
    counterparty: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "ledger": self.ledger,
            "timestamp": self.timestamp,
            "from": self.from_address,
            "to": self.to_address,
            "amount": str(self.amount),
            "direction": self.direction,
            "counterparty": self.counterparty,
        }


def parse_transfer_event(event: Any, target: str) -> TransferRecord:
    topics = [stellar_xdr.SCVal.from_xdr(topic) for topic in (event.topic or [])]
    from_address = decode_address(topics[1]) if len(topics) >= 2 else "unknown"
    to_address = decode_address(topics[2]) if len(topics) >= 3 else "unknown"
    amount = Decimal(0)
    if event.value:
        value = decode_amount(stellar_xdr.SCVal.from_xdr(event.value))
        if not value.recognized:
            logger.warning("transfer event in %s has an unrecognized amount", event.transaction_hash)
        amount = stroops_to_xlm(value.amount)
    direction = "sent" if from_address == target else "received"
    return TransferRecord(
        tx_hash=event.transaction_hash,
        ledger=event.ledger,
        timestamp=event.ledger_close_at,
        from_address=from_address,
        to_address=to_address,
        amount=amount,
        direction=direction,
        counterparty=to_address if direction == "sent" else from_address,
    )


def transfer_filters(address: str, token_contract: str) -> List[EventFilter]:
    transfer = scval.to_symbol("transfer").to_xdr()
    target = scval.to_address(address).to_xdr()
    return [
        EventFilter(
            event_type=EventFilterType.CONTRACT,
            contract_ids=[token_contract],
            topics=[[transfer, target, "*", "*"]],
        ),
        EventFilter(
            event_type=EventFilterType.CONTRACT,
            contract_ids=[token_contract],
            topics=[[transfer, "*", target, "*"]],
        ),
    ]


def get_transfer_history(
    transport: RpcTransport,
    address: str,
    settings: Settings,
    limit: int = 5,
) -> List[TransferRecord]:
    """Most recent XLM transfers in or out of ``address``, newest first."""
    if limit <= 0:
        raise ValueError("limit must be > 0")
    latest = transport.get_latest_ledger().sequence
    start = max(1, latest - HISTORY_LEDGER_WINDOW)
    response = transport.get_events(
        start_ledger=start,
        filters=transfer_filters(address, native_asset_contract(settings.network_passphrase)),
        limit=HISTORY_EVENT_LIMIT,
    )
    events = sorted(response.events or [], key=lambda event: event.ledger, reverse=True)
    return [parse_transfer_event(event, address) for event in events[:limit]]
