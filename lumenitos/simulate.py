"""Build contract invocations and run them through RPC simulation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from stellar_sdk import Account, Keypair, TransactionBuilder, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.operation import InvokeHostFunction

from .auth import AddressCredential, AuthEntry, parse_auth_entries
from .constants import INVOKE_BASE_FEE, TX_TIMEOUT_SECONDS
from .errors import SimulationFailure
from .transport import RpcTransport

logger = logging.getLogger(__name__)


@dataclass
class SimulationResult:
    """Everything one simulation produced.

    Entries in ``auth_entries`` carry single-use nonces. Sign them from this
    result only; simulating again yields different nonces and footprints.
    """

    function: str
    envelope: TransactionEnvelope
    latest_ledger: int
    transaction_data: stellar_xdr.SorobanTransactionData
    min_resource_fee: int
    return_value: Optional[stellar_xdr.SCVal] = None
    auth_entries: List[AuthEntry] = field(default_factory=list)

    @property
    def address_entries(self) -> List[AddressCredential]:
        return [entry for entry in self.auth_entries if isinstance(entry, AddressCredential)]


def throwaway_account() -> Account:
    """Unfunded random source account; enough for read-only simulation."""
    return Account(Keypair.random().public_key, 0)


def build_invocation(
    source: Account,
    contract_id: str,
    function: str,
    args: Sequence[stellar_xdr.SCVal],
    network_passphrase: str,
    *,
    base_fee: int = INVOKE_BASE_FEE,
    timeout: int = TX_TIMEOUT_SECONDS,
) -> TransactionEnvelope:
    return (
        TransactionBuilder(source, network_passphrase, base_fee=base_fee)
        .append_invoke_contract_function_op(
            contract_id=contract_id,
            function_name=function,
            parameters=list(args),
        )
        .set_timeout(timeout)
        .build()
    )


def _carries_signed_auth(envelope: TransactionEnvelope) -> bool:
    for op in envelope.transaction.operations:
        if not isinstance(op, InvokeHostFunction):
            continue
        for raw in op.auth or []:
            creds = raw.credentials
            if (
                creds.type == stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS
                and creds.address is not None
                and creds.address.signature.type != stellar_xdr.SCValType.SCV_VOID
            ):
                return True
    return False


def simulate_transaction(transport: RpcTransport, envelope: TransactionEnvelope, label: str) -> SimulationResult:
    """Simulate ``envelope`` once. Failures are raised verbatim and never retried."""
    if _carries_signed_auth(envelope):
        raise ValueError(
            "transaction already carries signed authorization entries; "
            "rebuild it from scratch instead of simulating again"
        )
    logger.info("simulating %s", label)
    response = transport.simulate_transaction(envelope)
    if response.error:
        raise SimulationFailure(label, str(response.error))
    if getattr(response, "restore_preamble", None) is not None:
        raise SimulationFailure(label, "archived ledger entries must be restored before this call")
    if not response.transaction_data:
        raise SimulationFailure(label, "simulation returned no resource footprint")

    return_value: Optional[stellar_xdr.SCVal] = None
    raw_auth: List[str] = []
    results = response.results or []
    if results:
        first = results[0]
        if first.xdr:
            return_value = stellar_xdr.SCVal.from_xdr(first.xdr)
        raw_auth = list(first.auth or [])

    result = SimulationResult(
        function=label,
        envelope=envelope,
        latest_ledger=int(response.latest_ledger),
        transaction_data=stellar_xdr.SorobanTransactionData.from_xdr(response.transaction_data),
        min_resource_fee=int(response.min_resource_fee or 0),
        return_value=return_value,
        auth_entries=parse_auth_entries(raw_auth),
    )
    logger.debug(
        "simulated %s: %d auth entries, min resource fee %d, ledger %d",
        label,
        len(result.auth_entries),
        result.min_resource_fee,
        result.latest_ledger,
    )
    return result


def simulate_invocation(
    transport: RpcTransport,
    contract_id: str,
    function: str,
    args: Sequence[stellar_xdr.SCVal],
    network_passphrase: str,
    *,
    source: Optional[Account] = None,
    base_fee: int = INVOKE_BASE_FEE,
) -> SimulationResult:
    """Build and simulate ``contract_id.function(*args)``.

    Without ``source`` the call runs from a throwaway account, which suits
    pure reads. State-changing calls pass the real source account.
    """
    account = source if source is not None else throwaway_account()
    envelope = build_invocation(account, contract_id, function, args, network_passphrase, base_fee=base_fee)
    return simulate_transaction(transport, envelope, f"{contract_id[:8]}.{function}")
