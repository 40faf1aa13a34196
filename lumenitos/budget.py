"""Transaction assembly and the instruction-budget correction.

Simulation of an address-credential call runs without a signature, so the
authorizing contract's ``__check_auth`` ed25519 verification is not part of
the measured CPU cost. After the signed entries are in place the instruction
budget is raised by a fixed margin, exactly once, before the envelope is
signed.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from stellar_sdk import TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr
from stellar_sdk.operation import InvokeHostFunction

from .auth import AuthEntry
from .simulate import SimulationResult

logger = logging.getLogger(__name__)

UINT32_MAX = 2**32 - 1


@dataclass(frozen=True)
class ResourceBudget:
    instructions: int
    resource_fee: int
    read_only_keys: int
    read_write_keys: int


def resource_budget(envelope: TransactionEnvelope) -> ResourceBudget:
    data = envelope.transaction.soroban_data
    if data is None:
        raise ValueError("transaction has no soroban resource data")
    footprint = data.resources.footprint
    return ResourceBudget(
        instructions=data.resources.instructions.uint32,
        resource_fee=data.resource_fee.int64,
        read_only_keys=len(footprint.read_only),
        read_write_keys=len(footprint.read_write),
    )


def assemble_transaction(
    simulation: SimulationResult,
    network_passphrase: str,
    auth_entries: Optional[Sequence[AuthEntry]] = None,
) -> TransactionEnvelope:
    """Copy the simulated envelope and attach footprint, resource fee and auth.

    ``auth_entries`` defaults to the entries simulation returned. The fee
    becomes the classic fee plus the simulated minimum resource fee.
    """
    if simulation.envelope.signatures:
        raise ValueError("cannot assemble an already-signed envelope")
    assembled = TransactionEnvelope.from_xdr(simulation.envelope.to_xdr(), network_passphrase)
    tx = assembled.transaction
    tx.soroban_data = copy.deepcopy(simulation.transaction_data)
    tx.fee = simulation.envelope.transaction.fee + simulation.min_resource_fee

    entries = simulation.auth_entries if auth_entries is None else auth_entries
    invoke_ops = [op for op in tx.operations if isinstance(op, InvokeHostFunction)]
    if invoke_ops:
        invoke_ops[0].auth = [entry.to_xdr() for entry in entries]
    elif entries:
        raise ValueError("authorization entries given for a transaction without a contract invocation")
    return assembled


def bump_instruction_limit(envelope: TransactionEnvelope, margin: int) -> ResourceBudget:
    """Raise the instruction budget of an assembled envelope by ``margin``.

    Returns the budget after the change. Must run before the envelope is
    signed; the signature covers the resource data.
    """
    if margin < 0:
        raise ValueError("instruction margin must be >= 0")
    if envelope.signatures:
        raise ValueError("cannot change resources of a signed envelope")
    data = envelope.transaction.soroban_data
    if data is None:
        raise ValueError("transaction has no soroban resource data; assemble it first")
    current = data.resources.instructions.uint32
    updated = current + margin
    if updated > UINT32_MAX:
        raise ValueError(f"instruction budget {updated} exceeds u32 range")
    data.resources.instructions = stellar_xdr.Uint32(updated)
    logger.debug("instruction budget %d -> %d", current, updated)
    return resource_budget(envelope)


def finalize_envelope(
    simulation: SimulationResult,
    network_passphrase: str,
    auth_entries: Optional[Sequence[AuthEntry]] = None,
    instruction_margin: int = 0,
) -> TransactionEnvelope:
    """Assemble, then apply the instruction margin once. The result is unsigned."""
    envelope = assemble_transaction(simulation, network_passphrase, auth_entries)
    if instruction_margin:
        bump_instruction_limit(envelope, instruction_margin)
    return envelope
