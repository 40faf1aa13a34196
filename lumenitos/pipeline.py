"""One logical transaction: simulate, sign entries, adjust budget, submit.

The steps run as a single unit. Any failure propagates and the caller starts
over with a freshly built envelope; no step is retried on its own.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from stellar_sdk import Keypair, TransactionEnvelope

from .auth import AuthorizerKind, sign_auth_entries
from .budget import finalize_envelope
from .config import Settings
from .errors import AuthSigningError, KeyMissingError
from .ledger import network_id_hash
from .simulate import SimulationResult, simulate_transaction
from .submit import Sleeper, SubmissionResult, submit_transaction
from .transport import RpcTransport

logger = logging.getLogger(__name__)


def require_keypair(keypair: Optional[Keypair], purpose: str = "signing") -> Keypair:
    if keypair is None or not keypair.can_sign():
        raise KeyMissingError(purpose)
    return keypair


def prepare_envelope(
    simulation: SimulationResult,
    signer: Keypair,
    settings: Settings,
    *,
    authorizer: Optional[AuthorizerKind] = None,
    instruction_margin: Optional[int] = None,
) -> TransactionEnvelope:
    """Turn a simulation into a signed envelope ready for submission."""
    entries = simulation.auth_entries
    margin = 0
    if simulation.address_entries:
        if authorizer is None:
            raise AuthSigningError(
                f"{simulation.function} needs address authorization but no authorizer kind was given"
            )
        expiration = simulation.latest_ledger + settings.auth_validity_ledgers
        entries = sign_auth_entries(
            entries,
            signer,
            expiration,
            network_id_hash(settings.network_passphrase),
            authorizer,
        )
        margin = settings.instruction_margin if instruction_margin is None else instruction_margin
        logger.debug("signed %d address entries, valid until ledger %d", len(simulation.address_entries), expiration)

    envelope = finalize_envelope(simulation, settings.network_passphrase, entries, margin)
    envelope.sign(signer)
    return envelope


def run_transaction(
    transport: RpcTransport,
    envelope: TransactionEnvelope,
    signer: Optional[Keypair],
    settings: Settings,
    *,
    label: str,
    authorizer: Optional[AuthorizerKind] = None,
    instruction_margin: Optional[int] = None,
    max_attempts: Optional[int] = None,
    deadline: Optional[float] = None,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    owner = require_keypair(signer, label)
    simulation = simulate_transaction(transport, envelope, label)
    final = prepare_envelope(
        simulation,
        owner,
        settings,
        authorizer=authorizer,
        instruction_margin=instruction_margin,
    )
    return submit_transaction(
        transport,
        final,
        max_attempts=max_attempts or settings.max_poll_attempts,
        interval=settings.poll_interval,
        deadline=deadline,
        sleep=sleep,
    )
