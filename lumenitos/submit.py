"""Submission and bounded confirmation polling."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from stellar_sdk import TransactionEnvelope

from .constants import DEFAULT_MAX_POLL_ATTEMPTS, DEFAULT_POLL_INTERVAL
from .errors import SubmissionFailed, SubmissionRejected, SubmissionTimeout
from .transport import RpcTransport

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], None]


@dataclass
class SubmissionResult:
    hash: str
    status: str
    ledger: Optional[int] = None
    result_xdr: Optional[str] = None
    result_meta_xdr: Optional[str] = None
    synchronous: bool = False


def status_name(status: Any) -> str:
    """Normalize SDK status enums and plain strings to an upper-case name."""
    value = getattr(status, "value", status)
    return str(value).upper()


def wait_for_transaction(
    transport: RpcTransport,
    tx_hash: str,
    *,
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
    interval: float = DEFAULT_POLL_INTERVAL,
    deadline: Optional[float] = None,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    """Poll ``getTransaction`` until a terminal status or the attempt bound.

    ``deadline`` is an optional wall-clock budget in seconds on top of the
    attempt count. Exhausting either raises ``SubmissionTimeout``; the
    transaction may still land.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be > 0")
    if interval < 0:
        raise ValueError("interval must be >= 0")
    stop_at = time.monotonic() + deadline if deadline is not None else None
    attempts = 0
    while attempts < max_attempts:
        sleep(interval)
        attempts += 1
        response = transport.get_transaction(tx_hash)
        status = status_name(response.status)
        if status == "SUCCESS":
            logger.info("transaction %s confirmed in ledger %s", tx_hash, getattr(response, "ledger", None))
            return SubmissionResult(
                hash=tx_hash,
                status=status,
                ledger=getattr(response, "ledger", None),
                result_xdr=getattr(response, "result_xdr", None),
                result_meta_xdr=getattr(response, "result_meta_xdr", None),
            )
        if status == "FAILED":
            detail = getattr(response, "result_xdr", None) or status
            raise SubmissionFailed(tx_hash, detail)
        logger.debug("transaction %s not yet observed (poll %d/%d)", tx_hash, attempts, max_attempts)
        if stop_at is not None and time.monotonic() >= stop_at:
            break
    raise SubmissionTimeout(tx_hash, attempts)


def submit_transaction(
    transport: RpcTransport,
    envelope: TransactionEnvelope,
    *,
    max_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
    interval: float = DEFAULT_POLL_INTERVAL,
    deadline: Optional[float] = None,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    """Send a fully signed envelope and wait for its outcome.

    Rejections raise ``SubmissionRejected``. Nothing here re-simulates or
    re-signs; a failed attempt has to be rebuilt by the caller.
    """
    if not envelope.signatures:
        raise ValueError("envelope must be signed before submission")
    response = transport.send_transaction(envelope)
    tx_hash = response.hash or envelope.hash_hex()
    status = status_name(response.status)

    if status == "ERROR":
        detail = getattr(response, "error_result_xdr", None) or "unknown error"
        raise SubmissionRejected(detail, tx_hash)
    if status == "TRY_AGAIN_LATER":
        raise SubmissionRejected("network asked to try again later", tx_hash)
    if status == "SUCCESS":
        return SubmissionResult(hash=tx_hash, status=status, synchronous=True)
    if status not in {"PENDING", "DUPLICATE"}:
        raise SubmissionRejected(f"unexpected submission status {status}", tx_hash)

    logger.info("transaction %s %s", tx_hash, status.lower())
    return wait_for_transaction(
        transport,
        tx_hash,
        max_attempts=max_attempts,
        interval=interval,
        deadline=deadline,
        sleep=sleep,
    )
