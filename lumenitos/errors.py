"""Error taxonomy for the Lumenitos core."""

from __future__ import annotations


class LumenitosError(Exception):
    """Base class for every error raised by the core."""


class AddressDerivationError(LumenitosError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Cannot derive contract address: {detail}")


class SimulationFailure(LumenitosError):
    """The simulated invocation reverted; ``detail`` is the diagnostic verbatim."""

    def __init__(self, function: str, detail: str):
        self.function = function
        self.detail = detail
        super().__init__(f"Simulation of {function} failed: {detail}")


class KeyMissingError(LumenitosError):
    def __init__(self, purpose: str = "signing"):
        self.purpose = purpose
        super().__init__(f"No signing key available for {purpose}")


class AuthSigningError(LumenitosError):
    def __init__(self, detail: str, entry_index: int | None = None):
        self.detail = detail
        self.entry_index = entry_index
        where = f" (entry {entry_index})" if entry_index is not None else ""
        super().__init__(f"Cannot sign authorization entry{where}: {detail}")


class SubmissionRejected(LumenitosError):
    """The network refused the envelope outright; nothing was applied."""

    def __init__(self, detail: str, tx_hash: str | None = None):
        self.detail = detail
        self.hash = tx_hash
        super().__init__(f"Transaction rejected: {detail}")


class SubmissionFailed(LumenitosError):
    """The transaction was included in a ledger and failed."""

    def __init__(self, tx_hash: str, detail: str):
        self.hash = tx_hash
        self.detail = detail
        super().__init__(f"Transaction {tx_hash} failed: {detail}")


class SubmissionTimeout(LumenitosError):
    """Confirmation was not observed in time; the outcome is unknown.

    The transaction may still be applied. Query ``hash`` again before treating
    it as failed or starting a new attempt.
    """

    def __init__(self, tx_hash: str, attempts: int):
        self.hash = tx_hash
        self.attempts = attempts
        super().__init__(
            f"Transaction {tx_hash} not confirmed after {attempts} polls; outcome unknown"
        )


class RelayError(LumenitosError):
    """The fee-paying relayer refused or failed a submission."""

    def __init__(self, detail: str, status: int | None = None):
        self.detail = detail
        self.status = status
        code = f" ({status})" if status is not None else ""
        super().__init__(f"Relay submission failed{code}: {detail}")


class TTLQueryError(LumenitosError):
    def __init__(self, resource: str, detail: str):
        self.resource = resource
        self.detail = detail
        super().__init__(f"Cannot read TTL for {resource}: {detail}")


class MaintenanceKeyMissing(LumenitosError):
    """No privileged key configured; the lifecycle manager only reports."""

    def __init__(self):
        super().__init__("No maintenance key configured; running in report-only mode")
