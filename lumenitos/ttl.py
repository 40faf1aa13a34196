"""Time-to-live tracking and maintenance for shared contract resources.

Every account contract runs the same uploaded WASM and is created through
one factory instance. If any of those entries is archived, no account can be
deployed or used, so they are watched here and kept alive on request.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from stellar_sdk import Keypair, SorobanDataBuilder, TransactionBuilder, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr

from .config import Settings
from .constants import DEPLOY_BASE_FEE, INVOKE_BASE_FEE, MAINTENANCE_TX_TIMEOUT_SECONDS
from .errors import LumenitosError, MaintenanceKeyMissing, TTLQueryError
from .ledger import (
    LedgerRead,
    balance_ledger_key,
    code_ledger_key,
    instance_ledger_key,
    instance_wasm_hash,
    native_asset_contract,
    read_ledger_entries,
    wasm_hash_from_instance,
)
from .pipeline import require_keypair, run_transaction
from .submit import Sleeper, SubmissionResult
from .transport import RpcTransport

logger = logging.getLogger(__name__)

ACCOUNT_WASM = "account_wasm"
FACTORY_INSTANCE = "factory_instance"
FACTORY_WASM = "factory_wasm"

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"


class Classification(enum.Enum):
    MISSING = "missing"
    LIVE = "live"
    NEAR_EXPIRY = "near_expiry"
    ARCHIVED = "archived"


def classify(current_ledger: int, live_until_ledger: Optional[int], bump_threshold: int) -> Classification:
    if live_until_ledger is None:
        return Classification.MISSING
    remaining = live_until_ledger - current_ledger
    if remaining <= 0:
        return Classification.ARCHIVED
    if remaining < bump_threshold:
        return Classification.NEAR_EXPIRY
    return Classification.LIVE


@dataclass(frozen=True)
class TTLRecord:
    current_ledger: int
    live_until_ledger: Optional[int]
    classification: Classification

    @classmethod
    def from_ledger(cls, current_ledger: int, live_until_ledger: Optional[int], bump_threshold: int) -> "TTLRecord":
        return cls(current_ledger, live_until_ledger, classify(current_ledger, live_until_ledger, bump_threshold))

    @property
    def installed(self) -> bool:
        return self.classification is not Classification.MISSING

    @property
    def archived(self) -> bool:
        return self.classification is Classification.ARCHIVED

    @property
    def ttl_remaining(self) -> Optional[int]:
        if self.live_until_ledger is None:
            return None
        return self.live_until_ledger - self.current_ledger

    @property
    def needs_bump(self) -> bool:
        return self.classification is Classification.NEAR_EXPIRY

    @property
    def needs_restore(self) -> bool:
        return self.classification in (Classification.MISSING, Classification.ARCHIVED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installed": self.installed,
            "archived": self.archived,
            "ttlRemaining": self.ttl_remaining,
            "needsBump": self.needs_bump,
            "needsRestore": self.needs_restore,
        }


@dataclass(frozen=True)
class TrackedResource:
    name: str
    key: stellar_xdr.LedgerKey
    wasm_path: Optional[Path] = None

    @property
    def installable(self) -> bool:
        return self.wasm_path is not None


@dataclass
class ResourceStatus:
    resource: str
    record: Optional[TTLRecord] = None
    error: Optional[str] = None

    @property
    def needs_restore(self) -> bool:
        # An unreadable entry is assumed to need a restore.
        return self.record.needs_restore if self.record is not None else True

    def to_dict(self) -> Dict[str, Any]:
        if self.record is not None:
            return self.record.to_dict()
        return {
            "installed": False,
            "archived": False,
            "ttlRemaining": None,
            "needsBump": False,
            "needsRestore": True,
            "error": self.error,
        }


@dataclass
class HealthReport:
    current_ledger: Optional[int]
    resources: Dict[str, ResourceStatus]
    maintenance_enabled: bool

    @property
    def status(self) -> str:
        if any(item.record is None for item in self.resources.values()):
            return UNHEALTHY
        if all(item.record.classification is Classification.LIVE for item in self.resources.values()):
            return HEALTHY
        return DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "currentLedger": self.current_ledger,
            "maintenanceEnabled": self.maintenance_enabled,
            "resources": {name: item.to_dict() for name, item in self.resources.items()},
        }


@dataclass
class MaintenanceAction:
    resource: str
    action: str
    success: bool
    hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"resource": self.resource, "action": self.action, "success": self.success}
        if self.hash:
            out["hash"] = self.hash
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class MaintenanceResult:
    report_only: bool
    before: HealthReport
    after: Optional[HealthReport] = None
    actions: List[MaintenanceAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reportOnly": self.report_only,
            "before": self.before.to_dict(),
            "after": self.after.to_dict() if self.after is not None else None,
            "actions": [action.to_dict() for action in self.actions],
        }


def wasm_file_hash(path: Path) -> bytes:
    return hashlib.sha256(path.read_bytes()).digest()


def shared_resources(settings: Settings) -> List[TrackedResource]:
    """Resources every account depends on, as far as the settings name them."""
    resources: List[TrackedResource] = []
    wasm_path = Path(settings.account_wasm_path) if settings.account_wasm_path else None
    account_hash: Optional[bytes] = None
    if settings.account_wasm_hash:
        account_hash = bytes.fromhex(settings.account_wasm_hash)
    elif wasm_path is not None and wasm_path.exists():
        account_hash = wasm_file_hash(wasm_path)
    if account_hash is not None:
        resources.append(TrackedResource(ACCOUNT_WASM, code_ledger_key(account_hash), wasm_path))
    resources.append(TrackedResource(FACTORY_INSTANCE, instance_ledger_key(settings.factory_address)))
    if settings.factory_wasm_hash:
        resources.append(TrackedResource(FACTORY_WASM, code_ledger_key(settings.factory_wasm_hash)))
    return resources


def _admin_envelope(
    transport: RpcTransport,
    admin: Keypair,
    settings: Settings,
    *,
    base_fee: int = INVOKE_BASE_FEE,
) -> TransactionBuilder:
    source = transport.get_account(admin.public_key)
    return TransactionBuilder(source, settings.network_passphrase, base_fee=base_fee).set_timeout(
        MAINTENANCE_TX_TIMEOUT_SECONDS
    )


def build_extend_ttl(
    transport: RpcTransport,
    signer: Keypair,
    key: stellar_xdr.LedgerKey,
    settings: Settings,
) -> TransactionEnvelope:
    data = SorobanDataBuilder().set_read_only([key]).build()
    return (
        _admin_envelope(transport, signer, settings)
        .append_extend_footprint_ttl_op(extend_to=settings.max_ttl_extension)
        .set_soroban_data(data)
        .build()
    )


def build_restore(
    transport: RpcTransport,
    signer: Keypair,
    key: stellar_xdr.LedgerKey,
    settings: Settings,
) -> TransactionEnvelope:
    data = SorobanDataBuilder().set_read_write([key]).build()
    return (
        _admin_envelope(transport, signer, settings, base_fee=DEPLOY_BASE_FEE)
        .append_restore_footprint_op()
        .set_soroban_data(data)
        .build()
    )


def build_upload(
    transport: RpcTransport,
    signer: Keypair,
    wasm: bytes,
    settings: Settings,
) -> TransactionEnvelope:
    return (
        _admin_envelope(transport, signer, settings, base_fee=DEPLOY_BASE_FEE)
        .append_upload_contract_wasm_op(contract=wasm)
        .build()
    )


def extend_ttl(
    transport: RpcTransport,
    signer: Optional[Keypair],
    key: stellar_xdr.LedgerKey,
    settings: Settings,
    *,
    max_attempts: Optional[int] = None,
    sleep: Sleeper = time.sleep,
) -> SubmissionResult:
    owner = require_keypair(signer, "ttl extension")
    envelope = build_extend_ttl(transport, owner, key, settings)
    return run_transaction(
        transport, envelope, owner, settings, label="extend ttl", max_attempts=max_attempts, sleep=sleep
    )


class TTLLifecycleManager:
    """Reports TTLs of tracked resources and, when asked, keeps them alive.

    Without a maintenance key the manager only reads. Transitions happen only
    inside ``maintain``; ``report`` never mutates the ledger.
    """

    def __init__(
        self,
        transport: RpcTransport,
        settings: Settings,
        resources: Optional[Sequence[TrackedResource]] = None,
        maintenance_key: Optional[Keypair] = None,
        *,
        sleep: Sleeper = time.sleep,
    ):
        self.transport = transport
        self.settings = settings
        self.resources = list(resources) if resources is not None else shared_resources(settings)
        self._maintenance_key = maintenance_key
        self._sleep = sleep

    @property
    def maintenance_enabled(self) -> bool:
        return self._maintenance_key is not None and self._maintenance_key.can_sign()

    def _require_key(self) -> Keypair:
        if not self.maintenance_enabled:
            raise MaintenanceKeyMissing()
        return self._maintenance_key

    def report(self) -> HealthReport:
        keys = [resource.key for resource in self.resources]
        try:
            read: Optional[LedgerRead] = read_ledger_entries(self.transport, keys)
        except Exception as exc:
            logger.warning("ledger read for %d tracked resources failed: %s", len(keys), exc)
            read = None
            failure = TTLQueryError(", ".join(r.name for r in self.resources), str(exc))

        statuses: Dict[str, ResourceStatus] = {}
        for resource in self.resources:
            if read is None:
                statuses[resource.name] = ResourceStatus(resource.name, error=failure.detail)
                continue
            entry = read.get(resource.key)
            live_until = entry.live_until_ledger if entry is not None else None
            if entry is not None and live_until is None:
                # Present but without TTL metadata; treat the read as unusable.
                statuses[resource.name] = ResourceStatus(resource.name, error="entry returned without TTL")
                continue
            record = TTLRecord.from_ledger(read.latest_ledger, live_until, self.settings.ttl_bump_threshold)
            statuses[resource.name] = ResourceStatus(resource.name, record=record)
        return HealthReport(
            current_ledger=read.latest_ledger if read is not None else None,
            resources=statuses,
            maintenance_enabled=self.maintenance_enabled,
        )

    def _run(self, admin: Keypair, envelope: TransactionEnvelope, label: str) -> SubmissionResult:
        return run_transaction(
            self.transport,
            envelope,
            admin,
            self.settings,
            label=label,
            max_attempts=self.settings.maintenance_poll_attempts,
            sleep=self._sleep,
        )

    def _action(self, resource: TrackedResource, action: str, admin: Keypair) -> MaintenanceAction:
        try:
            if action == "bump":
                envelope = build_extend_ttl(self.transport, admin, resource.key, self.settings)
            elif action == "restore":
                envelope = build_restore(self.transport, admin, resource.key, self.settings)
            elif action == "install":
                envelope = build_upload(self.transport, admin, self._install_source(resource), self.settings)
            else:
                raise ValueError(f"unknown maintenance action {action}")
            result = self._run(admin, envelope, f"{action} {resource.name}")
        except (LumenitosError, ValueError, OSError) as exc:
            logger.warning("%s of %s failed: %s", action, resource.name, exc)
            return MaintenanceAction(resource.name, action, False, hash=getattr(exc, "hash", None), error=str(exc))
        logger.info("%s of %s succeeded (%s)", action, resource.name, result.hash)
        return MaintenanceAction(resource.name, action, True, hash=result.hash)

    def _install_source(self, resource: TrackedResource) -> bytes:
        if resource.wasm_path is None:
            raise ValueError(f"{resource.name} has no install source")
        wasm = resource.wasm_path.read_bytes()
        expected = resource.key.contract_code.hash.hash if resource.key.contract_code is not None else None
        if expected is not None and hashlib.sha256(wasm).digest() != expected:
            raise ValueError(f"{resource.wasm_path} does not hash to the tracked code entry")
        return wasm

    def _revive(self, resource: TrackedResource, admin: Keypair, install: bool) -> List[MaintenanceAction]:
        actions = [self._action(resource, "restore", admin)]
        if not actions[-1].success:
            if not (install and resource.installable):
                return actions
            actions.append(self._action(resource, "install", admin))
            if not actions[-1].success:
                return actions
        actions.append(self._action(resource, "bump", admin))
        return actions

    def maintain(self, *, bump: bool = True, install: bool = False) -> MaintenanceResult:
        """Bring every tracked resource back to Live where the flags allow it.

        ``bump`` covers NearExpiry extensions and restoring Archived entries;
        ``install`` covers entries missing from the ledger. A missing entry is
        first restored, because RPC may omit evicted entries, and installed
        from its WASM only if that restore fails.
        """
        before = self.report()
        try:
            admin = self._require_key()
        except MaintenanceKeyMissing as exc:
            logger.info("%s", exc)
            return MaintenanceResult(report_only=True, before=before)

        actions: List[MaintenanceAction] = []
        for resource in self.resources:
            status = before.resources[resource.name]
            if status.record is None:
                if install or bump:
                    actions.extend(self._revive(resource, admin, install))
                continue
            classification = status.record.classification
            if classification is Classification.LIVE:
                continue
            if classification is Classification.NEAR_EXPIRY and bump:
                actions.append(self._action(resource, "bump", admin))
            elif classification is Classification.ARCHIVED and bump:
                actions.extend(self._revive(resource, admin, install))
            elif classification is Classification.MISSING and install:
                actions.extend(self._revive(resource, admin, install))

        after = self.report() if actions else before
        return MaintenanceResult(report_only=False, before=before, after=after, actions=actions)


@dataclass
class ContractTTLs:
    current_ledger: int
    instance: Optional[int] = None
    code: Optional[int] = None
    balance: Optional[int] = None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            "currentLedger": self.current_ledger,
            "instance": self.instance,
            "code": self.code,
            "balance": self.balance,
        }


def get_contract_ttls(transport: RpcTransport, contract_address: str, settings: Settings) -> ContractTTLs:
    """Live-until ledgers of one account contract's instance, code and XLM balance."""
    token = native_asset_contract(settings.network_passphrase)
    instance_key = instance_ledger_key(contract_address)
    balance_key = balance_ledger_key(token, contract_address)
    try:
        read = read_ledger_entries(transport, [instance_key, balance_key])
    except Exception as exc:
        raise TTLQueryError(contract_address, str(exc)) from exc

    result = ContractTTLs(current_ledger=read.latest_ledger)
    instance = read.get(instance_key)
    balance = read.get(balance_key)
    if balance is not None:
        result.balance = balance.live_until_ledger
    if instance is not None:
        result.instance = instance.live_until_ledger
        wasm_hash = wasm_hash_from_instance(instance.data)
        if wasm_hash is not None:
            code_key = code_ledger_key(wasm_hash)
            try:
                code = read_ledger_entries(transport, [code_key]).get(code_key)
            except Exception as exc:
                raise TTLQueryError(f"{contract_address} code", str(exc)) from exc
            if code is not None:
                result.code = code.live_until_ledger
    return result


def bump_instance_ttl(
    transport: RpcTransport, signer: Optional[Keypair], contract_address: str, settings: Settings, **kwargs: Any
) -> SubmissionResult:
    return extend_ttl(transport, signer, instance_ledger_key(contract_address), settings, **kwargs)


def bump_code_ttl(
    transport: RpcTransport, signer: Optional[Keypair], contract_address: str, settings: Settings, **kwargs: Any
) -> SubmissionResult:
    wasm_hash = instance_wasm_hash(transport, contract_address)
    if wasm_hash is None:
        raise ValueError(f"no WASM-based instance found for {contract_address}")
    return extend_ttl(transport, signer, code_ledger_key(wasm_hash), settings, **kwargs)


def bump_balance_ttl(
    transport: RpcTransport, signer: Optional[Keypair], contract_address: str, settings: Settings, **kwargs: Any
) -> SubmissionResult:
    token = native_asset_contract(settings.network_passphrase)
    return extend_ttl(transport, signer, balance_ledger_key(token, contract_address), settings, **kwargs)
