"""RPC transport interface and the composition-root factory.

Every operation in the core takes its transport as an argument. There is no
process-wide default client; tests pass fakes, applications call
``create_transport`` once and hand the result around.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence

from stellar_sdk import Account, SorobanServer
from stellar_sdk import xdr as stellar_xdr

from .config import Settings

logger = logging.getLogger(__name__)


class RpcTransport(Protocol):
    """The subset of the Soroban RPC surface the core depends on."""

    def get_account(self, account_id: str) -> Account: ...

    def simulate_transaction(self, transaction_envelope: Any) -> Any: ...

    def send_transaction(self, transaction_envelope: Any) -> Any: ...

    def get_transaction(self, transaction_hash: str) -> Any: ...

    def get_ledger_entries(self, keys: List[stellar_xdr.LedgerKey]) -> Any: ...

    def get_events(
        self,
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        filters: Optional[Sequence[Any]] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Any: ...

    def get_latest_ledger(self) -> Any: ...


def create_transport(settings: Settings) -> SorobanServer:
    url = settings.resolved_rpc_url
    logger.debug("creating soroban rpc transport for %s", url)
    return SorobanServer(url)
