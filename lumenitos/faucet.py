"""Testnet funding through friendbot."""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Optional

from stellar_sdk import Keypair, StrKey

from .config import Settings
from .pipeline import require_keypair
from .submit import Sleeper, SubmissionResult
from .transport import RpcTransport
from .wallet import send_from_classic_account

logger = logging.getLogger(__name__)

CONTRACT_FUNDING_XLM = "5000"
_RETRY_CODES = {429, 500, 502, 503, 504}


@dataclass
class FundingResult:
    address: str
    already_funded: bool = False
    transfer: Optional[SubmissionResult] = None

    @property
    def message(self) -> str:
        if self.transfer is not None:
            return f"Funded signer and transferred {CONTRACT_FUNDING_XLM} XLM to {self.address} ({self.transfer.hash})"
        if self.already_funded:
            return f"{self.address} is already funded"
        return f"Funded {self.address}"


def _already_funded(body: str) -> bool:
    try:
        detail = json.loads(body).get("detail", "")
    except (ValueError, AttributeError):
        detail = body
    return "already funded" in str(detail)


def fund_testnet_account(url: str, address: str, *, retries: int = 3) -> bool:
    """Ask friendbot to fund ``address``. Returns False if it was already funded."""
    query = urllib.parse.urlencode({"addr": address})
    req = urllib.request.Request(f"{url}?{query}")
    for attempt in range(retries + 1):
        try:
            with urllib.request.urlopen(req) as resp:
                resp.read()
            logger.info("friendbot funded %s", address)
            return True
        except urllib.error.HTTPError as exc:
            body = exc.read().decode(errors="replace")
            if _already_funded(body):
                return False
            if exc.code in _RETRY_CODES and attempt < retries:
                time.sleep(0.25 * (2**attempt))
                continue
            raise ValueError(f"Friendbot request failed ({exc.code}): {body or exc.reason}") from exc
        except urllib.error.URLError as exc:
            if attempt < retries:
                time.sleep(0.25 * (2**attempt))
                continue
            raise ValueError(f"Friendbot transport error: {exc}") from exc
    raise ValueError("Friendbot request failed after retries")


def fund_account(
    transport: RpcTransport,
    address: str,
    settings: Settings,
    keypair: Optional[Keypair] = None,
    *,
    sleep: Sleeper = time.sleep,
) -> FundingResult:
    """Fund a ``G...`` account directly, or a ``C...`` contract through its owner.

    Friendbot only creates classic accounts, so a contract address is funded
    by funding the owner and moving XLM into the contract with a transfer.
    """
    if not settings.is_testnet:
        raise ValueError("Funding is only available on testnet")
    if StrKey.is_valid_contract(address):
        owner = require_keypair(keypair, "contract funding")
        fund_testnet_account(settings.friendbot_url, owner.public_key)
        transfer = send_from_classic_account(
            transport, owner, address, CONTRACT_FUNDING_XLM, settings, sleep=sleep
        )
        return FundingResult(address, transfer=transfer)
    if not StrKey.is_valid_ed25519_public_key(address):
        raise ValueError(f"invalid address '{address}'")
    funded = fund_testnet_account(settings.friendbot_url, address)
    return FundingResult(address, already_funded=not funded)
