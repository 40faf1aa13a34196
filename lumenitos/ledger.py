"""Ledger key builders and ledger-entry reads."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from stellar_sdk import Address, Asset, StrKey, scval
from stellar_sdk import xdr as stellar_xdr

from .transport import RpcTransport


def network_id_hash(network_passphrase: str) -> bytes:
    return hashlib.sha256(network_passphrase.encode("utf-8")).digest()


def native_asset_contract(network_passphrase: str) -> str:
    """Address of the XLM Stellar Asset Contract on the given network."""
    return Asset.native().contract_id(network_passphrase)


def _contract_sc_address(contract_address: str) -> stellar_xdr.SCAddress:
    if not StrKey.is_valid_contract(contract_address):
        raise ValueError(f"not a contract address: {contract_address}")
    return Address(contract_address).to_xdr_sc_address()


def instance_ledger_key(contract_address: str) -> stellar_xdr.LedgerKey:
    return stellar_xdr.LedgerKey(
        type=stellar_xdr.LedgerEntryType.CONTRACT_DATA,
        contract_data=stellar_xdr.LedgerKeyContractData(
            contract=_contract_sc_address(contract_address),
            key=stellar_xdr.SCVal(type=stellar_xdr.SCValType.SCV_LEDGER_KEY_CONTRACT_INSTANCE),
            durability=stellar_xdr.ContractDataDurability.PERSISTENT,
        ),
    )


def code_ledger_key(wasm_hash: bytes | str) -> stellar_xdr.LedgerKey:
    if isinstance(wasm_hash, str):
        wasm_hash = bytes.fromhex(wasm_hash)
    if len(wasm_hash) != 32:
        raise ValueError("wasm hash must be 32 bytes")
    return stellar_xdr.LedgerKey(
        type=stellar_xdr.LedgerEntryType.CONTRACT_CODE,
        contract_code=stellar_xdr.LedgerKeyContractCode(hash=stellar_xdr.Hash(wasm_hash)),
    )


def balance_ledger_key(token_contract: str, holder_contract: str) -> stellar_xdr.LedgerKey:
    """Persistent ``Balance(holder)`` entry kept by a Stellar Asset Contract."""
    balance_key = scval.to_vec([scval.to_symbol("Balance"), scval.to_address(holder_contract)])
    return stellar_xdr.LedgerKey(
        type=stellar_xdr.LedgerEntryType.CONTRACT_DATA,
        contract_data=stellar_xdr.LedgerKeyContractData(
            contract=_contract_sc_address(token_contract),
            key=balance_key,
            durability=stellar_xdr.ContractDataDurability.PERSISTENT,
        ),
    )


@dataclass
class LedgerEntry:
    key: stellar_xdr.LedgerKey
    data: stellar_xdr.LedgerEntryData
    live_until_ledger: Optional[int]


@dataclass
class LedgerRead:
    latest_ledger: int
    entries: Dict[str, LedgerEntry]

    def get(self, key: stellar_xdr.LedgerKey) -> Optional[LedgerEntry]:
        return self.entries.get(key.to_xdr())


def read_ledger_entries(transport: RpcTransport, keys: Sequence[stellar_xdr.LedgerKey]) -> LedgerRead:
    """Fetch entries for ``keys``; absent entries are simply missing from the result."""
    response = transport.get_ledger_entries(list(keys))
    entries: Dict[str, LedgerEntry] = {}
    for item in response.entries or []:
        key = stellar_xdr.LedgerKey.from_xdr(item.key)
        entries[key.to_xdr()] = LedgerEntry(
            key=key,
            data=stellar_xdr.LedgerEntryData.from_xdr(item.xdr),
            live_until_ledger=item.live_until_ledger,
        )
    return LedgerRead(latest_ledger=int(response.latest_ledger), entries=entries)


def contract_instance_exists(transport: RpcTransport, contract_address: str) -> bool:
    key = instance_ledger_key(contract_address)
    return read_ledger_entries(transport, [key]).get(key) is not None


def wasm_hash_from_instance(data: stellar_xdr.LedgerEntryData) -> Optional[bytes]:
    if data.type != stellar_xdr.LedgerEntryType.CONTRACT_DATA or data.contract_data is None:
        return None
    val = data.contract_data.val
    if val.type != stellar_xdr.SCValType.SCV_CONTRACT_INSTANCE or val.instance is None:
        return None
    executable = val.instance.executable
    if executable.type != stellar_xdr.ContractExecutableType.CONTRACT_EXECUTABLE_WASM:
        return None
    return executable.wasm_hash.hash


def instance_wasm_hash(transport: RpcTransport, contract_address: str) -> Optional[bytes]:
    """WASM hash the contract instance executes, or ``None`` if absent or not WASM-based."""
    key = instance_ledger_key(contract_address)
    entry = read_ledger_entries(transport, [key]).get(key)
    if entry is None:
        return None
    return wasm_hash_from_instance(entry.data)
