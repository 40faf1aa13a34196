"""Deterministic contract-address derivation.

A programmable account lives at the address the network assigns to a
contract created by ``deployer`` with the owner's raw ed25519 public key as
salt. The address is a pure function of (owner key, deployer, network), so it
is known before the contract exists.
"""

from __future__ import annotations

import hashlib

from nacl.bindings import crypto_sign_ed25519_pk_to_curve25519
from nacl.exceptions import CryptoError
from stellar_sdk import Address, StrKey
from stellar_sdk import xdr as stellar_xdr

from .constants import ED25519_PUBLIC_KEY_BYTES
from .errors import AddressDerivationError
from .ledger import network_id_hash


def owner_key_bytes(owner_public_key: bytes | str) -> bytes:
    """Normalize a ``G...`` strkey or raw bytes into a validated 32-byte ed25519 key."""
    if isinstance(owner_public_key, str):
        try:
            raw = StrKey.decode_ed25519_public_key(owner_public_key)
        except ValueError as exc:
            raise AddressDerivationError(f"invalid public key '{owner_public_key}'") from exc
    elif isinstance(owner_public_key, (bytes, bytearray)):
        raw = bytes(owner_public_key)
    else:
        raise AddressDerivationError(f"unsupported key type {type(owner_public_key).__name__}")
    if len(raw) != ED25519_PUBLIC_KEY_BYTES:
        raise AddressDerivationError(f"public key must be {ED25519_PUBLIC_KEY_BYTES} bytes, got {len(raw)}")
    try:
        crypto_sign_ed25519_pk_to_curve25519(raw)
    except CryptoError as exc:
        raise AddressDerivationError("public key is not a valid ed25519 curve point") from exc
    return raw


def contract_id_preimage(
    salt: bytes,
    deployer: str,
    network_passphrase: str,
) -> stellar_xdr.HashIDPreimage:
    try:
        deployer_address = Address(deployer).to_xdr_sc_address()
    except ValueError as exc:
        raise AddressDerivationError(f"invalid deployer address '{deployer}'") from exc
    return stellar_xdr.HashIDPreimage(
        type=stellar_xdr.EnvelopeType.ENVELOPE_TYPE_CONTRACT_ID,
        contract_id=stellar_xdr.HashIDPreimageContractID(
            network_id=stellar_xdr.Hash(network_id_hash(network_passphrase)),
            contract_id_preimage=stellar_xdr.ContractIDPreimage(
                type=stellar_xdr.ContractIDPreimageType.CONTRACT_ID_PREIMAGE_FROM_ADDRESS,
                from_address=stellar_xdr.ContractIDPreimageFromAddress(
                    address=deployer_address,
                    salt=stellar_xdr.Uint256(salt),
                ),
            ),
        ),
    )


def derive_contract_id(owner_public_key: bytes | str, deployer: str, network_passphrase: str) -> bytes:
    preimage = contract_id_preimage(owner_key_bytes(owner_public_key), deployer, network_passphrase)
    return hashlib.sha256(preimage.to_xdr_bytes()).digest()


def derive_contract_address(owner_public_key: bytes | str, deployer: str, network_passphrase: str) -> str:
    """Contract address (``C...``) for the owner's account deployed by ``deployer``.

    ``deployer`` is either the owner's own ``G...`` address or a shared factory
    contract ``C...`` address.
    """
    return StrKey.encode_contract(derive_contract_id(owner_public_key, deployer, network_passphrase))


def derive_self_deployed_address(owner_public_key: bytes | str, network_passphrase: str) -> str:
    raw = owner_key_bytes(owner_public_key)
    return derive_contract_address(raw, StrKey.encode_ed25519_public_key(raw), network_passphrase)
