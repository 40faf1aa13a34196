"""Soroban authorization entries: parsing and signing.

Simulation returns the authorization entries an invocation needs. Entries
with a source-account credential are satisfied by the envelope signature and
pass through untouched. Entries with an address credential must be signed by
the owner key over the canonical preimage

    HashIdPreimage::SorobanAuthorization {
        network_id, nonce, signature_expiration_ledger, invocation
    }

and the signature is encoded the way the authorizing contract expects it.
The invocation tree is carried through as the very object simulation
produced; changing it invalidates the signature.
"""

from __future__ import annotations

import copy
import enum
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Protocol, Union

from stellar_sdk import Address, scval
from stellar_sdk import xdr as stellar_xdr

from .constants import ED25519_PUBLIC_KEY_BYTES, ED25519_SIGNATURE_BYTES
from .errors import AuthSigningError, KeyMissingError

logger = logging.getLogger(__name__)


class Signer(Protocol):
    def raw_public_key(self) -> bytes: ...

    def sign(self, data: bytes) -> bytes: ...


class AuthorizerKind(enum.Enum):
    # Custom account contract whose __check_auth takes a raw BytesN<64>.
    CONTRACT = "contract"
    # Key-checking account contract that accepts a list of {public_key, signature}.
    NATIVE = "native"


@dataclass(frozen=True)
class SourceAccountCredential:
    invocation: stellar_xdr.SorobanAuthorizedInvocation

    def to_xdr(self) -> stellar_xdr.SorobanAuthorizationEntry:
        return stellar_xdr.SorobanAuthorizationEntry(
            credentials=stellar_xdr.SorobanCredentials(
                type=stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_SOURCE_ACCOUNT,
            ),
            root_invocation=self.invocation,
        )


@dataclass(frozen=True)
class AddressCredential:
    sc_address: stellar_xdr.SCAddress
    nonce: int
    signature_expiration_ledger: int
    signature: stellar_xdr.SCVal
    invocation: stellar_xdr.SorobanAuthorizedInvocation

    @property
    def address(self) -> str:
        return Address.from_xdr_sc_address(self.sc_address).address

    @property
    def is_signed(self) -> bool:
        return self.signature.type != stellar_xdr.SCValType.SCV_VOID

    def to_xdr(self) -> stellar_xdr.SorobanAuthorizationEntry:
        return stellar_xdr.SorobanAuthorizationEntry(
            credentials=stellar_xdr.SorobanCredentials(
                type=stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS,
                address=stellar_xdr.SorobanAddressCredentials(
                    address=self.sc_address,
                    nonce=stellar_xdr.Int64(self.nonce),
                    signature_expiration_ledger=stellar_xdr.Uint32(self.signature_expiration_ledger),
                    signature=self.signature,
                ),
            ),
            root_invocation=self.invocation,
        )


AuthEntry = Union[SourceAccountCredential, AddressCredential]


def _decode_entry(raw: Any) -> stellar_xdr.SorobanAuthorizationEntry:
    if isinstance(raw, stellar_xdr.SorobanAuthorizationEntry):
        return copy.deepcopy(raw)
    if isinstance(raw, str):
        return stellar_xdr.SorobanAuthorizationEntry.from_xdr(raw)
    if isinstance(raw, (bytes, bytearray)):
        return stellar_xdr.SorobanAuthorizationEntry.from_xdr_bytes(bytes(raw))
    to_xdr = getattr(raw, "to_xdr", None)
    if callable(to_xdr):
        return stellar_xdr.SorobanAuthorizationEntry.from_xdr(to_xdr())
    raise TypeError(f"unsupported authorization entry type {type(raw).__name__}")


def parse_auth_entry(raw: Any, index: Optional[int] = None) -> AuthEntry:
    """Normalize an entry (base64 XDR, raw bytes, XDR object or ``to_xdr`` duck) once."""
    if isinstance(raw, (SourceAccountCredential, AddressCredential)):
        return raw
    try:
        entry = _decode_entry(raw)
    except Exception as exc:
        raise AuthSigningError(f"undecodable entry: {exc}", entry_index=index) from exc

    credentials = entry.credentials
    if credentials.type == stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_SOURCE_ACCOUNT:
        return SourceAccountCredential(invocation=entry.root_invocation)
    if credentials.type == stellar_xdr.SorobanCredentialsType.SOROBAN_CREDENTIALS_ADDRESS:
        creds = credentials.address
        if creds is None:
            raise AuthSigningError("address credential without body", entry_index=index)
        return AddressCredential(
            sc_address=creds.address,
            nonce=creds.nonce.int64,
            signature_expiration_ledger=creds.signature_expiration_ledger.uint32,
            signature=creds.signature,
            invocation=entry.root_invocation,
        )
    raise AuthSigningError(f"unrecognized credential type {credentials.type}", entry_index=index)


def parse_auth_entries(raw_entries: Iterable[Any]) -> List[AuthEntry]:
    return [parse_auth_entry(raw, index) for index, raw in enumerate(raw_entries)]


def signature_preimage(
    entry: AddressCredential,
    network_id: bytes,
    signature_expiration_ledger: Optional[int] = None,
) -> stellar_xdr.HashIDPreimage:
    if signature_expiration_ledger is None:
        signature_expiration_ledger = entry.signature_expiration_ledger
    return stellar_xdr.HashIDPreimage(
        type=stellar_xdr.EnvelopeType.ENVELOPE_TYPE_SOROBAN_AUTHORIZATION,
        soroban_authorization=stellar_xdr.HashIDPreimageSorobanAuthorization(
            network_id=stellar_xdr.Hash(network_id),
            nonce=stellar_xdr.Int64(entry.nonce),
            signature_expiration_ledger=stellar_xdr.Uint32(signature_expiration_ledger),
            invocation=entry.invocation,
        ),
    )


def signature_payload(
    entry: AddressCredential,
    network_id: bytes,
    signature_expiration_ledger: Optional[int] = None,
) -> bytes:
    """SHA-256 of the serialized preimage; this is what the owner key signs."""
    preimage = signature_preimage(entry, network_id, signature_expiration_ledger)
    return hashlib.sha256(preimage.to_xdr_bytes()).digest()


def encode_signature(kind: AuthorizerKind, public_key: bytes, signature: bytes) -> stellar_xdr.SCVal:
    if len(signature) != ED25519_SIGNATURE_BYTES:
        raise AuthSigningError(f"signature must be {ED25519_SIGNATURE_BYTES} bytes, got {len(signature)}")
    if kind is AuthorizerKind.CONTRACT:
        return scval.to_bytes(signature)
    if kind is AuthorizerKind.NATIVE:
        if len(public_key) != ED25519_PUBLIC_KEY_BYTES:
            raise AuthSigningError(f"public key must be {ED25519_PUBLIC_KEY_BYTES} bytes")
        return scval.to_vec(
            [
                scval.to_map(
                    {
                        scval.to_symbol("public_key"): scval.to_bytes(public_key),
                        scval.to_symbol("signature"): scval.to_bytes(signature),
                    }
                )
            ]
        )
    raise AuthSigningError(f"unknown authorizer kind {kind!r}")


def _require_signer(signer: Optional[Signer]) -> Signer:
    if signer is None:
        raise KeyMissingError("authorization entry")
    can_sign = getattr(signer, "can_sign", None)
    if callable(can_sign) and not can_sign():
        raise KeyMissingError("authorization entry")
    return signer


def sign_auth_entry(
    entry: Any,
    signer: Optional[Signer],
    signature_expiration_ledger: int,
    network_id: bytes,
    kind: AuthorizerKind = AuthorizerKind.CONTRACT,
) -> AuthEntry:
    """Return a signed copy of ``entry`` valid until ``signature_expiration_ledger``.

    The expiration is always the caller's; the placeholder simulation puts in
    the credential (usually 0) is discarded.
    """
    parsed = parse_auth_entry(entry)
    if isinstance(parsed, SourceAccountCredential):
        return parsed
    if signature_expiration_ledger <= 0:
        raise AuthSigningError("signature expiration ledger must be positive")
    owner = _require_signer(signer)

    payload = signature_payload(parsed, network_id, signature_expiration_ledger)
    signature = owner.sign(payload)
    logger.debug("signed auth entry for %s (nonce %d)", parsed.address, parsed.nonce)
    return AddressCredential(
        sc_address=parsed.sc_address,
        nonce=parsed.nonce,
        signature_expiration_ledger=signature_expiration_ledger,
        signature=encode_signature(kind, owner.raw_public_key(), signature),
        invocation=parsed.invocation,
    )


def sign_auth_entries(
    entries: Iterable[Any],
    signer: Optional[Signer],
    signature_expiration_ledger: int,
    network_id: bytes,
    kind: AuthorizerKind = AuthorizerKind.CONTRACT,
) -> List[AuthEntry]:
    signed: List[AuthEntry] = []
    for index, entry in enumerate(entries):
        try:
            signed.append(sign_auth_entry(entry, signer, signature_expiration_ledger, network_id, kind))
        except AuthSigningError as exc:
            if exc.entry_index is None:
                raise AuthSigningError(exc.detail, entry_index=index) from exc
            raise
    return signed
