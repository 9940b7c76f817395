#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
zlsup_signature.py — minisign / ed25519 detached signature support

Features:
 - public key decoding: raw 32-byte ed25519 keys or 42-byte minisign blobs
 - signature decoding: raw 64-byte ed25519 signatures or 74-byte minisign
   blobs ("Ed" legacy, "ED" BLAKE2b-prehashed)
 - optional trusted comment + global signature check
 - verification with PyNaCl; any failure raises VerificationFailed

Signature file layout (minisign):
    untrusted comment: <free text>
    <base64 signature blob>
    trusted comment: <text covered by the global signature>
    <base64 global signature>

Only the signature line is required; bare files holding a single base64
line are accepted as well.
"""

from __future__ import annotations
import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import List, Optional, Union

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from zlsup_errors import InvalidPublicKey, InvalidSignatureFormat, VerificationFailed
from zlsup_logger import get_logger

LOG = get_logger("signature")

PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64
KEY_ID_BYTES = 8
ALGORITHM_ID_BYTES = 2

ALG_LEGACY = b"Ed"
ALG_PREHASHED = b"ED"

UNTRUSTED_PREFIX = "untrusted comment:"
TRUSTED_PREFIX = "trusted comment: "


@dataclass(frozen=True)
class PublicKey:
    key: bytes
    key_id: Optional[bytes] = None

    def key_id_hex(self) -> Optional[str]:
        # minisign prints key ids as little-endian hex
        return self.key_id[::-1].hex().upper() if self.key_id else None


@dataclass(frozen=True)
class Signature:
    signature: bytes
    algorithm: Optional[bytes] = None
    key_id: Optional[bytes] = None
    trusted_comment: Optional[str] = None
    global_signature: Optional[bytes] = None

    @property
    def prehashed(self) -> bool:
        return self.algorithm == ALG_PREHASHED


def _b64(text: str) -> bytes:
    return base64.b64decode(text.strip(), validate=True)


def decode_public_key(text: Union[str, bytes]) -> PublicKey:
    """Decode the configured base64 public key."""
    if isinstance(text, bytes):
        text = text.decode("ascii", errors="replace")
    try:
        raw = _b64(text)
    except (binascii.Error, ValueError) as e:
        raise InvalidPublicKey(f"public key is not valid base64: {e}") from e

    if len(raw) == PUBLIC_KEY_BYTES:
        return PublicKey(raw)
    if len(raw) == ALGORITHM_ID_BYTES + KEY_ID_BYTES + PUBLIC_KEY_BYTES:
        alg = raw[:ALGORITHM_ID_BYTES]
        if alg != ALG_LEGACY:
            raise InvalidPublicKey(f"unsupported public key algorithm {alg!r}")
        return PublicKey(raw[ALGORITHM_ID_BYTES + KEY_ID_BYTES:],
                         raw[ALGORITHM_ID_BYTES:ALGORITHM_ID_BYTES + KEY_ID_BYTES])
    raise InvalidPublicKey(f"public key has {len(raw)} bytes, expected 32 or 42")


def _content_lines(text: str) -> List[str]:
    return [ln for ln in text.splitlines() if ln.strip()]


def decode_signature(text: str) -> Signature:
    """
    Parse signature-file text.

    The first non-empty line that is not an ``untrusted comment:`` line is
    the signature line. Raises InvalidSignatureFormat when there is no such
    line or it does not decode to a 64-byte signature / 74-byte minisign blob.
    """
    lines = _content_lines(text)
    idx = 0
    while idx < len(lines) and lines[idx].strip().lower().startswith(UNTRUSTED_PREFIX):
        idx += 1
    if idx >= len(lines):
        raise InvalidSignatureFormat("signature text has no signature line")

    sig_line = lines[idx].strip()
    try:
        raw = _b64(sig_line)
    except (binascii.Error, ValueError) as e:
        raise InvalidSignatureFormat(f"signature line is not valid base64: {e}") from e

    algorithm = key_id = None
    if len(raw) == SIGNATURE_BYTES:
        sig = raw
    elif len(raw) == ALGORITHM_ID_BYTES + KEY_ID_BYTES + SIGNATURE_BYTES:
        algorithm = raw[:ALGORITHM_ID_BYTES]
        if algorithm not in (ALG_LEGACY, ALG_PREHASHED):
            raise InvalidSignatureFormat(f"unsupported signature algorithm {algorithm!r}")
        key_id = raw[ALGORITHM_ID_BYTES:ALGORITHM_ID_BYTES + KEY_ID_BYTES]
        sig = raw[ALGORITHM_ID_BYTES + KEY_ID_BYTES:]
    else:
        raise InvalidSignatureFormat(
            f"signature decodes to {len(raw)} bytes, expected {SIGNATURE_BYTES} "
            f"or {ALGORITHM_ID_BYTES + KEY_ID_BYTES + SIGNATURE_BYTES}")

    trusted_comment = global_sig = None
    rest = lines[idx + 1:]
    if rest and rest[0].lstrip().startswith(TRUSTED_PREFIX):
        trusted_comment = rest[0].lstrip()[len(TRUSTED_PREFIX):]
        if len(rest) < 2:
            raise InvalidSignatureFormat("trusted comment without a global signature")
        try:
            global_sig = _b64(rest[1])
        except (binascii.Error, ValueError) as e:
            raise InvalidSignatureFormat(f"global signature is not valid base64: {e}") from e
        if len(global_sig) != SIGNATURE_BYTES:
            raise InvalidSignatureFormat(f"global signature has {len(global_sig)} bytes")

    return Signature(sig, algorithm, key_id, trusted_comment, global_sig)


def _check(key: VerifyKey, message: bytes, sig: bytes, what: str):
    try:
        key.verify(message, sig)
    except BadSignatureError:
        raise VerificationFailed(f"{what} does not match") from None


def verify_signature(public_key: PublicKey, data: bytes, signature: Signature) -> None:
    """Raise VerificationFailed unless ``signature`` signs ``data`` under ``public_key``."""
    if public_key.key_id and signature.key_id and public_key.key_id != signature.key_id:
        raise VerificationFailed(
            f"signature key id {signature.key_id[::-1].hex().upper()} "
            f"does not match public key {public_key.key_id_hex()}")

    vk = VerifyKey(public_key.key)
    message = hashlib.blake2b(data, digest_size=64).digest() if signature.prehashed else bytes(data)
    _check(vk, message, signature.signature, "signature")

    if signature.global_signature is not None:
        _check(vk, signature.signature + signature.trusted_comment.encode("utf-8"),
               signature.global_signature, "trusted comment signature")
        LOG.debug("trusted comment: %s", signature.trusted_comment)


def minisign_verify(public_key: PublicKey, data: bytes, sig_text: str) -> Signature:
    """Decode ``sig_text`` and verify it over ``data``; returns the decoded signature."""
    signature = decode_signature(sig_text)
    verify_signature(public_key, data, signature)
    return signature


__all__ = ["PublicKey", "Signature", "decode_public_key", "decode_signature",
           "verify_signature", "minisign_verify"]
