from __future__ import annotations

import base64
import dataclasses

import pytest

from zlsup_config import DEFAULT_PUBLIC_KEY
from zlsup_errors import InvalidPublicKey, InvalidSignatureFormat, VerificationFailed
from zlsup_signature import (
    decode_public_key,
    decode_signature,
    minisign_verify,
    verify_signature,
)

DATA = b"\x1f\x8b release artifact bytes " * 40


def _flip(data: bytes, bit: int) -> bytes:
    out = bytearray(data)
    out[bit // 8] ^= 1 << (bit % 8)
    return bytes(out)


# public key ------------------------------------------------------------------
def test_default_public_key_is_a_minisign_key():
    pk = decode_public_key(DEFAULT_PUBLIC_KEY)
    assert len(pk.key) == 32
    assert len(pk.key_id) == 8


def test_decode_public_key_minisign_and_raw(signer):
    mini = decode_public_key(signer.public_b64())
    raw = decode_public_key(signer.public_b64(minisign=False))
    assert mini.key == raw.key == signer.raw_public
    assert mini.key_id == signer.key_id
    assert raw.key_id is None


@pytest.mark.parametrize("text", ["not base64 at all!", "", base64.b64encode(b"x" * 33).decode(),
                                  base64.b64encode(b"XX" + b"k" * 40).decode()])
def test_decode_public_key_rejects_bad_input(text):
    with pytest.raises(InvalidPublicKey):
        decode_public_key(text)


# decoding --------------------------------------------------------------------
def test_decode_minisign_file(signer):
    sig = decode_signature(signer.minisig(DATA))
    assert len(sig.signature) == 64
    assert sig.prehashed
    assert sig.key_id == signer.key_id
    assert sig.trusted_comment == "timestamp:1700000000\tfile:zls.tar.gz"
    assert len(sig.global_signature) == 64


def test_decode_bare_signature_uses_first_non_empty_line(signer):
    line = base64.b64encode(signer.raw_sign(DATA)).decode()
    sig = decode_signature(f"\n\n   {line}   \n\nignored trailing line\n")
    assert sig.signature == signer.raw_sign(DATA)
    assert sig.algorithm is None
    assert sig.trusted_comment is None


@pytest.mark.parametrize("text", ["", "\n\n", "   \n\t\n"])
def test_blank_signature_text_is_invalid(text):
    with pytest.raises(InvalidSignatureFormat):
        decode_signature(text)


def test_only_untrusted_comment_is_invalid():
    with pytest.raises(InvalidSignatureFormat):
        decode_signature("untrusted comment: nothing follows\n")


@pytest.mark.parametrize("line", ["%%% not base64 %%%", base64.b64encode(b"short").decode(),
                                  base64.b64encode(b"ZZ" + b"\0" * 72).decode()])
def test_undecodable_signature_line_is_invalid(line):
    with pytest.raises(InvalidSignatureFormat):
        decode_signature(f"\n{line}\n")


def test_trusted_comment_without_global_signature(signer):
    text = "\n".join(signer.minisig(DATA).splitlines()[:3])
    with pytest.raises(InvalidSignatureFormat):
        decode_signature(text)


# verification ----------------------------------------------------------------
@pytest.mark.parametrize("prehashed", [True, False])
def test_valid_minisign_signature_verifies(signer, prehashed):
    pk = decode_public_key(signer.public_b64())
    sig = minisign_verify(pk, DATA, signer.minisig(DATA, prehashed=prehashed))
    assert sig.prehashed is prehashed


def test_raw_key_and_bare_signature_verify(signer):
    pk = decode_public_key(signer.public_b64(minisign=False))
    text = base64.b64encode(signer.raw_sign(DATA)).decode() + "\n"
    minisign_verify(pk, DATA, text)


@pytest.mark.parametrize("bit", [0, 7, 100, len(DATA) * 4, len(DATA) * 8 - 1])
def test_data_bit_flip_fails(signer, bit):
    pk = decode_public_key(signer.public_b64())
    text = signer.minisig(DATA)
    with pytest.raises(VerificationFailed):
        minisign_verify(pk, _flip(DATA, bit), text)


@pytest.mark.parametrize("bit", [0, 63, 255, 256, 400, 511])
def test_signature_bit_flip_fails(signer, bit):
    pk = decode_public_key(signer.public_b64())
    sig = decode_signature(signer.minisig(DATA))
    bad = dataclasses.replace(sig, signature=_flip(sig.signature, bit))
    with pytest.raises(VerificationFailed):
        verify_signature(pk, DATA, bad)


def test_signature_from_other_key_fails(signer, make_signer):
    other = make_signer()
    pk = decode_public_key(signer.public_b64(minisign=False))
    with pytest.raises(VerificationFailed):
        minisign_verify(pk, DATA, other.minisig(DATA))


def test_key_id_mismatch_fails(signer, make_signer):
    other = make_signer(key_id=b"\xff" * 8)
    pk = decode_public_key(signer.public_b64())
    with pytest.raises(VerificationFailed, match="key id"):
        minisign_verify(pk, DATA, other.minisig(DATA))


def test_tampered_trusted_comment_fails(signer):
    pk = decode_public_key(signer.public_b64())
    text = signer.minisig(DATA).replace("file:zls.tar.gz", "file:evil.tar.gz")
    with pytest.raises(VerificationFailed, match="trusted comment"):
        minisign_verify(pk, DATA, text)
