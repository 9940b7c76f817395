"""Shared fixtures: throwaway signing keys, minisig text and tar builders."""

from __future__ import annotations

import base64
import gzip
import hashlib
import io
import tarfile

import pytest
from nacl.signing import SigningKey

from zlsup_config import ConfigManager

KEY_ID = bytes.fromhex("0102030405060708")


class Signer:
    """Minimal minisign-compatible signer for tests."""

    def __init__(self, key_id: bytes = KEY_ID):
        self.sk = SigningKey.generate()
        self.key_id = key_id

    @property
    def raw_public(self) -> bytes:
        return bytes(self.sk.verify_key)

    def public_b64(self, minisign: bool = True) -> str:
        blob = b"Ed" + self.key_id + self.raw_public if minisign else self.raw_public
        return base64.b64encode(blob).decode()

    def raw_sign(self, data: bytes) -> bytes:
        return self.sk.sign(data).signature

    def minisig(self, data: bytes, prehashed: bool = True, trusted_comment: str = "timestamp:1700000000\tfile:zls.tar.gz") -> str:
        message = hashlib.blake2b(data, digest_size=64).digest() if prehashed else data
        sig = self.raw_sign(message)
        alg = b"ED" if prehashed else b"Ed"
        lines = [
            "untrusted comment: signature from minisign secret key",
            base64.b64encode(alg + self.key_id + sig).decode(),
        ]
        if trusted_comment is not None:
            global_sig = self.raw_sign(sig + trusted_comment.encode())
            lines.append(f"trusted comment: {trusted_comment}")
            lines.append(base64.b64encode(global_sig).decode())
        return "\n".join(lines) + "\n"


def build_tar(entries) -> bytes:
    """entries: iterable of (name, bytes) for files or (name, None) for directories."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.USTAR_FORMAT) as tf:
        for name, content in entries:
            info = tarfile.TarInfo(name)
            info.mtime = 1700000000
            if content is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tf.addfile(info)
            else:
                info.size = len(content)
                info.mode = 0o644
                tf.addfile(info, io.BytesIO(content))
    return buf.getvalue()


def raw_header(name: str, size: int = 0, typeflag: bytes = b"0", size_field: bytes = None,
               prefix: str = "", magic: bytes = b"ustar\0") -> bytes:
    """Hand-built ustar header with a correct checksum."""
    header = bytearray(512)
    encoded = name.encode()
    header[0:len(encoded)] = encoded
    header[100:108] = b"0000644\0"
    header[108:116] = b"0000000\0"
    header[116:124] = b"0000000\0"
    field = size_field if size_field is not None else b"%011o\0" % size
    header[124:136] = field.ljust(12, b"\0")[:12]
    header[136:148] = b"00000000000\0"
    header[156:157] = typeflag
    header[257:263] = magic
    header[345:345 + len(prefix.encode())] = prefix.encode()
    header[263:265] = b"00"
    header[148:156] = b" " * 8
    header[148:156] = b"%06o\0 " % sum(header)
    return bytes(header)


@pytest.fixture
def signer():
    return Signer()


@pytest.fixture
def make_tar():
    return build_tar


@pytest.fixture
def make_targz():
    return lambda entries: gzip.compress(build_tar(entries))


@pytest.fixture
def make_header():
    return raw_header


@pytest.fixture
def make_config(tmp_path, signer):
    """ConfigManager isolated from /etc, ~ and the process environment."""
    def factory(overrides=None, environ=None, extra_config=None):
        merged = {"security": {"public_key": signer.public_b64()},
                  "paths": {"install_dir": str(tmp_path / "install")}}
        for section, values in (overrides or {}).items():
            merged.setdefault(section, {}).update(values)
        return ConfigManager(sys_config=tmp_path / "no-sys.toml",
                             user_config=tmp_path / "no-user.toml",
                             extra_config=extra_config,
                             environ=environ or {},
                             overrides=merged)
    return factory


@pytest.fixture
def make_signer():
    return Signer
