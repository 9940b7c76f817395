from __future__ import annotations

import json
import os

import pytest

import zlsup_cli
import zlsup_config
from zlsup_cli import main


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    monkeypatch.setattr(zlsup_config, "DEFAULT_SYS_CONFIG", tmp_path / "no-sys.toml")
    monkeypatch.setattr(zlsup_config, "DEFAULT_USER_CONFIG", tmp_path / "no-user.toml")
    for name in list(os.environ):
        if name.startswith("ZLSUP_"):
            monkeypatch.delenv(name)


@pytest.fixture
def signed_archive(tmp_path, signer, make_targz):
    artifact = make_targz([("pkg", None), ("pkg/bin/tool", b"hello"), ("pkg/README", b"")])
    archive = tmp_path / "pkg.tar.gz"
    sig = tmp_path / "pkg.tar.gz.minisig"
    archive.write_bytes(artifact)
    sig.write_text(signer.minisig(artifact))
    return archive, sig


def _run(capsys, argv):
    rc = main(argv)
    return rc, json.loads(capsys.readouterr().out)


def test_verify_ok(capsys, signer, signed_archive):
    archive, sig = signed_archive
    rc, out = _run(capsys, ["--public-key", signer.public_b64(), "verify", str(archive), "--sig", str(sig)])
    assert rc == 0
    assert out["ok"] is True
    assert out["trusted_comment"].startswith("timestamp:")


def test_verify_wrong_key(capsys, make_signer, signed_archive):
    archive, sig = signed_archive
    other = make_signer(key_id=b"\x09" * 8)
    rc, out = _run(capsys, ["--public-key", other.public_b64(), "verify", str(archive), "--sig", str(sig)])
    assert rc == 1
    assert out == {"ok": False, "kind": "VerificationFailed", "error": out["error"]}


def test_unpack(capsys, tmp_path, signer, signed_archive):
    archive, sig = signed_archive
    dest = tmp_path / "out"
    rc, out = _run(capsys, ["--public-key", signer.public_b64(), "unpack", str(archive),
                            "--sig", str(sig), "--dest", str(dest)])
    assert rc == 0
    assert out["state"] == "done"
    assert (dest / "bin" / "tool").read_bytes() == b"hello"


def test_unpack_strip_zero_from_config_file(capsys, tmp_path, signer, signed_archive):
    archive, sig = signed_archive
    conf = tmp_path / "zlsup.toml"
    conf.write_text(f'[security]\npublic_key = "{signer.public_b64()}"\n[extract]\nstrip_components = 0\n')
    rc, out = _run(capsys, ["--config", str(conf), "unpack", str(archive),
                            "--sig", str(sig), "--dest", str(tmp_path / "out")])
    assert rc == 0
    assert (tmp_path / "out" / "pkg" / "bin" / "tool").exists()


def test_unpack_tampered_archive_extracts_nothing(capsys, tmp_path, signer, signed_archive):
    archive, sig = signed_archive
    data = archive.read_bytes()
    archive.write_bytes(data[:20] + bytes([data[20] ^ 0x40]) + data[21:])
    rc, out = _run(capsys, ["--public-key", signer.public_b64(), "unpack", str(archive),
                            "--sig", str(sig), "--dest", str(tmp_path / "out")])
    assert rc == 1
    assert out["kind"] == "VerificationFailed"
    assert not (tmp_path / "out").exists()


def test_missing_archive_is_io_error(capsys, tmp_path, signer, signed_archive):
    _, sig = signed_archive
    rc, out = _run(capsys, ["--public-key", signer.public_b64(), "verify", str(tmp_path / "nope.tar.gz"),
                            "--sig", str(sig)])
    assert rc == 1
    assert out["kind"] == "IOError"


def test_bad_public_key(capsys, signed_archive):
    archive, sig = signed_archive
    rc, out = _run(capsys, ["--public-key", "garbage", "verify", str(archive), "--sig", str(sig)])
    assert rc == 1
    assert out["kind"] == "InvalidPublicKey"


def test_config_command(capsys, tmp_path):
    rc, out = _run(capsys, ["--log-level", "DEBUG", "config"])
    assert rc == 0
    assert out["logging"]["level"] == "DEBUG"
    assert out["extract"]["strip_components"] == 1
    assert out["loaded_from"] == []


def test_missing_config_file(capsys, tmp_path):
    rc, out = _run(capsys, ["--config", str(tmp_path / "missing.toml"), "config"])
    assert rc == 1
    assert out["kind"] == "ConfigError"


@pytest.mark.parametrize("argv", [[], ["unpack", "a.tar.gz"], ["unpack", "a", "--sig", "s", "--dest", "d",
                                                               "--strip", "-1"]])
def test_usage_errors_exit_2(argv):
    with pytest.raises(SystemExit) as info:
        main(argv)
    assert info.value.code == 2


def test_install_passes_flags(capsys, monkeypatch, signer):
    seen = {}

    class FakeInstaller:
        def __init__(self, config, cancel_event=None):
            seen["timeout"] = config.get("download", "timeout")
            seen["progress"] = config.get("download", "progress")

        def install(self, **kwargs):
            seen.update(kwargs)
            return {"ok": True, "state": "done"}

    monkeypatch.setattr(zlsup_cli, "ZlsupInstaller", FakeInstaller)
    rc, out = _run(capsys, ["--public-key", signer.public_b64(), "install", "--zig-version", "0.13.0",
                            "--dest", "/tmp/zls", "--strip", "2", "--timeout", "5", "--no-link", "--no-progress"])
    assert rc == 0
    assert out["ok"] is True
    assert seen == {"timeout": 5.0, "progress": False, "zig_version": "0.13.0", "dest": "/tmp/zls",
                    "strip_components": 2, "link": False}
