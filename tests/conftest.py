"""Pytest configuration and shared fixtures."""

import stat
from datetime import datetime, timezone
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ipsync.auth import Signer, Verifier

# Whole second, so headers signed "now" carry exactly this timestamp
FIXED_NOW = datetime(2026, 3, 14, 15, 9, 26, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_logging_state():
    """Reset logging state before each test."""
    from ipsync.logging import reset_logging

    reset_logging()
    yield
    reset_logging()


@pytest.fixture(scope="session")
def private_key() -> ec.EllipticCurvePrivateKey:
    """P-384 key shared by the whole session (keygen is slow-ish)."""
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def other_private_key() -> ec.EllipticCurvePrivateKey:
    """A second, unrelated key."""
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture
def signer(private_key) -> Signer:
    return Signer(private_key)


@pytest.fixture
def verifier(private_key) -> Verifier:
    """Verifier whose clock is pinned to FIXED_NOW."""
    return Verifier(private_key.public_key(), clock=lambda: FIXED_NOW)


@pytest.fixture
def public_key_file(tmp_path: Path, private_key) -> Path:
    """Public key written as PEM."""
    path = tmp_path / "public.pem"
    path.write_bytes(
        private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return path


@pytest.fixture
def private_key_file(tmp_path: Path, private_key) -> Path:
    """Private key written as SEC1 PEM."""
    path = tmp_path / "private.pem"
    path.write_bytes(
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture
def cache_file(tmp_path: Path) -> Path:
    """Cached address file seeded with a known address."""
    path = tmp_path / "address.txt"
    path.write_text("203.0.113.5")
    return path


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_script(tmp_path: Path):
    """Factory for executable scripts in tmp_path."""

    def _make(name: str, body: str) -> Path:
        return write_script(tmp_path / name, body)

    return _make


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def recording_action(tmp_path: Path) -> tuple[Path, Path]:
    """Action script that appends its arguments to a log and succeeds.

    Returns:
        (script path, log path)
    """
    log = tmp_path / "action.log"
    script = write_script(
        tmp_path / "update.sh",
        f'echo "$1 $2" >> "{log}"\nexit 0\n',
    )
    return script, log


@pytest.fixture
def failing_action(tmp_path: Path) -> Path:
    """Action script that fails with a message on stderr."""
    return write_script(
        tmp_path / "fail.sh",
        'echo "dns update refused" >&2\nexit 3\n',
    )
