"""EC key loading and generation.

Key files hold a base64 DER structure, optionally wrapped in PEM
``-----BEGIN ...-----`` / ``-----END ...-----`` markers:

- public keys: SubjectPublicKeyInfo
- private keys: SEC1 ``EC PRIVATE KEY`` or PKCS#8

Anything that does not decode to an EC key raises KeyLoadError, which is
a StartupError: a listener or reporter never runs with a broken key.
"""

import base64
import binascii
import logging
import os
import re
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ipsync.errors import KeyLoadError

__all__ = [
    "CURVES",
    "DEFAULT_CURVE",
    "KeyLoadError",
    "decode_key_text",
    "generate_private_key",
    "load_private_key",
    "load_public_key",
    "write_key_pair",
]

logger = logging.getLogger(__name__)

CURVES = {
    "secp384r1": ec.SECP384R1,
    "secp521r1": ec.SECP521R1,
}
DEFAULT_CURVE = "secp384r1"

# Smaller curves produce headers shorter than the 150 character minimum
MIN_CURVE_BITS = 384

_BEGIN_RE = re.compile(r"^-----BEGIN [A-Z0-9 ]+-----")
_END_RE = re.compile(r"-----END [A-Z0-9 ]+-----$")
_WHITESPACE_RE = re.compile(r"\s+")


def decode_key_text(text: str) -> bytes:
    """Decode PEM-like key text to DER bytes.

    Args:
        text: File contents, with or without PEM markers.

    Returns:
        DER-encoded key structure.

    Raises:
        KeyLoadError: If the body is not valid base64.
    """
    content = text.strip()
    content = _BEGIN_RE.sub("", content)
    content = _END_RE.sub("", content)
    content = _WHITESPACE_RE.sub("", content)
    if not content:
        raise KeyLoadError("key file is empty")
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyLoadError(f"key is not valid base64: {e}") from e


def _read_key_file(path: Path) -> bytes:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise KeyLoadError(f"cannot read key file {path}: {e}") from e
    return decode_key_text(text)


def _check_curve(curve: ec.EllipticCurve, path: Path) -> None:
    if curve.key_size < MIN_CURVE_BITS:
        logger.warning(
            f"Key {path} uses {curve.name}; its signatures are too short "
            f"for the authentication header, use secp384r1 or secp521r1"
        )


def load_public_key(path: Path) -> ec.EllipticCurvePublicKey:
    """Load an EC public key from a key file.

    Raises:
        KeyLoadError: If the file is unreadable, malformed, or not EC.
    """
    der = _read_key_file(path)
    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"invalid public key {path}: {e}") from e

    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise KeyLoadError(f"public key {path} is not an EC key")

    _check_curve(key.curve, path)
    return key


def load_private_key(path: Path) -> ec.EllipticCurvePrivateKey:
    """Load an unencrypted EC private key from a key file.

    Raises:
        KeyLoadError: If the file is unreadable, malformed, or not EC.
    """
    der = _read_key_file(path)
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyLoadError(f"invalid private key {path}: {e}") from e

    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise KeyLoadError(f"private key {path} is not an EC key")

    _check_curve(key.curve, path)
    return key


def generate_private_key(curve: str = DEFAULT_CURVE) -> ec.EllipticCurvePrivateKey:
    """Generate a new EC private key.

    Args:
        curve: Curve name, one of CURVES.

    Raises:
        ValueError: If the curve is not supported.
    """
    if curve not in CURVES:
        raise ValueError(f"Unsupported curve: {curve}")
    return ec.generate_private_key(CURVES[curve]())


def _write_new_file(path: Path, data: bytes, mode: int) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)


def write_key_pair(
    private_path: Path,
    public_path: Path,
    curve: str = DEFAULT_CURVE,
) -> ec.EllipticCurvePrivateKey:
    """Generate a key pair and write both halves as PEM.

    The private key is written with owner-only permissions. Existing files
    are never overwritten.

    Args:
        private_path: Destination for the SEC1 private key.
        public_path: Destination for the SubjectPublicKeyInfo public key.
        curve: Curve name, one of CURVES.

    Returns:
        The generated private key.

    Raises:
        FileExistsError: If either destination already exists.
    """
    private_path = Path(private_path)
    public_path = Path(public_path)
    for path in (private_path, public_path):
        if path.exists():
            raise FileExistsError(f"Refusing to overwrite {path}")

    key = generate_private_key(curve)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    _write_new_file(private_path, private_pem, 0o600)
    _write_new_file(public_path, public_pem, 0o644)
    return key
