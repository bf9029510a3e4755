"""Signed freshness tokens for the ``Authentication`` header.

Header layout (150..300 characters)::

    YYYYMMDDTHHMMSS | 35 random chars | base64(R || S)
    <------- message, 50 chars ------> <- signature ->

The reporting peer signs the SHA-512 digest of the 50 character message
with its EC private key. The listener accepts the header iff the embedded
UTC timestamp is within the freshness window of its own clock and the
signature verifies against the shared public key.

Security notes:
- The random suffix only varies the signed payload; nonces are not
  tracked, so a captured header can be replayed until the window closes.
- Every rejection is a plain False. The failing gate is only logged, so
  a caller cannot tell malformed input from a bad signature.
- R and S are left-padded to the curve's byte width when signing so the
  verifier's half-split is always exact. Unpadded signatures from older
  signers still verify when R and S happen to have equal lengths.
"""

import base64
import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from ipsync.errors import AuthError
from ipsync.keys import load_private_key, load_public_key

__all__ = [
    "AUTH_HEADER",
    "AuthError",
    "Signer",
    "Verifier",
    "decode_signature",
    "encode_signature",
    "format_timestamp",
    "generate_nonce",
    "hash_message",
    "parse_timestamp",
]

logger = logging.getLogger(__name__)

AUTH_HEADER = "Authentication"

TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S"
TIMESTAMP_LENGTH = 15
MESSAGE_LENGTH = 50
NONCE_LENGTH = MESSAGE_LENGTH - TIMESTAMP_LENGTH
NONCE_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz-"

MIN_HEADER_LENGTH = 150
MAX_HEADER_LENGTH = 300
FRESHNESS_WINDOW = timedelta(minutes=10)

_TIMESTAMP_RE = re.compile(r"^[0-9]{8}T[0-9]{6}$")
_ALGORITHM = ec.ECDSA(Prehashed(hashes.SHA512()))


def hash_message(message: str) -> bytes:
    """SHA-512 digest of the message's UTF-8 bytes."""
    return hashlib.sha512(message.encode("utf-8")).digest()


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    """Random string over NONCE_ALPHABET from the system CSPRNG."""
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def format_timestamp(now: datetime) -> str:
    """Format a datetime as a UTC ``YYYYMMDDTHHMMSS`` string.

    Naive datetimes are taken to already be UTC.
    """
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse a ``YYYYMMDDTHHMMSS`` string as an aware UTC datetime.

    Returns:
        The datetime, or None if the text is not a valid timestamp.
    """
    if not _TIMESTAMP_RE.match(text):
        return None
    try:
        parsed = datetime.strptime(text, TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def _int_to_bytes(value: int, width: int = 0) -> bytes:
    length = max((value.bit_length() + 7) // 8, width)
    return value.to_bytes(length, "big")


def encode_signature(r: int, s: int, width: int = 0) -> str:
    """Encode (R, S) as base64 of their concatenated big-endian bytes.

    Args:
        r: Signature R value.
        s: Signature S value.
        width: Minimum byte length of each value. 0 gives the minimal
            encoding, which is only unambiguous when R and S happen to
            have the same length.

    Returns:
        Standard padded base64 string.
    """
    raw = _int_to_bytes(r, width) + _int_to_bytes(s, width)
    return base64.b64encode(raw).decode("ascii")


def decode_signature(signature: str) -> tuple[int, int]:
    """Decode a base64 signature by splitting the bytes in half.

    Raises:
        ValueError: If the signature is not valid base64.
    """
    try:
        raw = base64.b64decode(signature, validate=True)
    except ValueError as e:
        raise ValueError(f"invalid base64 signature: {e}") from e

    half = len(raw) // 2
    r = int.from_bytes(raw[:half], "big")
    s = int.from_bytes(raw[half:], "big")
    return r, s


class Signer:
    """Produces authentication headers with an EC private key."""

    def __init__(self, private_key: ec.EllipticCurvePrivateKey) -> None:
        self._private_key = private_key
        self._width = (private_key.curve.key_size + 7) // 8

    @classmethod
    def from_path(cls, path: Path) -> "Signer":
        """Create a signer from a private key file.

        Raises:
            KeyLoadError: If the key cannot be loaded.
        """
        return cls(load_private_key(path))

    def sign(self, message: str) -> str:
        """Sign the SHA-512 digest of a message.

        Returns:
            Base64 of the fixed-width R || S bytes.
        """
        der = self._private_key.sign(hash_message(message), _ALGORITHM)
        r, s = decode_dss_signature(der)
        return encode_signature(r, s, self._width)

    def create_time_signature(self, now: datetime) -> tuple[str, str]:
        """Create a timestamped message and its signature.

        Args:
            now: Current time; converted to UTC.

        Returns:
            (message, signature) where message is 50 characters.
        """
        message = format_timestamp(now) + generate_nonce()
        return message, self.sign(message)

    def create_header(self, now: Optional[datetime] = None) -> str:
        """Build an ``Authentication`` header value."""
        if now is None:
            now = datetime.now(timezone.utc)
        message, signature = self.create_time_signature(now)
        return message + signature


class Verifier:
    """Checks authentication headers against an EC public key.

    Stateless apart from configuration, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        public_key: ec.EllipticCurvePublicKey,
        window: timedelta = FRESHNESS_WINDOW,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize verifier.

        Args:
            public_key: The reporting peer's public key.
            window: Accepted distance between the header timestamp and now,
                inclusive, in either direction.
            clock: Returns the current aware UTC time. Injectable for tests.
        """
        self._public_key = public_key
        self._window = window
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_path(cls, path: Path, **kwargs: Any) -> "Verifier":
        """Create a verifier from a public key file.

        Raises:
            KeyLoadError: If the key cannot be loaded.
        """
        return cls(load_public_key(path), **kwargs)

    @property
    def window(self) -> timedelta:
        """Freshness window."""
        return self._window

    def verify_request(self, request: Any) -> bool:
        """Verify the ``Authentication`` headers of an aiohttp request."""
        return self.verify_values(request.headers.getall(AUTH_HEADER, []))

    def verify_values(self, values: Sequence[str]) -> bool:
        """Verify a request's list of ``Authentication`` header values."""
        if len(values) != 1:
            logger.debug(f"Rejected: {len(values)} authentication headers")
            return False
        return self.verify(values[0])

    def verify(self, header: str) -> bool:
        """Verify a single ``Authentication`` header value.

        Returns:
            True if accepted. The reason for a rejection is only logged.
        """
        try:
            self.check(header)
        except AuthError as e:
            logger.debug(f"Rejected: {e}")
            return False
        return True

    def check(self, header: str) -> None:
        """Verify a header value, raising on rejection.

        Gates run in order: length, timestamp format, freshness window,
        signature.

        Raises:
            AuthError: Naming the first gate that failed.
        """
        if not MIN_HEADER_LENGTH <= len(header) <= MAX_HEADER_LENGTH:
            raise AuthError(f"header length {len(header)}")

        timestamp = parse_timestamp(header[:TIMESTAMP_LENGTH])
        if timestamp is None:
            raise AuthError("malformed timestamp")

        now = self._clock()
        if timestamp < now - self._window or timestamp > now + self._window:
            raise AuthError(f"timestamp {timestamp.isoformat()} outside window")

        self._check_signature(header[:MESSAGE_LENGTH], header[MESSAGE_LENGTH:])

    def _check_signature(self, message: str, signature: str) -> None:
        try:
            r, s = decode_signature(signature)
        except ValueError as e:
            raise AuthError("signature is not base64") from e

        try:
            self._public_key.verify(
                encode_dss_signature(r, s), hash_message(message), _ALGORITHM
            )
        except InvalidSignature as e:
            raise AuthError("signature mismatch") from e
        except ValueError as e:
            raise AuthError("unusable signature values") from e
