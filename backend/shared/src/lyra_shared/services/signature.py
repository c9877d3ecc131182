"""HMAC-SHA256 verification of Lyra kr-hash signatures.

Lyra signs the kr-answer string with HMAC-SHA256 and sends the hex digest in
kr-hash. IPN notifications are signed with the shop password, browser returns
with the HMAC-SHA-256 key; kr-hash-key names which one was used.

The canonical scheme is UTF-8 key bytes over the UTF-8 kr-answer exactly as
received. Compatibility mode additionally tries hex/base64-decoded keys and a
JSON-unescaped payload; it exists only to migrate shops whose signing scheme
has not been confirmed and logs every non-canonical match.
"""

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from lyra_shared.models.enums import HashKeyType, LyraMode

logger = logging.getLogger(__name__)

_HEX_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
_HEX_KEY_RE = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


class KeyEncoding(str, Enum):
    """How a configured secret is turned into HMAC key bytes."""

    UTF8 = "utf8"
    HEX = "hex"
    BASE64 = "base64"


class PayloadVariant(str, Enum):
    """Which representation of kr-answer was signed."""

    RAW = "raw"
    JSON_UNESCAPED = "json_unescaped"


@dataclass(frozen=True)
class SigningKey:
    """A secret that may have signed a callback."""

    mode: LyraMode
    key_type: HashKeyType
    secret: str

    def __repr__(self) -> str:
        return f"SigningKey(mode={self.mode.value}, key_type={self.key_type.value})"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check."""

    verified: bool
    attempts: int
    mode: LyraMode | None = None
    key_type: HashKeyType | None = None
    key_encoding: KeyEncoding | None = None
    payload_variant: PayloadVariant | None = None

    @property
    def is_canonical(self) -> bool:
        return (
            self.key_encoding == KeyEncoding.UTF8
            and self.payload_variant == PayloadVariant.RAW
        )


def compute_signature(secret: str | bytes, payload: str | bytes) -> str:
    """Compute the hex HMAC-SHA256 of payload, canonical encoding.

    Args:
        secret: Signing secret (str is UTF-8 encoded)
        payload: Signed payload (str is UTF-8 encoded)

    Returns:
        Lowercase hex digest
    """
    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    message = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(key, message, hashlib.sha256).hexdigest()


def decode_key(secret: str, encoding: KeyEncoding) -> bytes | None:
    """Decode a secret into key bytes, or None if it is not valid in that encoding."""
    if encoding == KeyEncoding.UTF8:
        return secret.encode("utf-8")
    if encoding == KeyEncoding.HEX:
        if not _HEX_KEY_RE.match(secret):
            return None
        return bytes.fromhex(secret)
    try:
        decoded = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded or None


def json_unescape(raw: str) -> str | None:
    """Undo one level of JSON string escaping.

    Handles a kr-answer delivered as a quoted JSON string literal and answers
    whose slashes were escaped (``\\/``).

    Returns:
        The unescaped text, or None when it is identical to raw.
    """
    text = raw
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1]
    elif "\\" not in text:
        return None

    try:
        unescaped = json.loads(f'"{text}"')
    except ValueError:
        unescaped = text.replace("\\/", "/")

    if not isinstance(unescaped, str) or unescaped == raw:
        return None
    return unescaped


class SignatureVerifier:
    """Checks a kr-hash against a set of candidate keys.

    Usage:
        verifier = SignatureVerifier(keys)
        result = verifier.verify(kr_answer, kr_hash)
        if not result.verified:
            ...
    """

    def __init__(self, keys: Sequence[SigningKey], *, compat: bool = False) -> None:
        """Initialize the verifier.

        Args:
            keys: Candidate signing keys, tried in order
            compat: Also try non-canonical key encodings and payload variants
        """
        self._keys = list(keys)
        self._compat = compat

    def _encodings(self) -> list[KeyEncoding]:
        if self._compat:
            return [KeyEncoding.UTF8, KeyEncoding.HEX, KeyEncoding.BASE64]
        return [KeyEncoding.UTF8]

    def _payloads(self, payload: str) -> list[tuple[PayloadVariant, bytes]]:
        variants = [(PayloadVariant.RAW, payload.encode("utf-8"))]
        if self._compat:
            unescaped = json_unescape(payload)
            if unescaped is not None:
                variants.append((PayloadVariant.JSON_UNESCAPED, unescaped.encode("utf-8")))
        return variants

    def verify(self, payload: str, provided_hash: str | None) -> VerificationResult:
        """Verify provided_hash against every candidate combination.

        Args:
            payload: kr-answer exactly as extracted from the raw body
            provided_hash: kr-hash hex digest

        Returns:
            VerificationResult describing the first matching combination
        """
        expected = (provided_hash or "").strip().lower()
        if not _HEX_DIGEST_RE.match(expected):
            return VerificationResult(verified=False, attempts=0)

        payloads = self._payloads(payload)
        attempts = 0

        for key in self._keys:
            for encoding in self._encodings():
                key_bytes = decode_key(key.secret, encoding)
                if key_bytes is None:
                    continue
                for variant, message in payloads:
                    attempts += 1
                    digest = compute_signature(key_bytes, message)
                    if hmac.compare_digest(digest, expected):
                        result = VerificationResult(
                            verified=True,
                            attempts=attempts,
                            mode=key.mode,
                            key_type=key.key_type,
                            key_encoding=encoding,
                            payload_variant=variant,
                        )
                        if not result.is_canonical:
                            logger.warning(
                                "Signature matched non-canonical encoding: "
                                "key=%s payload=%s mode=%s",
                                encoding.value,
                                variant.value,
                                key.mode.value,
                            )
                        return result

        return VerificationResult(verified=False, attempts=attempts)
