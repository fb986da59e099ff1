"""Key material for ZeroDrop.

This module provides:
- FileKey: the 256-bit symmetric key that encrypts one file
- Portable (base64url) encoding used in link fragments and share records
- Share link construction and parsing
- RSA-OAEP key wrapping, kept for out-of-band key exchange
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_SIZE = 32  # 256 bits
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

_PORTABLE_KEY_RE = re.compile(r"^[A-Za-z0-9_\-+/]+={0,2}$")
_DOWNLOAD_PATH_RE = re.compile(r"/download/([^/]+)/?$")


class KeyFormatError(ValueError):
    """Raised when key material cannot be decoded."""


@dataclass(frozen=True)
class FileKey:
    """A 256-bit AES key wrapping raw key bytes.

    The raw bytes are excluded from ``repr`` so keys never end up in logs.
    """

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != KEY_SIZE:
            raise KeyFormatError(f"Invalid key: must be {KEY_SIZE} bytes, got {len(self.raw)}")

    def __repr__(self) -> str:
        return "FileKey(<redacted>)"


@dataclass(frozen=True)
class KeyPair:
    """RSA key pair for wrapping file keys."""

    private_key: rsa.RSAPrivateKey

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        """Return the public half of the pair."""
        return self.private_key.public_key()


def generate_key() -> FileKey:
    """Generate a fresh random file key.

    Returns:
        FileKey backed by 32 bytes from the OS CSPRNG.
    """
    return FileKey(AESGCM.generate_key(bit_length=256))


def export_portable(key: FileKey) -> str:
    """Encode a key as unpadded base64url.

    The result is safe in a URL fragment and in a database column.

    Args:
        key: Key to encode.

    Returns:
        43-character ASCII string.
    """
    return base64.urlsafe_b64encode(key.raw).rstrip(b"=").decode("ascii")


def import_portable(text: str) -> FileKey:
    """Decode a key produced by export_portable.

    Standard base64 (with ``+`` and ``/``) and padded input are accepted too,
    since older links carried plain base64.

    Args:
        text: Portable key string.

    Returns:
        The decoded FileKey.

    Raises:
        KeyFormatError: If the string is not valid base64 or not 32 bytes.
    """
    text = text.strip()
    if not text or not _PORTABLE_KEY_RE.match(text):
        raise KeyFormatError("Invalid key format: not valid base64")

    normalized = text.rstrip("=").replace("+", "-").replace("/", "_")
    normalized += "=" * (-len(normalized) % 4)
    try:
        raw = base64.urlsafe_b64decode(normalized)
    except (binascii.Error, ValueError) as e:
        raise KeyFormatError("Invalid key format: not valid base64") from e

    return FileKey(raw)


# === Share links ===


def build_share_link(base_url: str, file_id: str, key: FileKey) -> str:
    """Build the anonymous share link for an uploaded file.

    The key travels in the fragment, which browsers never send to the server.

    Args:
        base_url: Public base URL of the service.
        file_id: Identifier returned by the upload.
        key: Key the file was encrypted with.

    Returns:
        ``<base>/download/<file_id>#<portable key>``
    """
    return f"{base_url.rstrip('/')}/download/{file_id}#{export_portable(key)}"


def parse_share_link(url: str) -> tuple[str, FileKey]:
    """Extract the file id and key from a share link.

    Args:
        url: Link produced by build_share_link.

    Returns:
        Tuple of (file_id, FileKey).

    Raises:
        ValueError: If the URL has no ``/download/<file_id>`` path.
        KeyFormatError: If the fragment is missing or malformed.
    """
    parts = urlsplit(url.strip())
    match = _DOWNLOAD_PATH_RE.search(parts.path)
    if match is None:
        raise ValueError(f"Not a download link: {url}")
    if not parts.fragment:
        raise KeyFormatError("Link has no decryption key")
    return match.group(1), import_portable(parts.fragment)


# === Key wrapping (RSA-OAEP) ===


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


def generate_key_pair() -> KeyPair:
    """Generate a 2048-bit RSA key pair for key wrapping."""
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE,
    )
    return KeyPair(private_key=private_key)


def wrap_key(key: FileKey, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt a file key for the holder of ``public_key``.

    Args:
        key: File key to wrap.
        public_key: Recipient RSA public key.

    Returns:
        RSA-OAEP ciphertext (256 bytes for a 2048-bit key).
    """
    return public_key.encrypt(key.raw, _oaep())


def unwrap_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> FileKey:
    """Recover a file key wrapped with wrap_key.

    Args:
        wrapped: RSA-OAEP ciphertext.
        private_key: Recipient RSA private key.

    Returns:
        The unwrapped FileKey.

    Raises:
        KeyFormatError: If decryption fails or the result is not a file key.
    """
    try:
        raw = private_key.decrypt(wrapped, _oaep())
    except ValueError as e:
        raise KeyFormatError("Could not unwrap key") from e
    return FileKey(raw)


def public_key_to_pem(public_key: rsa.RSAPublicKey) -> str:
    """Serialize a public key as PEM (SubjectPublicKeyInfo)."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def load_public_key(pem: str) -> rsa.RSAPublicKey:
    """Load a PEM public key.

    Raises:
        KeyFormatError: If the PEM is invalid or not an RSA key.
    """
    try:
        public_key = serialization.load_pem_public_key(pem.encode("ascii"))
    except ValueError as e:
        raise KeyFormatError("Invalid public key") from e
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise KeyFormatError("Public key is not an RSA key")
    return public_key
