"""Core module - Shared crypto, chunking, and key material."""

from zerodrop.core.chunking import (
    CHUNK_SIZE,
    TAG_SIZE,
    Chunk,
    chunk_bytes,
    chunk_file,
    count_chunks,
    split_ciphertext,
)
from zerodrop.core.config import ServerConfig
from zerodrop.core.crypto import (
    NONCE_SIZE,
    AuthenticationError,
    EncryptedPayload,
    decrypt_file,
    derive_chunk_nonce,
    encrypt_file,
    generate_iv,
)
from zerodrop.core.keys import (
    FileKey,
    KeyFormatError,
    build_share_link,
    export_portable,
    generate_key,
    import_portable,
    parse_share_link,
)

__all__ = [
    # Chunking
    "CHUNK_SIZE",
    "Chunk",
    "TAG_SIZE",
    "chunk_bytes",
    "chunk_file",
    "count_chunks",
    "split_ciphertext",
    # Config
    "ServerConfig",
    # Crypto
    "AuthenticationError",
    "EncryptedPayload",
    "NONCE_SIZE",
    "decrypt_file",
    "derive_chunk_nonce",
    "encrypt_file",
    "generate_iv",
    # Keys
    "FileKey",
    "KeyFormatError",
    "build_share_link",
    "export_portable",
    "generate_key",
    "import_portable",
    "parse_share_link",
]
