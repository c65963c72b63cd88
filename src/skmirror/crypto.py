"""
Content and name encryption for the encrypted backend.

Key hierarchy:
    Password
    └── Master key (PBKDF2-HMAC-SHA256, derived once per adapter)
        ├── Name key (HKDF-SHA256, AES-SIV)
        └── Content keys (HKDF-SHA256, salted per file)

Encrypted file layout (every scheme version shares the framing):

    header   32 bytes  magic "SKMR" | version | reserved(3) | salt(16) | nonce prefix(8)
    chunk 0  CHUNK_SIZE plaintext bytes + 16-byte tag
    chunk 1  ...
    final    < CHUNK_SIZE plaintext bytes (possibly 0) + 16-byte tag

Each chunk is bound to its index and to whether it is the final one, so
reordering, truncation and extension are all detected. Because the
framing is shared, the plaintext length is recovered from the stored
length alone, without reading the header.

Scheme versions (picked from the header on read, from config on write):
    1  AES-256-CTR + HMAC-SHA256 truncated to 128 bits (encrypt-then-MAC)
    2  AES-256-GCM, header as associated data (current)
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import constant_time, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, AESSIV
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import EncryptionError
from .storage import ByteStream, read_exactly

logger = logging.getLogger("skmirror.crypto")

MAGIC = b"SKMR"
HEADER_SIZE = 32
CHUNK_SIZE = 64 * 1024  # 64 KB of plaintext per chunk
TAG_SIZE = 16
SEALED_CHUNK_SIZE = CHUNK_SIZE + TAG_SIZE

SCHEME_CTR_HMAC = 1
SCHEME_GCM = 2
LATEST_SCHEME = SCHEME_GCM

PBKDF2_ITERATIONS = 200_000
_MASTER_SALT = b"skmirror:master:v1"


# ---------------------------------------------------------------------------
# Length arithmetic
# ---------------------------------------------------------------------------


def encrypted_length(plain_length: int) -> int:
    """Size of the encrypted form of ``plain_length`` bytes."""
    full, rest = divmod(plain_length, CHUNK_SIZE)
    return HEADER_SIZE + full * SEALED_CHUNK_SIZE + rest + TAG_SIZE


def plaintext_length(stored_length: int) -> int:
    """Recover the plaintext length from the encrypted size.

    Raises:
        EncryptionError: If no plaintext length maps to ``stored_length``.
    """
    body = stored_length - HEADER_SIZE
    if body < TAG_SIZE:
        raise EncryptionError(f"Not an encrypted file (length {stored_length})")
    full, rest = divmod(body, SEALED_CHUNK_SIZE)
    if rest < TAG_SIZE:
        raise EncryptionError(f"Invalid encrypted length: {stored_length}")
    return full * CHUNK_SIZE + rest - TAG_SIZE


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


def _derive_key(master: bytes, info: bytes, salt: Optional[bytes] = None, length: int = 32) -> bytes:
    """Derive a key using HKDF-SHA256."""
    return HKDF(algorithm=SHA256(), length=length, salt=salt, info=info).derive(master)


class KeyRing:
    """Keys derived from one password.

    Args:
        password: Secret the whole hierarchy hangs off.
        iterations: PBKDF2 iterations. Must stay the same for a given tree.
    """

    def __init__(self, password: str, iterations: int = PBKDF2_ITERATIONS) -> None:
        if not password:
            raise ValueError("An encryption password is required")
        self._password = password.encode("utf-8")
        self._iterations = iterations
        self._master: Optional[bytes] = None
        self._names: Optional[NameCipher] = None

    @property
    def master(self) -> bytes:
        if self._master is None:
            kdf = PBKDF2HMAC(
                algorithm=SHA256(),
                length=32,
                salt=_MASTER_SALT,
                iterations=self._iterations,
            )
            self._master = kdf.derive(self._password)
        return self._master

    @property
    def names(self) -> "NameCipher":
        if self._names is None:
            self._names = NameCipher(_derive_key(self.master, b"skmirror:names", length=64))
        return self._names

    def content_key(self, version: int, salt: bytes, length: int = 32) -> bytes:
        return _derive_key(self.master, b"skmirror:content:v%d" % version, salt=salt, length=length)


class NameCipher:
    """Deterministic name encryption (AES-SIV, base32 lower-case).

    Deterministic so that replacing a file hits the same stored name.
    """

    def __init__(self, key: bytes) -> None:
        self._siv = AESSIV(key)

    def encrypt(self, name: str) -> str:
        sealed = self._siv.encrypt(name.encode("utf-8"), None)
        return base64.b32encode(sealed).decode("ascii").rstrip("=").lower()

    def decrypt(self, encoded: str) -> str:
        """Reverse :meth:`encrypt`.

        Raises:
            EncryptionError: If ``encoded`` was not produced with this key.
        """
        padded = encoded.upper() + "=" * (-len(encoded) % 8)
        try:
            sealed = base64.b32decode(padded)
            return self._siv.decrypt(sealed, None).decode("utf-8")
        except (binascii.Error, InvalidTag, ValueError) as exc:
            raise EncryptionError(f"Cannot decrypt name: {encoded!r}") from exc


# ---------------------------------------------------------------------------
# Header and schemes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Header:
    """Self-describing prefix of every encrypted file."""

    version: int
    salt: bytes
    nonce_prefix: bytes

    def to_bytes(self) -> bytes:
        return MAGIC + bytes([self.version]) + b"\x00\x00\x00" + self.salt + self.nonce_prefix

    @classmethod
    def new(cls, version: int) -> "Header":
        return cls(version=version, salt=os.urandom(16), nonce_prefix=os.urandom(8))

    @classmethod
    def parse(cls, data: bytes) -> "Header":
        if len(data) < HEADER_SIZE or data[:4] != MAGIC:
            raise EncryptionError("Missing or invalid encryption header")
        return cls(version=data[4], salt=data[8:24], nonce_prefix=data[24:32])


class _Scheme(ABC):
    """One on-disk encryption scheme."""

    def __init__(self, keys: KeyRing, header: Header) -> None:
        self.header = header
        self.associated = header.to_bytes()

    @abstractmethod
    def seal(self, index: int, final: bool, data: bytes) -> bytes:
        """Encrypt one chunk and append its tag."""

    @abstractmethod
    def open(self, index: int, final: bool, data: bytes) -> bytes:
        """Verify one sealed chunk and return its plaintext."""


class _CtrHmacScheme(_Scheme):
    """Version 1: AES-256-CTR, then HMAC-SHA256 truncated to 16 bytes."""

    def __init__(self, keys: KeyRing, header: Header) -> None:
        super().__init__(keys, header)
        material = keys.content_key(SCHEME_CTR_HMAC, header.salt, length=64)
        self._enc_key = material[:32]
        self._mac_key = material[32:]

    def _cipher(self, index: int) -> Cipher:
        counter = self.header.nonce_prefix + struct.pack(">I", index) + b"\x00" * 4
        return Cipher(algorithms.AES(self._enc_key), modes.CTR(counter))

    def _tag(self, index: int, final: bool, ciphertext: bytes) -> bytes:
        mac = hmac.HMAC(self._mac_key, SHA256())
        mac.update(self.associated + struct.pack(">QB", index, final) + ciphertext)
        return mac.finalize()[:TAG_SIZE]

    def seal(self, index: int, final: bool, data: bytes) -> bytes:
        encryptor = self._cipher(index).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return ciphertext + self._tag(index, final, ciphertext)

    def open(self, index: int, final: bool, data: bytes) -> bytes:
        ciphertext, tag = data[:-TAG_SIZE], data[-TAG_SIZE:]
        if not constant_time.bytes_eq(tag, self._tag(index, final, ciphertext)):
            raise EncryptionError(f"Integrity check failed on chunk {index}")
        decryptor = self._cipher(index).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()


class _GcmScheme(_Scheme):
    """Version 2: AES-256-GCM with index and final flag in the nonce."""

    def __init__(self, keys: KeyRing, header: Header) -> None:
        super().__init__(keys, header)
        self._aead = AESGCM(keys.content_key(SCHEME_GCM, header.salt))

    def _nonce(self, index: int, final: bool) -> bytes:
        return self.header.nonce_prefix[:7] + struct.pack(">IB", index, final)

    def seal(self, index: int, final: bool, data: bytes) -> bytes:
        return self._aead.encrypt(self._nonce(index, final), data, self.associated)

    def open(self, index: int, final: bool, data: bytes) -> bytes:
        try:
            return self._aead.decrypt(self._nonce(index, final), data, self.associated)
        except InvalidTag as exc:
            raise EncryptionError(f"Integrity check failed on chunk {index}") from exc


SCHEMES = {
    SCHEME_CTR_HMAC: _CtrHmacScheme,
    SCHEME_GCM: _GcmScheme,
}


def _scheme_for(keys: KeyRing, header: Header) -> _Scheme:
    factory = SCHEMES.get(header.version)
    if factory is None:
        raise EncryptionError(f"Unsupported encryption scheme version: {header.version}")
    return factory(keys, header)


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


class EncryptingStream(ByteStream):
    """Turn a plaintext stream into the encrypted file layout."""

    def __init__(self, inner: ByteStream, keys: KeyRing, version: int = LATEST_SCHEME) -> None:
        header = Header.new(version)
        self._inner = inner
        self._scheme = _scheme_for(keys, header)
        self._buffer = bytearray(header.to_bytes())
        self._index = 0
        self._done = False

    async def _next_chunk(self) -> None:
        data = await read_exactly(self._inner, CHUNK_SIZE)
        final = len(data) < CHUNK_SIZE
        self._buffer += self._scheme.seal(self._index, final, data)
        self._index += 1
        self._done = final

    async def read(self, size: int = -1) -> bytes:
        while not self._done and (size < 0 or len(self._buffer) < size):
            await self._next_chunk()
        if size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def aclose(self) -> None:
        await self._inner.aclose()


class DecryptingStream(ByteStream):
    """Read the encrypted file layout back into plaintext.

    The scheme is chosen from the stored header, so files written by an
    older version stay readable.
    """

    def __init__(self, inner: ByteStream, keys: KeyRing) -> None:
        self._inner = inner
        self._keys = keys
        self._scheme: Optional[_Scheme] = None
        self._buffer = bytearray()
        self._index = 0
        self._done = False

    async def _next_chunk(self) -> None:
        if self._scheme is None:
            header = Header.parse(await read_exactly(self._inner, HEADER_SIZE))
            self._scheme = _scheme_for(self._keys, header)

        data = await read_exactly(self._inner, SEALED_CHUNK_SIZE)
        if len(data) < TAG_SIZE:
            raise EncryptionError("Encrypted content is truncated")
        final = len(data) < SEALED_CHUNK_SIZE
        self._buffer += self._scheme.open(self._index, final, data)
        self._index += 1
        self._done = final

    async def read(self, size: int = -1) -> bytes:
        while not self._done and (size < 0 or len(self._buffer) < size):
            await self._next_chunk()
        if size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    async def aclose(self) -> None:
        await self._inner.aclose()
