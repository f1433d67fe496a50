"""
Envelope Codec — Bit-exact on-disk layout of an encrypted snapshot.

Versioned layout (always written):
    [MAGIC "LZ2\\0" 4B][salt 16B][nonce 24B][aad_len 4B u32 LE][aad][ciphertext + tag]

Legacy layout (read-only, for migrating older stores):
    [salt 16B][nonce 12B][aad_len 4B u32 LE][aad][tag 32B][ciphertext]

Version detection is by convention, not self-description: the legacy layout
has no magic field, so a buffer whose first four bytes equal ``LZ2\\0`` is
always parsed as versioned. A legacy file whose random salt happened to start
with those bytes would be misread; the probe is kept as-is because changing
it would break existing legacy files.
"""
import struct

from ..exceptions import MalformedEnvelope
from .crypto import Envelope, LEGACY_NONCE_SIZE, MAC_SIZE, NONCE_SIZE, SALT_SIZE

MAGIC = b"LZ2\x00"
_LEN = struct.Struct("<I")


def is_versioned(data: bytes) -> bool:
    """Return True when data starts with the versioned-layout magic."""
    return data[:len(MAGIC)] == MAGIC


def encode(envelope: Envelope) -> bytes:
    """Serialize an envelope to the versioned layout.

    Raises:
        MalformedEnvelope: If a field has the wrong size, AAD or ciphertext
            is empty, or the envelope is a legacy one.
    """
    if envelope.legacy:
        raise MalformedEnvelope("Legacy envelopes are read-only")
    if len(envelope.salt) != SALT_SIZE:
        raise MalformedEnvelope(
            f"salt must be {SALT_SIZE} bytes, got {len(envelope.salt)}"
        )
    if len(envelope.nonce) != NONCE_SIZE:
        raise MalformedEnvelope(
            f"nonce must be {NONCE_SIZE} bytes, got {len(envelope.nonce)}"
        )
    if not envelope.aad:
        raise MalformedEnvelope("AAD cannot be empty")
    if not envelope.ciphertext:
        raise MalformedEnvelope("Ciphertext cannot be empty")
    return b"".join((
        MAGIC,
        envelope.salt,
        envelope.nonce,
        _LEN.pack(len(envelope.aad)),
        envelope.aad,
        envelope.ciphertext,
    ))


class _Reader:
    """Bounds-checked cursor over an envelope buffer."""

    def __init__(self, data: bytes, offset: int = 0):
        self._data = data
        self._pos = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def take(self, size: int, what: str) -> bytes:
        if size > self.remaining:
            raise MalformedEnvelope(
                f"Truncated envelope: {what} needs {size} bytes, "
                f"{self.remaining} left"
            )
        chunk = self._data[self._pos:self._pos + size]
        self._pos += size
        return chunk

    def rest(self) -> bytes:
        chunk = self._data[self._pos:]
        self._pos = len(self._data)
        return chunk

    def aad(self) -> bytes:
        (aad_len,) = _LEN.unpack(self.take(_LEN.size, "AAD length"))
        if aad_len == 0:
            raise MalformedEnvelope("AAD cannot be empty")
        if aad_len > self.remaining:
            raise MalformedEnvelope(
                f"AAD length {aad_len} exceeds remaining {self.remaining} bytes"
            )
        return self.take(aad_len, "AAD")


def decode(data: bytes) -> Envelope:
    """Parse bytes in either layout into an envelope.

    Raises:
        MalformedEnvelope: On truncated data, bad length prefixes, or empty
            AAD / ciphertext.
    """
    data = bytes(data)
    if is_versioned(data):
        return _decode_versioned(data)
    return _decode_legacy(data)


def _decode_versioned(data: bytes) -> Envelope:
    reader = _Reader(data, len(MAGIC))
    salt = reader.take(SALT_SIZE, "salt")
    nonce = reader.take(NONCE_SIZE, "nonce")
    aad = reader.aad()
    ciphertext = reader.rest()
    if not ciphertext:
        raise MalformedEnvelope("Ciphertext cannot be empty")
    return Envelope(salt=salt, nonce=nonce, aad=aad, ciphertext=ciphertext)


def _decode_legacy(data: bytes) -> Envelope:
    reader = _Reader(data)
    salt = reader.take(SALT_SIZE, "salt")
    nonce = reader.take(LEGACY_NONCE_SIZE, "nonce")
    aad = reader.aad()
    tag = reader.take(MAC_SIZE, "tag")
    ciphertext = reader.rest()
    if not ciphertext:
        raise MalformedEnvelope("Ciphertext cannot be empty")
    return Envelope(salt=salt, nonce=nonce, aad=aad, ciphertext=ciphertext, tag=tag)
