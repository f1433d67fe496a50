"""
Vault Crypto Core — Password key derivation and authenticated encryption.

Two interchangeable backends, selected once at module load:
- Primary: Argon2i(password, salt) → XChaCha20-Poly1305 (24-byte nonce, PyNaCl)
- Fallback: PBKDF2-SHA256(password, salt) → HKDF split → ChaCha20 + HMAC-SHA256
  (encrypt-then-MAC, ``cryptography``). Only used when PyNaCl is missing.

The fallback is markedly weaker (low iteration count, no memory hardness) and
is reported as degraded everywhere it is active.

Every encryption draws a fresh random salt and nonce, so every snapshot is
sealed with a freshly derived key.

Security Note:
    Never log plaintext, ciphertext, passwords or derived keys.
    Wrong passwords and tampered ciphertext raise the same error.
"""
import os
import struct
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
try:
    import nacl.bindings
    import nacl.exceptions
    import nacl.pwhash
except ImportError:
    nacl = None

from ..exceptions import AuthenticationFailure, CipherUnavailable, ValidationError
from .config import KdfParams

logger = logging.getLogger("license_vault.vault")

KEY_SIZE = 32  # 256-bit keys
SALT_SIZE = 16
NONCE_SIZE = 24  # XChaCha20 extended nonce
LEGACY_NONCE_SIZE = 12
MAC_SIZE = 32  # HMAC-SHA256 tag of the fallback construction
POLY1305_TAG_SIZE = 16

AAD_PRIMARY = b"license_vault_v2_xchacha20"
AAD_FALLBACK = b"license_vault_v2_fallback"

ALGORITHM_PRIMARY = "XChaCha20-Poly1305/Argon2i"
ALGORITHM_FALLBACK = "ChaCha20-HMAC-SHA256/PBKDF2"
ALGORITHM_LEGACY = "legacy:ChaCha20-HMAC-SHA256/PBKDF2"

_AUTH_FAILED = "Authentication failed: invalid password or corrupted data"
_FALLBACK_CONTEXT = b"license-vault-fallback"

Password = Union[str, bytes, bytearray]


def password_bytes(password: Password) -> bytes:
    """Normalize a password to bytes, rejecting empty ones."""
    if isinstance(password, str):
        password = password.encode("utf-8")
    if not password:
        raise ValidationError("Password cannot be empty", field="password")
    return bytes(password)


@dataclass(frozen=True)
class Envelope:
    """Encrypted snapshot as produced by ``CipherProvider.encrypt``.

    ``tag`` is only set for legacy envelopes, where the authentication tag
    is stored apart from the ciphertext. In every other envelope the tag
    is the tail of ``ciphertext``.
    """
    salt: bytes
    nonce: bytes
    aad: bytes
    ciphertext: bytes
    tag: Optional[bytes] = None
    kdf: Optional[KdfParams] = None

    @property
    def legacy(self) -> bool:
        return self.tag is not None

    @property
    def algorithm(self) -> str:
        if self.legacy:
            return ALGORITHM_LEGACY
        if self.aad == AAD_FALLBACK:
            return ALGORITHM_FALLBACK
        return ALGORITHM_PRIMARY


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class CipherBackend(ABC):
    """Key derivation plus AEAD sealing for one algorithm family."""

    name: str = ""
    kdf_name: str = ""
    aad: bytes = b""
    degraded: bool = False

    @abstractmethod
    def derive_key(self, password: bytes, salt: bytes, params: KdfParams) -> bytes:
        """Derive a 32-byte key from password and salt."""

    @abstractmethod
    def seal(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        """Encrypt and authenticate, returning ciphertext with the tag appended."""

    @abstractmethod
    def open(
        self,
        key: bytes,
        nonce: bytes,
        ciphertext: bytes,
        aad: bytes,
        tag: Optional[bytes] = None,
    ) -> bytes:
        """Verify and decrypt.

        Raises:
            AuthenticationFailure: If the tag does not verify.
        """


class XChaChaBackend(CipherBackend):
    """Argon2i + XChaCha20-Poly1305-IETF through libsodium (PyNaCl)."""

    name = "XChaCha20-Poly1305"
    kdf_name = "Argon2i"
    aad = AAD_PRIMARY

    def derive_key(self, password: bytes, salt: bytes, params: KdfParams) -> bytes:
        return nacl.pwhash.argon2i.kdf(
            KEY_SIZE,
            password,
            salt,
            opslimit=params.time_cost,
            memlimit=params.memory_bytes,
        )

    def seal(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
            plaintext, aad, nonce, key,
        )

    def open(self, key, nonce, ciphertext, aad, tag=None) -> bytes:
        # tag is unused: detached tags only occur in legacy envelopes,
        # which are always opened by the fallback backend
        if len(ciphertext) < POLY1305_TAG_SIZE:
            raise AuthenticationFailure(_AUTH_FAILED)
        try:
            return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                ciphertext, aad, nonce, key,
            )
        except (nacl.exceptions.CryptoError, ValueError, TypeError) as err:
            raise AuthenticationFailure(_AUTH_FAILED) from err


class FallbackBackend(CipherBackend):
    """PBKDF2-SHA256 + ChaCha20 with an HMAC-SHA256 tag (encrypt-then-MAC).

    Also reads legacy envelopes, whose 12-byte nonce and separate tag
    come from the same construction.
    """

    name = "ChaCha20-HMAC-SHA256"
    kdf_name = "PBKDF2-SHA256"
    aad = AAD_FALLBACK
    degraded = True

    def derive_key(self, password: bytes, salt: bytes, params: KdfParams) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=params.iterations,
        )
        return kdf.derive(password)

    def _subkeys(self, key: bytes, nonce: bytes) -> tuple[bytes, bytes]:
        """Split the derived key into (encryption key, MAC key) per nonce."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=2 * KEY_SIZE,
            salt=nonce,
            info=_FALLBACK_CONTEXT,
        )
        okm = hkdf.derive(key)
        return okm[:KEY_SIZE], okm[KEY_SIZE:]

    def _stream(self, enc_key: bytes, nonce: bytes, data: bytes) -> bytes:
        # 4-byte little-endian block counter (0) followed by a 96-bit nonce
        full_nonce = b"\x00" * 4 + nonce[-LEGACY_NONCE_SIZE:]
        cipher = Cipher(algorithms.ChaCha20(enc_key, full_nonce), mode=None)
        encryptor = cipher.encryptor()
        return encryptor.update(data) + encryptor.finalize()

    def _mac(self, mac_key: bytes, nonce: bytes, aad: bytes, ciphertext: bytes) -> hmac.HMAC:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(struct.pack("<I", len(aad)))
        h.update(aad)
        h.update(nonce)
        h.update(ciphertext)
        return h

    def seal_detached(
        self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes,
    ) -> tuple[bytes, bytes]:
        """Encrypt and return (ciphertext, tag) as separate values."""
        enc_key, mac_key = self._subkeys(key, nonce)
        ciphertext = self._stream(enc_key, nonce, plaintext)
        tag = self._mac(mac_key, nonce, aad, ciphertext).finalize()
        return ciphertext, tag

    def seal(self, key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> bytes:
        ciphertext, tag = self.seal_detached(key, nonce, plaintext, aad)
        return ciphertext + tag

    def open(self, key, nonce, ciphertext, aad, tag=None) -> bytes:
        if tag is None:
            if len(ciphertext) < MAC_SIZE:
                raise AuthenticationFailure(_AUTH_FAILED)
            ciphertext, tag = ciphertext[:-MAC_SIZE], ciphertext[-MAC_SIZE:]
        enc_key, mac_key = self._subkeys(key, nonce)
        try:
            self._mac(mac_key, nonce, aad, ciphertext).verify(tag)
        except InvalidSignature as err:
            raise AuthenticationFailure(_AUTH_FAILED) from err
        return self._stream(enc_key, nonce, ciphertext)


def _select_backend() -> CipherBackend:
    """Pick the strongest available backend."""
    if nacl is not None:
        logger.info("Cipher backend: %s with %s", XChaChaBackend.name, XChaChaBackend.kdf_name)
        return XChaChaBackend()
    logger.warning(
        "PyNaCl is not installed: falling back to DEGRADED cipher backend "
        "%s with %s. Stores written now are far easier to brute-force; "
        "install PyNaCl to restore Argon2i + XChaCha20-Poly1305.",
        FallbackBackend.name, FallbackBackend.kdf_name,
    )
    return FallbackBackend()


# Resolved once at module load; never re-probed per call.
BACKEND = _select_backend()
_PRIMARY: Optional[CipherBackend] = None if BACKEND.degraded else BACKEND
_FALLBACK: CipherBackend = BACKEND if BACKEND.degraded else FallbackBackend()


def get_backend() -> CipherBackend:
    """Return the process-wide backend chosen at import time."""
    return BACKEND


def is_degraded() -> bool:
    """True when only the weak fallback backend is available."""
    return BACKEND.degraded


def backend_info() -> dict:
    """Describe the active backend (algorithm names and degraded flag)."""
    return {
        "algorithm": BACKEND.name,
        "kdf": BACKEND.kdf_name,
        "nonce_size": NONCE_SIZE,
        "key_size": KEY_SIZE * 8,
        "degraded": BACKEND.degraded,
        "primary_available": _PRIMARY is not None,
    }


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class CipherProvider:
    """Encrypts and decrypts whole snapshots with a password.

    Args:
        kdf: Key derivation costs, used for new envelopes and for envelopes
            that do not carry their own parameters.
        backend: Backend used for encryption; defaults to the process-wide one.
    """

    def __init__(
        self,
        kdf: Optional[KdfParams] = None,
        backend: Optional[CipherBackend] = None,
    ):
        self.kdf = kdf or KdfParams()
        self.backend = backend or BACKEND

    def __repr__(self) -> str:
        return f"<CipherProvider backend={self.backend.name} degraded={self.degraded}>"

    @property
    def degraded(self) -> bool:
        return self.backend.degraded

    def derive_key(
        self,
        password: Password,
        salt: bytes,
        params: Optional[KdfParams] = None,
    ) -> bytes:
        """Derive a 256-bit key with the encryption backend.

        Raises:
            ValueError: If salt is not 16 bytes.
            ValidationError: If password is empty.
        """
        if len(salt) != SALT_SIZE:
            raise ValueError(
                f"salt must be exactly {SALT_SIZE} bytes, got {len(salt)}"
            )
        return self.backend.derive_key(
            password_bytes(password), salt, params or self.kdf,
        )

    def encrypt(self, plaintext: bytes, password: Password) -> Envelope:
        """Seal plaintext under a key derived from a fresh salt.

        Returns:
            Envelope with a fresh 16-byte salt and 24-byte nonce.
        """
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = self.derive_key(password, salt)
        aad = self.backend.aad
        ciphertext = self.backend.seal(key, nonce, plaintext, aad)
        return Envelope(
            salt=salt, nonce=nonce, aad=aad, ciphertext=ciphertext, kdf=self.kdf,
        )

    def decrypt(self, envelope: Envelope, password: Password) -> bytes:
        """Re-derive the key from the envelope salt, verify and decrypt.

        Raises:
            AuthenticationFailure: Wrong password or corrupted ciphertext.
            CipherUnavailable: Envelope needs the primary backend, which is
                not installed.
        """
        backend = self._backend_for(envelope)
        key = backend.derive_key(
            password_bytes(password), envelope.salt, envelope.kdf or self.kdf,
        )
        return backend.open(
            key, envelope.nonce, envelope.ciphertext, envelope.aad, envelope.tag,
        )

    def _backend_for(self, envelope: Envelope) -> CipherBackend:
        if envelope.legacy or envelope.aad == AAD_FALLBACK:
            return _FALLBACK
        if not self.backend.degraded:
            return self.backend
        if _PRIMARY is None:
            raise CipherUnavailable(
                f"Envelope was written with {ALGORITHM_PRIMARY}; "
                "install PyNaCl to decrypt it"
            )
        return _PRIMARY
