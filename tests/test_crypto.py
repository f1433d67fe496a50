"""
Tests for the cipher provider and its backends.

Tests cover:
- Round trip and fresh salt/nonce per encryption
- Wrong password and tampering both raise AuthenticationFailure
- Fallback backend (always available) and primary backend (PyNaCl)
- Envelope dispatch: fallback and legacy envelopes, missing primary backend
- Backend selection reporting
"""
import pytest

from license_vault import AuthenticationFailure, CipherUnavailable, ValidationError
from license_vault.vault import crypto
from license_vault.vault.crypto import (
    AAD_FALLBACK,
    AAD_PRIMARY,
    ALGORITHM_FALLBACK,
    ALGORITHM_LEGACY,
    CipherProvider,
    Envelope,
    FallbackBackend,
    LEGACY_NONCE_SIZE,
    MAC_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
)

PLAINTEXT = b'{"records": {"a": {"name": "Stripe"}}}'


def _flip_last_byte(data: bytes) -> bytes:
    return data[:-1] + bytes([data[-1] ^ 0x01])


# --- Test Fallback Backend ---

class TestFallbackProvider:
    """Tests for the degraded PBKDF2 + ChaCha20/HMAC backend."""

    def test_round_trip(self, fallback_provider):
        """Test decrypt(encrypt(p, w), w) == p."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        assert fallback_provider.decrypt(envelope, "secret-pass") == PLAINTEXT

    def test_round_trip_empty_plaintext(self, fallback_provider):
        """Test an empty plaintext still round-trips."""
        envelope = fallback_provider.encrypt(b"", "secret-pass")
        assert len(envelope.ciphertext) == MAC_SIZE
        assert fallback_provider.decrypt(envelope, "secret-pass") == b""

    def test_envelope_shape(self, fallback_provider):
        """Test salt/nonce sizes, AAD and appended tag."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        assert len(envelope.salt) == SALT_SIZE
        assert len(envelope.nonce) == NONCE_SIZE
        assert envelope.aad == AAD_FALLBACK
        assert envelope.tag is None
        assert envelope.algorithm == ALGORITHM_FALLBACK
        assert len(envelope.ciphertext) == len(PLAINTEXT) + MAC_SIZE

    def test_fresh_salt_and_nonce(self, fallback_provider):
        """Test two encryptions of the same data never share salt or nonce."""
        first = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        second = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        assert first.salt != second.salt
        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_wrong_password(self, fallback_provider):
        """Test a wrong password raises AuthenticationFailure."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        with pytest.raises(AuthenticationFailure):
            fallback_provider.decrypt(envelope, "other-pass")

    def test_tampered_ciphertext(self, fallback_provider):
        """Test a flipped ciphertext bit raises AuthenticationFailure."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        tampered = Envelope(
            salt=envelope.salt,
            nonce=envelope.nonce,
            aad=envelope.aad,
            ciphertext=bytes([envelope.ciphertext[0] ^ 0x80]) + envelope.ciphertext[1:],
        )
        with pytest.raises(AuthenticationFailure):
            fallback_provider.decrypt(tampered, "secret-pass")

    def test_tampered_tag(self, fallback_provider):
        """Test a flipped tag bit raises AuthenticationFailure."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        tampered = Envelope(
            salt=envelope.salt,
            nonce=envelope.nonce,
            aad=envelope.aad,
            ciphertext=_flip_last_byte(envelope.ciphertext),
        )
        with pytest.raises(AuthenticationFailure):
            fallback_provider.decrypt(tampered, "secret-pass")

    def test_same_error_for_wrong_password_and_tampering(self, fallback_provider):
        """Test wrong password and tampering are reported identically."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        tampered = Envelope(
            salt=envelope.salt,
            nonce=envelope.nonce,
            aad=envelope.aad,
            ciphertext=_flip_last_byte(envelope.ciphertext),
        )
        with pytest.raises(AuthenticationFailure) as wrong:
            fallback_provider.decrypt(envelope, "other-pass")
        with pytest.raises(AuthenticationFailure) as corrupt:
            fallback_provider.decrypt(tampered, "secret-pass")
        assert str(wrong.value) == str(corrupt.value)

    def test_truncated_ciphertext(self, fallback_provider):
        """Test ciphertext shorter than the tag fails authentication."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        short = Envelope(
            salt=envelope.salt, nonce=envelope.nonce, aad=envelope.aad,
            ciphertext=envelope.ciphertext[:10],
        )
        with pytest.raises(AuthenticationFailure):
            fallback_provider.decrypt(short, "secret-pass")

    def test_is_degraded(self, fallback_provider):
        """Test the fallback backend is flagged as degraded."""
        assert fallback_provider.degraded is True


# --- Test Key Derivation ---

class TestDeriveKey:
    """Tests for password-based key derivation."""

    def test_key_is_256_bits(self, fallback_provider):
        """Test derived keys are 32 bytes."""
        key = fallback_provider.derive_key("secret-pass", b"\x01" * SALT_SIZE)
        assert len(key) == 32

    def test_deterministic(self, fallback_provider):
        """Test the same password and salt give the same key."""
        salt = b"\x02" * SALT_SIZE
        assert fallback_provider.derive_key("pw-one", salt) == \
            fallback_provider.derive_key(b"pw-one", salt)

    def test_salt_changes_key(self, fallback_provider):
        """Test different salts give different keys."""
        first = fallback_provider.derive_key("pw-one", b"\x01" * SALT_SIZE)
        second = fallback_provider.derive_key("pw-one", b"\x02" * SALT_SIZE)
        assert first != second

    def test_salt_size_enforced(self, fallback_provider):
        """Test a salt that is not 16 bytes is rejected."""
        with pytest.raises(ValueError):
            fallback_provider.derive_key("pw-one", b"short")

    def test_empty_password_rejected(self, fallback_provider):
        """Test an empty password raises ValidationError."""
        with pytest.raises(ValidationError):
            fallback_provider.encrypt(PLAINTEXT, "")

    def test_primary_key_is_256_bits(self, primary_provider):
        """Test Argon2i derivation gives 32-byte deterministic keys."""
        salt = b"\x03" * SALT_SIZE
        key = primary_provider.derive_key("pw-one", salt)
        assert len(key) == 32
        assert key == primary_provider.derive_key("pw-one", salt)


# --- Test Primary Backend ---

class TestPrimaryProvider:
    """Tests for the Argon2i + XChaCha20-Poly1305 backend."""

    def test_round_trip(self, primary_provider):
        """Test decrypt(encrypt(p, w), w) == p."""
        envelope = primary_provider.encrypt(PLAINTEXT, "secret-pass")
        assert primary_provider.decrypt(envelope, "secret-pass") == PLAINTEXT

    def test_envelope_shape(self, primary_provider):
        """Test 24-byte nonce, primary AAD, Poly1305 tag appended."""
        envelope = primary_provider.encrypt(PLAINTEXT, "secret-pass")
        assert len(envelope.nonce) == NONCE_SIZE
        assert envelope.aad == AAD_PRIMARY
        assert len(envelope.ciphertext) == len(PLAINTEXT) + 16
        assert primary_provider.degraded is False

    def test_wrong_password(self, primary_provider):
        """Test a wrong password raises AuthenticationFailure."""
        envelope = primary_provider.encrypt(PLAINTEXT, "secret-pass")
        with pytest.raises(AuthenticationFailure):
            primary_provider.decrypt(envelope, "other-pass")

    def test_tampered_ciphertext(self, primary_provider):
        """Test a flipped bit raises AuthenticationFailure."""
        envelope = primary_provider.encrypt(PLAINTEXT, "secret-pass")
        tampered = Envelope(
            salt=envelope.salt, nonce=envelope.nonce, aad=envelope.aad,
            ciphertext=_flip_last_byte(envelope.ciphertext),
        )
        with pytest.raises(AuthenticationFailure):
            primary_provider.decrypt(tampered, "secret-pass")

    @pytest.mark.parametrize("length", [0, 5, 15])
    def test_truncated_ciphertext(self, primary_provider, length):
        """Test ciphertext shorter than the Poly1305 tag raises AuthenticationFailure."""
        envelope = Envelope(
            salt=b"\x01" * SALT_SIZE, nonce=b"\x02" * NONCE_SIZE,
            aad=AAD_PRIMARY, ciphertext=b"\x03" * length,
        )
        with pytest.raises(AuthenticationFailure):
            primary_provider.decrypt(envelope, "secret-pass")

    def test_aad_is_authenticated(self, primary_provider):
        """Test changing the AAD breaks authentication."""
        envelope = primary_provider.encrypt(PLAINTEXT, "secret-pass")
        altered = Envelope(
            salt=envelope.salt, nonce=envelope.nonce, aad=b"something_else",
            ciphertext=envelope.ciphertext,
        )
        with pytest.raises(AuthenticationFailure):
            primary_provider.decrypt(altered, "secret-pass")

    def test_reads_fallback_envelopes(self, primary_provider, fallback_provider):
        """Test a primary-backend process still opens degraded envelopes."""
        envelope = fallback_provider.encrypt(PLAINTEXT, "secret-pass")
        assert primary_provider.decrypt(envelope, "secret-pass") == PLAINTEXT


# --- Test Envelope Dispatch ---

class TestEnvelopeDispatch:
    """Tests for choosing the decrypting backend from the envelope."""

    def test_legacy_envelope(self, fallback_provider, kdf):
        """Test legacy envelopes (12-byte nonce, separate tag) decrypt."""
        backend = FallbackBackend()
        salt, nonce = b"\x05" * SALT_SIZE, b"\x06" * LEGACY_NONCE_SIZE
        aad = b"license_manager_fallback"
        key = backend.derive_key(b"secret-pass", salt, kdf)
        ciphertext, tag = backend.seal_detached(key, nonce, PLAINTEXT, aad)
        envelope = Envelope(salt=salt, nonce=nonce, aad=aad, ciphertext=ciphertext, tag=tag)
        assert envelope.legacy
        assert envelope.algorithm == ALGORITHM_LEGACY
        assert fallback_provider.decrypt(envelope, "secret-pass") == PLAINTEXT
        with pytest.raises(AuthenticationFailure):
            fallback_provider.decrypt(envelope, "other-pass")

    def test_primary_envelope_without_primary_backend(self, fallback_provider, monkeypatch):
        """Test CipherUnavailable when the primary backend is missing."""
        monkeypatch.setattr(crypto, "_PRIMARY", None)
        envelope = Envelope(
            salt=b"\x00" * SALT_SIZE,
            nonce=b"\x00" * NONCE_SIZE,
            aad=AAD_PRIMARY,
            ciphertext=b"\x00" * 32,
        )
        with pytest.raises(CipherUnavailable):
            fallback_provider.decrypt(envelope, "secret-pass")


# --- Test Backend Selection ---

class TestBackendSelection:
    """Tests for the process-wide backend choice."""

    def test_backend_is_cached(self):
        """Test the backend is resolved once at import."""
        assert crypto.get_backend() is crypto.get_backend()
        assert crypto.get_backend() is crypto.BACKEND

    def test_backend_info(self):
        """Test backend_info reports names and the degraded flag."""
        info = crypto.backend_info()
        assert info["algorithm"] == crypto.BACKEND.name
        assert info["kdf"] == crypto.BACKEND.kdf_name
        assert info["degraded"] is crypto.is_degraded()
        assert info["key_size"] == 256

    def test_primary_selected_when_available(self):
        """Test PyNaCl being importable selects the primary backend."""
        pytest.importorskip("nacl")
        assert crypto.is_degraded() is False
        assert crypto.backend_info()["primary_available"] is True

    def test_default_provider_uses_process_backend(self):
        """Test providers default to the cached backend."""
        assert CipherProvider().backend is crypto.BACKEND
