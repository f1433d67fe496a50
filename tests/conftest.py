"""Shared fixtures for License Vault tests."""
import pytest

from license_vault import KdfParams, RecordStore, StoreConfig
from license_vault.vault.crypto import CipherProvider, FallbackBackend

PASSWORD = "p@ssw0rd123"


@pytest.fixture
def kdf():
    """Cheap KDF costs so tests stay fast."""
    return KdfParams(time_cost=3, memory_cost=1024, iterations=1000)


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "store.bin"


@pytest.fixture
def config(store_path, kdf):
    return StoreConfig(path=store_path, kdf=kdf)


@pytest.fixture
def store(config):
    """An initialized store on a fresh path."""
    vault = RecordStore.open(PASSWORD, config=config)
    yield vault
    if vault.initialized:
        vault.close()


@pytest.fixture
def fallback_provider(kdf):
    return CipherProvider(kdf=kdf, backend=FallbackBackend())


@pytest.fixture
def primary_provider(kdf):
    pytest.importorskip("nacl")
    from license_vault.vault.crypto import XChaChaBackend
    return CipherProvider(kdf=kdf, backend=XChaChaBackend())


@pytest.fixture
def password():
    return PASSWORD
