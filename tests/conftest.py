# tests/conftest.py
from pathlib import Path
from typing import Generator

import pytest

from dualseal.crypto.keys import IdentityKeyPair
from dualseal.ledger.host import LedgerHost
from dualseal.storage import MemoryStorage
from dualseal.vault.reconcile import RetryPolicy
from dualseal.vault.session import VaultSession


@pytest.fixture
def initiator() -> IdentityKeyPair:
    return IdentityKeyPair.generate()


@pytest.fixture
def counterparty() -> IdentityKeyPair:
    return IdentityKeyPair.generate()


@pytest.fixture
def outsider() -> IdentityKeyPair:
    return IdentityKeyPair.generate()


@pytest.fixture
def ledger() -> Generator[LedgerHost, None, None]:
    host = LedgerHost(storage=MemoryStorage())
    yield host
    host.close()


@pytest.fixture
def temp_db(tmp_path: Path) -> Path:
    return tmp_path / "dualseal-test.db"


def make_session(ledger: LedgerHost, identity: IdentityKeyPair, **kwargs) -> VaultSession:
    kwargs.setdefault("retry", RetryPolicy(max_retries=0))
    return VaultSession(ledger=ledger, identity=identity, **kwargs)


@pytest.fixture
def alice(ledger, initiator) -> Generator[VaultSession, None, None]:
    session = make_session(ledger, initiator)
    yield session
    session.close()


@pytest.fixture
def bob(ledger, counterparty) -> Generator[VaultSession, None, None]:
    session = make_session(ledger, counterparty)
    yield session
    session.close()
