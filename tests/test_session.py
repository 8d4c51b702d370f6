# tests/test_session.py
import pytest

from dualseal.core.errors import ErrorKind, Reverted
from dualseal.core.types import RecordStatus
from dualseal.crypto.cipher import HEADER_SIZE, TAG_SIZE, open_blob
from dualseal.crypto.fingerprint import fingerprint
from dualseal.storage import SQLiteStorage, payload_namespace

from conftest import make_session


def test_create_stores_payload_under_record_id(alice, counterparty, ledger):
    record = alice.create_exchange("NDA", counterparty.address, "Confidential terms")

    blob = ledger.storage.get(payload_namespace(ledger.address), str(record.id))
    assert len(blob) == HEADER_SIZE + len("Confidential terms") + TAG_SIZE
    assert open_blob(blob, ledger.address) == "Confidential terms"
    assert b"Confidential" not in blob


def test_fingerprint_committed_matches_content(alice, bob, counterparty, ledger):
    record = alice.create_exchange("NDA", counterparty.address, "Confidential terms")
    bob.approve(record.id)
    alice.finalize(record.id)

    handle = ledger.read("get_encrypted_fingerprint", record.id, caller=counterparty.address)
    assert ledger.capability.decrypt(handle, counterparty) == fingerprint("Confidential terms")


def test_counterparty_address_normalized(alice, counterparty):
    record = alice.create_exchange("NDA", counterparty.address.upper().replace("0X", "0x"), "text")
    assert record.counterparty == counterparty.address


def test_rejected_create_leaves_no_payload(alice, initiator, ledger):
    with pytest.raises(Reverted) as exc:
        alice.create_exchange("NDA", initiator.address, "text")
    assert exc.value.kind is ErrorKind.VALIDATION
    assert ledger.storage.keys(payload_namespace(ledger.address)) == []


def test_full_flow_through_sessions(alice, bob, counterparty):
    record = alice.create_exchange("Lease", counterparty.address, "Rent is due monthly.")
    bob.approve(record.id)
    alice.finalize(record.id)

    assert alice.get_record(record.id).status is RecordStatus.FINALIZED
    assert alice.reconcile(record.id) == "Rent is due monthly."
    assert bob.reconcile(record.id) == "Rent is due monthly."


def test_my_records(alice, bob, counterparty, initiator):
    alice.create_exchange("One", counterparty.address, "1")
    bob.create_exchange("Two", initiator.address, "2")

    assert alice.my_records() == {"initiator": [0], "counterparty": [1]}
    assert bob.my_records() == {"initiator": [1], "counterparty": [0]}


def test_separate_payload_store(ledger, initiator, counterparty, temp_db):
    alice = make_session(ledger, initiator, payloads=str(temp_db))
    bob = make_session(ledger, counterparty, payloads=SQLiteStorage(temp_db))

    record = alice.create_exchange("NDA", counterparty.address, "kept apart")
    bob.approve(record.id)
    alice.finalize(record.id)

    assert ledger.storage.keys(payload_namespace(ledger.address)) == []
    assert bob.reconcile(record.id) == "kept apart"
    alice.close()
    bob.close()


def test_failing_subscriber_does_not_drop_payload(alice, bob, counterparty, ledger):
    def broken(event):
        raise RuntimeError("subscriber bug")

    ledger.subscribe(broken)
    record = alice.create_exchange("NDA", counterparty.address, "still stored")

    assert ledger.storage.keys(payload_namespace(ledger.address)) == [str(record.id)]
    bob.approve(record.id)
    alice.finalize(record.id)
    assert bob.reconcile(record.id) == "still stored"
