# tests/test_core.py
import pytest

from dualseal.core.canon import canonical_json
from dualseal.core.encoding import b64url_decode, b64url_encode, hex_prefixed
from dualseal.core.errors import ErrorKind, Reverted, Unauthorized
from dualseal.core.types import LedgerEvent, Record, RecordStatus


@pytest.fixture
def sample_record():
    return Record(
        id=0,
        title="NDA",
        fingerprint_handle="0x" + "ab" * 32,
        initiator="0x" + "11" * 20,
        counterparty="0x" + "22" * 20,
        created_at=1760000000,
    )


def test_record_immutable(sample_record):
    with pytest.raises(AttributeError):
        sample_record.status = RecordStatus.FINALIZED


def test_record_defaults(sample_record):
    assert sample_record.status is RecordStatus.AWAITING_COUNTERPARTY_APPROVAL
    assert sample_record.counterparty_approved_at == 0
    assert sample_record.initiator_finalized_at == 0


def test_record_rejects_same_parties():
    with pytest.raises(ValueError):
        Record(id=0, title="x", fingerprint_handle="0x00",
               initiator="0x" + "11" * 20, counterparty="0x" + "11" * 20)


def test_record_rejects_unknown_status():
    with pytest.raises(ValueError):
        Record(id=0, title="x", fingerprint_handle="0x00",
               initiator="0x" + "11" * 20, counterparty="0x" + "22" * 20, status=3)


def test_record_dict_roundtrip(sample_record):
    d = sample_record.to_dict()
    assert d["status"] == 0
    assert Record.from_dict(d) == sample_record


def test_status_order():
    assert RecordStatus.AWAITING_COUNTERPARTY_APPROVAL.next is RecordStatus.AWAITING_INITIATOR_FINALIZATION
    assert RecordStatus.AWAITING_INITIATOR_FINALIZATION.next is RecordStatus.FINALIZED
    with pytest.raises(ValueError):
        RecordStatus.FINALIZED.next


def test_is_party(sample_record):
    assert sample_record.is_party("0x" + "11" * 20)
    assert sample_record.is_party("0x" + "22" * 20)
    assert not sample_record.is_party("0x" + "33" * 20)


def test_event_roundtrip():
    ev = LedgerEvent("CounterpartyApproved", 4, 1760000000, {"counterparty": "0x" + "22" * 20})
    assert LedgerEvent.from_dict(ev.to_dict()) == ev


def test_base64url_roundtrip():
    original = b'\x00\xff{"hello":"world"}'
    encoded = b64url_encode(original)
    assert b64url_decode(encoded) == original
    assert "=" not in encoded  # no padding


def test_hex_prefixed():
    assert hex_prefixed(b"\x01\xab") == "0x01ab"


def test_canonical_json_sorting():
    canon = canonical_json({"z": 1, "a": "hello", "nested": {"b": 2, "a": 1}}).decode("utf-8")
    assert canon == '{"a":"hello","nested":{"a":1,"b":2},"z":1}'


def test_error_kinds():
    assert ErrorKind.PAYLOAD_MISSING.transient
    assert ErrorKind.TIMEOUT.transient
    assert not ErrorKind.UNAUTHORIZED.transient
    assert ErrorKind.INTEGRITY_MISMATCH.fatal
    assert ErrorKind.PAYLOAD_CORRUPTED.fatal
    assert not ErrorKind.NOT_READY.fatal


def test_reverted_keeps_cause_kind():
    err = Reverted("nope", Unauthorized("wrong caller"))
    assert err.kind is ErrorKind.UNAUTHORIZED
    assert err.reason == "nope"
    assert isinstance(err.cause, Unauthorized)
