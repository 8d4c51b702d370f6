# dualseal/ledger/host.py
import copy
import hashlib
import json
import logging
import os
import threading
import time
from typing import Any, Callable, List, Optional, Union

from dualseal.core.canon import canonical_json
from dualseal.core.encoding import hex_prefixed
from dualseal.core.errors import BlobNotFound, DualSealError, Reverted, ValidationError
from dualseal.core.types import LedgerEvent, Receipt, RecordStatus, StateTransition
from dualseal.crypto.fhe import HomomorphicCapability, LocalFheCapability
from dualseal.crypto.keys import verify_transition
from dualseal.ledger.record_store import (
    TRANSITIONS,
    VIEWS,
    RecordStore,
    RecordStoreState,
    TransitionContext,
)
from dualseal.storage import StorageBackend, create_storage

logger = logging.getLogger(__name__)

LEDGER_NAMESPACE = "ledger"


def new_ledger_address() -> str:
    return hex_prefixed(hashlib.sha256(os.urandom(32)).digest()[-20:])


class LedgerHost:
    """
    Local append-only ledger hosting one record store.

    Every submitted transition is signature-checked, serialized behind a lock,
    executed against a deep copy of the store state and committed with a single
    storage write. A failing guard or a failing write discards the copy, so the
    committed state is left byte-for-byte unchanged. Access grants queued by the
    transition are applied only after the write succeeds. Anyone may read; reads
    never mutate.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        storage: Optional[Union[StorageBackend, str]] = None,
        capability: Optional[HomomorphicCapability] = None,
        clock: Callable[[], float] = time.time,
    ):
        # Handle storage argument flexibly, plain paths become SQLite URIs
        if storage is None:
            storage = create_storage("memory://")
        elif isinstance(storage, str):
            stripped = storage.strip()
            if "://" in stripped:
                storage = create_storage(stripped)
            else:
                storage = create_storage(f"sqlite://{stripped}")
        self.storage: StorageBackend = storage

        self.address = (address or new_ledger_address()).lower()
        self.capability = capability or LocalFheCapability(self.storage)
        self.clock = clock

        self._lock = threading.RLock()
        self._subscribers: List[Callable[[LedgerEvent], None]] = []

        self._height = 0
        self._last_time = 0
        self._events: List[LedgerEvent] = []
        self.store = RecordStore(self.address, self.capability)
        self._load()

    # ── persistence

    def _load(self) -> None:
        try:
            raw = self.storage.get(LEDGER_NAMESPACE, self.address)
        except BlobNotFound:
            logger.info("Starting new ledger %s", self.address)
            return
        snapshot = json.loads(raw)
        self._height = snapshot["height"]
        self._last_time = snapshot["last_time"]
        self._events = [LedgerEvent.from_dict(e) for e in snapshot["events"]]
        self.store.state = RecordStoreState.from_dict(snapshot["store"])
        logger.info("Loaded ledger %s at height %d (%d records)",
                    self.address, self._height, self.store.total_records())
        self._restore_grants()

    def _restore_grants(self) -> None:
        # a commit can land without its grants if the process stops in between
        for record in self.store.state.records.values():
            if record.status is not RecordStatus.FINALIZED:
                continue
            for identity in (record.initiator, record.counterparty):
                if not self.capability.has_access(record.fingerprint_handle, identity):
                    self.capability.allow_access(record.fingerprint_handle, identity)

    def _commit(self, height: int, last_time: int, events: List[LedgerEvent], state: RecordStoreState) -> None:
        snapshot = {
            "address": self.address,
            "height": height,
            "last_time": last_time,
            "events": [e.to_dict() for e in events],
            "store": state.to_dict(),
        }
        self.storage.put(LEDGER_NAMESPACE, self.address, canonical_json(snapshot))

    # ── writes

    def submit(self, transition: StateTransition) -> Receipt:
        """
        Execute a signed transition. Returns a receipt on success; raises Reverted
        (carrying the guard's ErrorKind) when the transition is rejected.
        """
        if transition.ledger.lower() != self.address:
            raise Reverted(f"Transition targets {transition.ledger}, not {self.address}",
                           ValidationError("wrong ledger address"))
        if transition.method not in TRANSITIONS:
            raise Reverted(f"Unknown method {transition.method!r}", ValidationError("unknown method"))
        try:
            sender = verify_transition(transition)
        except ValueError as e:
            raise Reverted(str(e), ValidationError(str(e))) from e

        tx_hash = hex_prefixed(hashlib.sha256(canonical_json(transition.to_dict())).digest())

        with self._lock:
            timestamp = max(int(self.clock()), self._last_time)
            ctx = TransitionContext(sender=sender, timestamp=timestamp)
            working = RecordStore(self.address, self.capability, copy.deepcopy(self.store.state))

            try:
                result = getattr(working, transition.method)(ctx, **transition.params)
            except DualSealError as e:
                logger.warning("Reverted %s from %s: %s", transition.method, sender, e)
                raise Reverted(str(e), e) from e
            except TypeError as e:
                # malformed params never reach a guard
                logger.warning("Reverted %s from %s: %s", transition.method, sender, e)
                raise Reverted(f"Bad parameters for {transition.method}: {e}",
                               ValidationError(str(e))) from e

            height = self._height + 1
            events = self._events + ctx.events
            self._commit(height, timestamp, events, working.state)

            self.store.state = working.state
            self._height = height
            self._last_time = timestamp
            self._events = events

            for handle, identity in ctx.grants:
                self.capability.allow_access(handle, identity)

        logger.info("Committed %s from %s at block %d (tx %s)", transition.method, sender, height, tx_hash[:18])

        for event in ctx.events:
            for callback in list(self._subscribers):
                try:
                    callback(event)
                except Exception:
                    logger.exception("Subscriber failed for %s", event.name)

        return Receipt(
            tx_hash=tx_hash,
            block_number=height,
            timestamp=timestamp,
            sender=sender,
            return_value=result,
            events=list(ctx.events),
        )

    # ── reads

    def read(self, method: str, *args: Any, caller: Optional[str] = None) -> Any:
        if method not in VIEWS:
            raise ValueError(f"Unknown view {method!r}")
        with self._lock:
            view = getattr(self.store, method)
            if method == "get_encrypted_fingerprint":
                return view(*args, caller=caller)
            return view(*args)

    @property
    def height(self) -> int:
        return self._height

    def events(self, since: int = 0) -> List[LedgerEvent]:
        with self._lock:
            return self._events[since:]

    def subscribe(self, callback: Callable[[LedgerEvent], None]) -> None:
        """
        Callback runs after commit, once per event, in emission order. Its
        exceptions are logged and never undo or hide the committed transition.
        """
        self._subscribers.append(callback)

    def state_digest(self) -> str:
        """SHA-256 over the committed store state; equal digests mean identical state."""
        with self._lock:
            return hashlib.sha256(canonical_json(self.store.state.to_dict())).hexdigest()

    def close(self) -> None:
        self.storage.close()
