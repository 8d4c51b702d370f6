# dualseal/vault/session.py
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from dualseal.core.types import Receipt, Record
from dualseal.crypto.cipher import seal
from dualseal.crypto.fhe import FingerprintEncryptor
from dualseal.crypto.fingerprint import fingerprint
from dualseal.crypto.keys import IdentityKeyPair
from dualseal.ledger.host import LedgerHost
from dualseal.storage import StorageBackend, create_storage, payload_namespace
from dualseal.vault.reconcile import ReconciliationPipeline, RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class VaultSession:
    """
    One identity's view of a record store.
    Drives create / approve / finalize and reconciliation on its behalf.
    Payload blobs go to `payloads`, which defaults to the ledger's own storage.
    """
    ledger: LedgerHost
    identity: IdentityKeyPair
    payloads: Optional[Union[StorageBackend, str]] = None
    timeout: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        if isinstance(self.payloads, str):
            stripped = self.payloads.strip()
            if "://" in stripped:
                self.payloads = create_storage(stripped)
            elif stripped:
                self.payloads = create_storage(f"sqlite://{stripped}")
            else:
                self.payloads = None
        if self.payloads is None:
            self.payloads = self.ledger.storage

        self.encryptor = FingerprintEncryptor(self.ledger.capability, self.ledger.address)
        self.pipeline = ReconciliationPipeline(self.ledger, self.payloads, timeout=self.timeout)

    @property
    def address(self) -> str:
        return self.identity.address

    def create_exchange(self, title: str, counterparty: str, content: str) -> Record:
        """
        Commit the encrypted fingerprint on-ledger, then store the sealed payload
        under the id the ledger assigned. The two writes are not atomic: until the
        second one lands, reconciliation sees payload-missing and retries.
        """
        encrypted = self.encryptor.encrypt_for_ledger(fingerprint(content), self.address)

        receipt = self._submit(
            "create",
            title=title,
            counterparty=counterparty.lower(),
            fingerprint_handle=encrypted.handle,
            input_proof=encrypted.proof,
        )
        record_id = receipt.return_value

        blob = seal(content, self.ledger.address)
        self.payloads.put(payload_namespace(self.ledger.address), str(record_id), blob)
        logger.info("Stored %d-byte payload for record %d", len(blob), record_id)

        return self.ledger.read("get_record", record_id)

    def approve(self, record_id: int) -> Receipt:
        return self._submit("approve", record_id=record_id)

    def finalize(self, record_id: int) -> Receipt:
        return self._submit("finalize", record_id=record_id)

    def get_record(self, record_id: int) -> Record:
        return self.ledger.read("get_record", record_id)

    def reconcile(self, record_id: int) -> str:
        return self.pipeline.reconcile_with_retry(record_id, self.identity, self.retry)

    def my_records(self) -> Dict[str, List[int]]:
        return {
            "initiator": self.ledger.read("records_by_initiator", self.address),
            "counterparty": self.ledger.read("records_by_counterparty", self.address),
        }

    def _submit(self, method: str, **params) -> Receipt:
        return self.ledger.submit(self.identity.transition(self.ledger.address, method, **params))

    def close(self) -> None:
        self.pipeline.close()
        if self.payloads is not self.ledger.storage:
            self.payloads.close()
