# dualseal/vault/reconcile.py
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Optional

from dualseal.core.errors import (
    AccessDenied,
    AuthenticationError,
    BlobNotFound,
    ErrorKind,
    NotFound,
    NotReady,
    ReconciliationError,
    Unauthorized,
)
from dualseal.core.types import RecordStatus
from dualseal.crypto.cipher import open_blob
from dualseal.crypto.fhe import FingerprintEncryptor
from dualseal.crypto.fingerprint import fingerprint
from dualseal.crypto.keys import IdentityKeyPair
from dualseal.ledger.host import LedgerHost
from dualseal.storage import StorageBackend, payload_namespace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff, applied only to payload-missing failures."""
    max_retries: int = 5
    base_delay: float = 0.2
    max_delay: float = 5.0

    def get_delay(self, retry_count: int) -> float:
        return min(self.base_delay * (2 ** retry_count), self.max_delay)

    def should_retry(self, retry_count: int, error: ReconciliationError) -> bool:
        if retry_count >= self.max_retries:
            return False
        return error.kind is ErrorKind.PAYLOAD_MISSING


class ReconciliationPipeline:
    """
    Recover a finalized document and prove the off-ledger payload still matches
    the on-ledger fingerprint:

        1. read the record (not found / not ready / unauthorized)
        2. decrypt the fingerprint for the requestor (decryption denied)
        3. fetch the payload blob (payload missing)
        4. open it with the record store's public address (payload corrupted)
        5. recompute and compare the fingerprint (integrity mismatch)

    Plaintext is only returned when step 5 matches. Read-only and idempotent;
    both parties may reconcile concurrently.
    """

    def __init__(
        self,
        ledger: LedgerHost,
        payloads: StorageBackend,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.payloads = payloads
        self.decryptor = FingerprintEncryptor(ledger.capability, ledger.address)
        self.timeout = timeout
        self.sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="dualseal-reconcile")

    def _bounded(self, what: str, record_id: int, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout:
            future.cancel()
            raise ReconciliationError(
                ErrorKind.TIMEOUT, f"{what} did not respond within {self.timeout}s", record_id
            ) from None

    def reconcile(self, record_id: int, requestor: IdentityKeyPair) -> str:
        address = requestor.address

        # 1. ledger
        try:
            record = self._bounded("ledger read", record_id, self.ledger.read, "get_record", record_id)
        except NotFound as e:
            raise ReconciliationError(ErrorKind.NOT_FOUND, str(e), record_id) from e
        if record.status is not RecordStatus.FINALIZED:
            raise ReconciliationError(
                ErrorKind.NOT_READY, f"status is {record.status.name}", record_id
            )
        if not record.is_party(address):
            raise ReconciliationError(
                ErrorKind.UNAUTHORIZED, f"{address} is not a party to this record", record_id
            )
        try:
            handle = self._bounded(
                "ledger read", record_id,
                self.ledger.read, "get_encrypted_fingerprint", record_id, caller=address,
            )
        except NotReady as e:
            raise ReconciliationError(ErrorKind.NOT_READY, str(e), record_id) from e
        except Unauthorized as e:
            raise ReconciliationError(ErrorKind.UNAUTHORIZED, str(e), record_id) from e

        # 2. fingerprint
        try:
            expected = self.decryptor.decrypt_for_identity(handle, requestor)
        except AccessDenied as e:
            raise ReconciliationError(ErrorKind.DECRYPTION_DENIED, str(e), record_id) from e

        # 3. payload
        try:
            blob = self._bounded(
                "payload store", record_id,
                self.payloads.get, payload_namespace(self.ledger.address), str(record_id),
            )
        except BlobNotFound as e:
            raise ReconciliationError(ErrorKind.PAYLOAD_MISSING, str(e), record_id) from e

        # 4. open
        try:
            plaintext = open_blob(blob, self.ledger.address)
        except AuthenticationError as e:
            raise ReconciliationError(ErrorKind.PAYLOAD_CORRUPTED, str(e), record_id) from e

        # 5. compare; unverified plaintext is never handed out
        if fingerprint(plaintext) != expected:
            raise ReconciliationError(
                ErrorKind.INTEGRITY_MISMATCH,
                "payload fingerprint does not match the ledger commitment",
                record_id,
            )

        logger.info("Reconciled record %d for %s", record_id, address)
        return plaintext

    def reconcile_with_retry(
        self,
        record_id: int,
        requestor: IdentityKeyPair,
        policy: Optional[RetryPolicy] = None,
    ) -> str:
        """
        Same as reconcile(), but rides out a payload blob that has not been
        written yet right after the record was created.
        """
        policy = policy or RetryPolicy()
        retry_count = 0
        while True:
            try:
                return self.reconcile(record_id, requestor)
            except ReconciliationError as e:
                if not policy.should_retry(retry_count, e):
                    raise
                delay = policy.get_delay(retry_count)
                retry_count += 1
                logger.warning(
                    "Payload for record %d not available yet (attempt %d/%d), retrying in %.2fs",
                    record_id, retry_count, policy.max_retries + 1, delay,
                )
                self.sleep(delay)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
