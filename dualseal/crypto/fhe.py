# dualseal/crypto/fhe.py
"""
Homomorphic-encryption capability and the fingerprint encryptor built on it.

The capability is an external collaborator: encrypt a 32-bit integer for a
(ledger address, identity) pair, and later decrypt it only for identities that
were explicitly granted access. LocalFheCapability is an in-process stand-in
with the same contract, suitable for tests and single-host deployments. It does
not compute on ciphertexts; nothing in this system needs it to.
"""

import hashlib
import hmac
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import List

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from dualseal.core.encoding import b64url_decode, b64url_encode, hex_prefixed
from dualseal.core.errors import AccessDenied, BlobNotFound, InvalidInputProof
from dualseal.core.types import EncryptedInput
from dualseal.crypto.keys import IdentityKeyPair
from dualseal.storage import StorageBackend

logger = logging.getLogger(__name__)

UINT32_MAX = 2**32 - 1

FHE_NAMESPACE = "fhe"
FHE_KEY_NAMESPACE = "fhe-keys"


def decryption_request(handle: str) -> bytes:
    """Message a requestor signs to prove control of the identity asking for plaintext."""
    return f"dualseal-decrypt:{handle}".encode("utf-8")


class HomomorphicCapability(ABC):

    @abstractmethod
    def encrypt(self, value: int, contract: str, identity: str) -> EncryptedInput:
        pass

    @abstractmethod
    def accept_input(self, handle: str, proof: str, contract: str, identity: str) -> str:
        """
        Ledger-side acceptance of an encrypted input; grants the contract itself
        access. A handle is accepted at most once.
        """
        pass

    @abstractmethod
    def allow_access(self, handle: str, identity: str) -> None:
        """Additive and irreversible."""
        pass

    @abstractmethod
    def decrypt(self, handle: str, requestor: IdentityKeyPair) -> int:
        pass

    @abstractmethod
    def has_access(self, handle: str, identity: str) -> bool:
        pass


class LocalFheCapability(HomomorphicCapability):
    """
    Ciphertexts are AES-256-GCM encryptions of the 4-byte big-endian value under
    a capability master key; proofs are HMAC-SHA256 tags over (handle, contract,
    identity). Each handle's entry holds its ciphertext and access list.
    """

    def __init__(self, storage: StorageBackend, master_key: bytes | None = None):
        self.storage = storage
        self._lock = threading.Lock()
        self._master_key = master_key or self._load_or_create_master_key()
        if len(self._master_key) != 32:
            raise ValueError("FHE master key must be exactly 32 bytes")

    def _load_or_create_master_key(self) -> bytes:
        try:
            return self.storage.get(FHE_KEY_NAMESPACE, "master")
        except BlobNotFound:
            key = os.urandom(32)
            self.storage.put(FHE_KEY_NAMESPACE, "master", key)
            logger.info("Generated new capability master key")
            return key

    def _proof_for(self, handle: str, contract: str, identity: str) -> bytes:
        msg = f"{handle}|{contract.lower()}|{identity.lower()}".encode("utf-8")
        return hmac.new(self._master_key, msg, hashlib.sha256).digest()

    def _load(self, handle: str) -> dict:
        try:
            return json.loads(self.storage.get(FHE_NAMESPACE, handle))
        except BlobNotFound:
            raise AccessDenied(f"Unknown ciphertext handle {handle}") from None

    def _save(self, handle: str, entry: dict) -> None:
        self.storage.put(FHE_NAMESPACE, handle, json.dumps(entry, sort_keys=True).encode("utf-8"))

    def encrypt(self, value: int, contract: str, identity: str) -> EncryptedInput:
        if not 0 <= value <= UINT32_MAX:
            raise ValueError(f"Value {value} does not fit in an unsigned 32-bit integer")

        handle = hex_prefixed(os.urandom(32))
        nonce = os.urandom(12)
        ct = AESGCM(self._master_key).encrypt(nonce, value.to_bytes(4, "big"), handle.encode("ascii"))
        entry = {
            "ciphertext": b64url_encode(nonce + ct),
            "contract": contract,
            "acl": [],
        }
        with self._lock:
            self._save(handle, entry)

        return EncryptedInput(handle=handle, proof=b64url_encode(self._proof_for(handle, contract, identity)))

    def accept_input(self, handle: str, proof: str, contract: str, identity: str) -> str:
        try:
            given = b64url_decode(proof)
        except ValueError:
            raise InvalidInputProof("Input proof is not valid base64url") from None
        if not hmac.compare_digest(given, self._proof_for(handle, contract, identity)):
            raise InvalidInputProof("Input proof does not match handle, contract and sender")

        with self._lock:
            try:
                entry = self._load(handle)
            except AccessDenied:
                raise InvalidInputProof(f"Unknown ciphertext handle {handle}") from None
            if entry["contract"] != contract:
                raise InvalidInputProof("Ciphertext was encrypted for a different contract")
            if contract in entry["acl"]:
                raise InvalidInputProof(f"Ciphertext {handle[:18]} was already accepted")
            self._grant(entry, contract)
            self._save(handle, entry)
        return handle

    @staticmethod
    def _grant(entry: dict, identity: str) -> None:
        if identity not in entry["acl"]:
            entry["acl"].append(identity)

    def allow_access(self, handle: str, identity: str) -> None:
        with self._lock:
            entry = self._load(handle)
            self._grant(entry, identity)
            self._save(handle, entry)
        logger.info("Granted %s access to %s", identity, handle[:18])

    def has_access(self, handle: str, identity: str) -> bool:
        try:
            return identity in self._load(handle)["acl"]
        except AccessDenied:
            return False

    def access_list(self, handle: str) -> List[str]:
        return list(self._load(handle)["acl"])

    def decrypt(self, handle: str, requestor: IdentityKeyPair) -> int:
        # The requestor signs the request; a bare address claim is not enough.
        request = decryption_request(handle)
        try:
            signature = requestor.sign_bytes(request)
        except ValueError:
            raise AccessDenied("Decryption requires the identity's private key") from None
        if not requestor.verify_bytes(signature, request):
            raise AccessDenied("Decryption request signature did not verify")

        entry = self._load(handle)
        if requestor.address not in entry["acl"]:
            raise AccessDenied(f"{requestor.address} has no access to {handle}")

        raw = b64url_decode(entry["ciphertext"])
        try:
            value = AESGCM(self._master_key).decrypt(raw[:12], raw[12:], handle.encode("ascii"))
        except InvalidTag:
            raise AccessDenied(f"Ciphertext for {handle} failed authentication") from None
        return int.from_bytes(value, "big")


class FingerprintEncryptor:
    """
    Wraps the capability for the fingerprint's two client-side uses.
    Grants are deliberately absent: only RecordStore.finalize may grant access.
    """

    def __init__(self, capability: HomomorphicCapability, ledger_address: str):
        self.capability = capability
        self.ledger_address = ledger_address

    def encrypt_for_ledger(self, value: int, encryptor: str) -> EncryptedInput:
        return self.capability.encrypt(value, self.ledger_address, encryptor)

    def decrypt_for_identity(self, handle: str, requestor: IdentityKeyPair) -> int:
        return self.capability.decrypt(handle, requestor)
