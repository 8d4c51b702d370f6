# dualseal/crypto/keys.py
import hashlib
from pathlib import Path
from typing import Any, Optional
from uuid import uuid4

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from dualseal.core.canon import canonical_json
from dualseal.core.encoding import b64url_decode, b64url_encode, hex_prefixed
from dualseal.core.types import StateTransition


def address_from_public_bytes(public_bytes: bytes) -> str:
    """Ledger address: last 20 bytes of SHA-256 over the raw public key."""
    return hex_prefixed(hashlib.sha256(public_bytes).digest()[-20:])


class IdentityKeyPair:
    """
    Ed25519 identity of one party (initiator, counterparty or bystander).
    A verify-only instance (no private key) is built with from_public_b64url().
    """

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None,
                 public_key: Optional[Ed25519PublicKey] = None):
        if private_key is None and public_key is None:
            raise ValueError("Either a private or a public key is required")
        self._private_key = private_key
        self._public_key = public_key or private_key.public_key()

    @classmethod
    def generate(cls) -> "IdentityKeyPair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, key_bytes: bytes) -> "IdentityKeyPair":
        return cls(Ed25519PrivateKey.from_private_bytes(key_bytes))

    @classmethod
    def from_public_b64url(cls, public_b64: str) -> "IdentityKeyPair":
        return cls(public_key=Ed25519PublicKey.from_public_bytes(b64url_decode(public_b64)))

    @classmethod
    def load(cls, path: Path) -> "IdentityKeyPair":
        """Load a key file written by save(): raw private key as hex on one line."""
        return cls.from_private_bytes(bytes.fromhex(Path(path).read_text(encoding="ascii").strip()))

    def save(self, path: Path) -> None:
        if self._private_key is None:
            raise ValueError("Cannot save a verify-only identity")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        raw = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        path.write_text(raw.hex() + "\n", encoding="ascii")
        path.chmod(0o600)

    @property
    def public_bytes(self) -> bytes:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def public_key_b64url(self) -> str:
        return b64url_encode(self.public_bytes)

    @property
    def address(self) -> str:
        return address_from_public_bytes(self.public_bytes)

    def sign_bytes(self, data: bytes) -> bytes:
        if self._private_key is None:
            raise ValueError("Verify-only identity cannot sign")
        return self._private_key.sign(data)

    def verify_bytes(self, signature: bytes, data: bytes) -> bool:
        try:
            self._public_key.verify(signature, data)
            return True
        except InvalidSignature:
            return False

    def sign_transition(self, unsigned: StateTransition) -> StateTransition:
        """Returns a copy of the transition carrying this identity's signature."""
        if unsigned.sender_key != self.public_key_b64url():
            raise ValueError("Transition sender_key does not belong to this identity")
        sig = self.sign_bytes(canonical_json(unsigned.signing_payload()))
        return StateTransition(**{**unsigned.signing_payload(), "signature": b64url_encode(sig)})

    def transition(self, ledger: str, method: str, **params: Any) -> StateTransition:
        """Build and sign a call against the record store at `ledger`."""
        unsigned = StateTransition(
            ledger=ledger,
            method=method,
            params=params,
            sender_key=self.public_key_b64url(),
            nonce=uuid4().hex,
        )
        return self.sign_transition(unsigned)

    def __repr__(self):
        return f"IdentityKeyPair({self.address})"


def verify_transition(transition: StateTransition) -> str:
    """
    Check the transition's signature against its embedded public key.
    Returns the sender address; raises ValueError on a bad signature.
    """
    if not transition.signature:
        raise ValueError("Transition is not signed")
    signer = IdentityKeyPair.from_public_b64url(transition.sender_key)
    payload = canonical_json(transition.signing_payload())
    if not signer.verify_bytes(b64url_decode(transition.signature), payload):
        raise ValueError("Invalid transition signature")
    return signer.address
