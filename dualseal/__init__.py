# dualseal/__init__.py
"""
dualseal — mutual-approval document exchange over a public, append-only ledger.
An encrypted integrity fingerprint lives on-ledger behind a two-step approval state machine;
the document itself is sealed with AES-GCM and kept off-ledger until both parties agree.
"""

__version__ = "0.1.0-dev"
