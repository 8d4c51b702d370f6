# dualseal/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def default_home() -> Path:
    return Path.home() / ".dualseal"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    key_dir: Path
    ledger_address: Optional[str] = None
    timeout: float = 10.0           # seconds per external call during reconciliation
    max_retries: int = 5            # payload-missing retries
    retry_base_delay: float = 0.2
    retry_max_delay: float = 5.0

    @classmethod
    def from_env(cls, db_flag: Optional[Path] = None) -> "Settings":
        """Resolve settings in this order:
        1. explicit flag (db only)
        2. DUALSEAL_* environment variables
        3. defaults under ~/.dualseal/
        """
        if db_flag:
            db_path = Path(db_flag).resolve()
        else:
            env_path = os.environ.get("DUALSEAL_DB_PATH")
            db_path = Path(env_path).resolve() if env_path else default_home() / "dualseal.db"

        key_env = os.environ.get("DUALSEAL_KEY_DIR")
        key_dir = Path(key_env).resolve() if key_env else default_home() / "keys"

        address = os.environ.get("DUALSEAL_LEDGER_ADDRESS") or None

        return cls(
            db_path=db_path,
            key_dir=key_dir,
            ledger_address=address.lower() if address else None,
            timeout=float(os.environ.get("DUALSEAL_TIMEOUT", "10")),
            max_retries=int(os.environ.get("DUALSEAL_MAX_RETRIES", "5")),
        )
