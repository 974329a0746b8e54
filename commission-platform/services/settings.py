"""
Engine configuration.

Settings are read from environment variables (a `.env` file in the project
directory is loaded first). Supabase credentials are read separately by
`repositories/client.py` and are only required when COMMISSION_STORE=supabase.

Environment variables:
- COMMISSION_STORE: "memory" (default) or "supabase"
- SPLIT_TOLERANCE: accepted deviation of split totals from 100 (default 0.01)
- REQUIRE_COMPLETE_EXPEDIENTE: reject payments while mandatory documents are missing (default false)
- HIDE_CANCELLED_SALE_HISTORY: return no payment history for cancelled sales (default false)
- PAYMENT_CONFLICT_RETRIES: attempts when balances move during a commit (default 3)
- LOG_LEVEL: logging level name (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

from domain.money import to_decimal

_TRUE_VALUES = ("true", "1", "t", "yes")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True, slots=True)
class EngineSettings:
    store_backend: str = "memory"
    split_tolerance: Decimal = Decimal("0.01")
    require_complete_expediente: bool = False
    hide_cancelled_sale_history: bool = False
    payment_conflict_retries: int = 3
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.store_backend not in ("memory", "supabase"):
            raise ValueError(f"Unknown COMMISSION_STORE: {self.store_backend!r}")
        if self.split_tolerance < 0:
            raise ValueError("SPLIT_TOLERANCE must be >= 0")
        if self.payment_conflict_retries < 1:
            raise ValueError("PAYMENT_CONFLICT_RETRIES must be >= 1")

    @staticmethod
    def from_env() -> "EngineSettings":
        env_path = Path(__file__).parent.parent / ".env"
        load_dotenv(dotenv_path=env_path)

        return EngineSettings(
            store_backend=os.getenv("COMMISSION_STORE", "memory").strip().lower(),
            split_tolerance=to_decimal(os.getenv("SPLIT_TOLERANCE", "0.01"), name="SPLIT_TOLERANCE"),
            require_complete_expediente=_env_flag("REQUIRE_COMPLETE_EXPEDIENTE", False),
            hide_cancelled_sale_history=_env_flag("HIDE_CANCELLED_SALE_HISTORY", False),
            payment_conflict_retries=int(os.getenv("PAYMENT_CONFLICT_RETRIES", "3")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    return EngineSettings.from_env()


__all__ = ["EngineSettings", "get_settings"]
