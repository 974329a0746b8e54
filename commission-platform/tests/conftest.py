"""
Pytest configuration and shared fixtures.

Adds the commission-platform directory to the Python path so tests can import
domain, repositories, services and api, and provides an in-memory store with
a closed 100,000 USD / 5% sale split 70/30 between a seller and the house.
"""

import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.commission import Beneficiary, BeneficiaryRole  # noqa: E402
from domain.sale import Sale  # noqa: E402
from repositories.commission_store import InMemoryCommissionStore  # noqa: E402
from services.settings import EngineSettings  # noqa: E402
from services.share_builder import build_shares  # noqa: E402

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def store() -> InMemoryCommissionStore:
    return InMemoryCommissionStore()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def sale() -> Sale:
    return Sale.close(
        price=Decimal("100000"),
        commission_pct=Decimal("5"),
        currency="USD",
        closed_at=datetime(2025, 2, 20, 15, 0, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def seller_house_split():
    return [
        Beneficiary(BeneficiaryRole.SELLER, "agent-17", Decimal("70")),
        Beneficiary(BeneficiaryRole.HOUSE, "office-1", Decimal("30")),
    ]


@pytest.fixture
def built_sale(store, sale, seller_house_split, settings) -> Sale:
    """The sale with its two commission shares already persisted."""

    build_shares(store, sale, seller_house_split, settings=settings)
    return sale
