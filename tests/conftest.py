"""Shared pytest fixtures for the test suite.

Provides:
- Settings isolation (the singleton is rebuilt per test)
- Account contexts: balances, lending positions, allowances
- Entity builders for the command parser
"""
import sys
from pathlib import Path
from typing import List

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from defidesk.core.config import reset_settings
from defidesk.processing.schemas import EntityType, FinancialEntity, ParsingContext, Position


@pytest.fixture(autouse=True)
def _reset_settings_for_tests():
    """Reset settings singleton so per-test env vars take effect."""
    reset_settings()
    yield
    reset_settings()


# === CONTEXT FIXTURES ===

@pytest.fixture
def wallet_context() -> ParsingContext:
    """Wallet with balances and no positions."""
    return ParsingContext(
        user_address="0x" + "ab" * 20,
        balances={"USDC": "5000", "SEI": "20000", "ETH": "2"},
    )


@pytest.fixture
def lending_context() -> ParsingContext:
    """Wallet with 1000 of lending collateral on Silo."""
    return ParsingContext(
        user_address="0x" + "ab" * 20,
        balances={"USDC": "5000", "SEI": "100"},
        positions=[Position(protocol="silo", type="lending", value=1000.0)],
    )


@pytest.fixture
def multi_protocol_context() -> ParsingContext:
    """Positions on both lending venues."""
    return ParsingContext(
        balances={"USDC": "5000"},
        positions=[
            Position(protocol="silo", type="lending", value=1000.0),
            Position(protocol="takara", type="lending", value=500.0),
        ],
    )


# === ENTITY BUILDERS ===

def entity(entity_type: EntityType, value: str, normalized: str = None, confidence: float = 1.0) -> FinancialEntity:
    return FinancialEntity(
        type=entity_type,
        value=value,
        normalized=normalized if normalized is not None else value,
        confidence=confidence,
    )


def amount(value: str) -> FinancialEntity:
    return entity(EntityType.AMOUNT, value)


def token(value: str) -> FinancialEntity:
    return entity(EntityType.TOKEN, value)


def protocol(value: str) -> FinancialEntity:
    return entity(EntityType.PROTOCOL, value)


def leverage(value: str) -> FinancialEntity:
    return entity(EntityType.LEVERAGE, value)


def slippage(value: str) -> FinancialEntity:
    return entity(EntityType.SLIPPAGE, value)


def entities(*items: FinancialEntity) -> List[FinancialEntity]:
    return list(items)
