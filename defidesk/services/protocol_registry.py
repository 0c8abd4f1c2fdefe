"""Protocol registry: which venues serve which intents.

Also home of ``has_protocol_choice``, the one predicate both the parameter
validator and the disambiguation engine use to decide whether the user should
be asked to pick a protocol.
"""
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence

from defidesk.core.error_codes import ErrorCode, ProtocolResolutionError
from defidesk.core.logging import get_logger
from defidesk.processing.schemas import DefiIntent, Position

logger = get_logger(__name__)

# Canonical protocol ids (lowercase) -> display names
PROTOCOL_NAMES: Dict[str, str] = {
    "dragonswap": "DragonSwap",
    "symphony": "Symphony",
    "citrex": "Citrex",
    "silo": "Silo",
    "takara": "Takara",
}

PROTOCOL_ALIASES: Dict[str, str] = {
    "dragon": "dragonswap",
    "ds": "dragonswap",
    "sym": "symphony",
    "ctx": "citrex",
    "tkr": "takara",
    "silofinance": "silo",
}

PROTOCOLS_BY_INTENT: Dict[DefiIntent, List[str]] = {
    DefiIntent.LEND: ["Silo", "Takara"],
    DefiIntent.BORROW: ["Silo", "Takara"],
    DefiIntent.SWAP: ["DragonSwap", "Symphony"],
    DefiIntent.ADD_LIQUIDITY: ["DragonSwap", "Symphony"],
    DefiIntent.REMOVE_LIQUIDITY: ["DragonSwap", "Symphony"],
    DefiIntent.OPEN_POSITION: ["Citrex"],
    DefiIntent.CLOSE_POSITION: ["Citrex"],
}

PROTOCOL_DESCRIPTIONS: Dict[str, Dict[DefiIntent, str]] = {
    "Silo": {
        DefiIntent.LEND: "Conservative lending with isolated markets",
        DefiIntent.BORROW: "Secure borrowing with risk isolation",
    },
    "Takara": {
        DefiIntent.LEND: "Competitive rates with auto-compounding",
        DefiIntent.BORROW: "Flexible borrowing options",
    },
    "DragonSwap": {
        DefiIntent.SWAP: "Popular DEX with good liquidity",
        DefiIntent.ADD_LIQUIDITY: "Earn fees providing liquidity",
    },
    "Symphony": {
        DefiIntent.SWAP: "Advanced DEX with concentrated liquidity",
        DefiIntent.ADD_LIQUIDITY: "Higher capital efficiency",
    },
    "Citrex": {
        DefiIntent.OPEN_POSITION: "Perpetual trading with leverage",
    },
}


def available_protocols(intent: DefiIntent) -> List[str]:
    return list(PROTOCOLS_BY_INTENT.get(intent, []))


def requires_protocol(intent: DefiIntent) -> bool:
    return intent in PROTOCOLS_BY_INTENT


def is_valid_protocol(name: Optional[str]) -> bool:
    return bool(name) and str(name).lower() in PROTOCOL_NAMES


def resolve_protocol(name: str) -> str:
    """Map user text ("Dragon Swap", "DS", "silo") to a canonical protocol id.

    Raises:
        ProtocolResolutionError: when the name matches no supported protocol
    """
    key = re.sub(r"[^a-z0-9]", "", (name or "").lower())
    if key in PROTOCOL_NAMES:
        return key
    if key in PROTOCOL_ALIASES:
        return PROTOCOL_ALIASES[key]
    raise ProtocolResolutionError(
        ErrorCode.PROTOCOL_NOT_FOUND,
        f"Unknown protocol: {name}",
        details={"input": name, "supported": sorted(PROTOCOL_NAMES)},
    )


def protocol_description(protocol: str, intent: DefiIntent) -> str:
    return PROTOCOL_DESCRIPTIONS.get(protocol, {}).get(intent, f"Use {protocol} protocol")


def most_used_protocol(positions: Sequence[Position]) -> Optional[str]:
    """Protocol appearing in the most positions (first seen wins ties)."""
    if not positions:
        return None
    counts = Counter(p.protocol for p in positions)
    return counts.most_common(1)[0][0]


def has_protocol_choice(
    intent: DefiIntent,
    protocol_specified: bool,
    positions: Optional[Sequence[Position]] = None,
) -> bool:
    """True when the user should pick between several viable protocols.

    That is the case when more than one viable protocol appears in the position
    history, or when more than two protocols are viable at all.
    """
    if protocol_specified:
        return False

    viable = available_protocols(intent)
    if positions and len(viable) > 1:
        used = {p.protocol.lower() for p in positions}
        if sum(1 for p in viable if p.lower() in used) > 1:
            return True

    return len(viable) > 2
