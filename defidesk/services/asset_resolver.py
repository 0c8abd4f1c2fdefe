"""Deterministic asset resolver.

Resolves free-text token references ("usdc", "Ethereum", "wrapped-sei",
"usdcc") to canonical catalog entries using a resolution chain:
1. Exact symbol match                      (confidence 1.0)
2. Alias match, case-insensitive           (confidence 0.95)
3. Fuzzy match on symbol and name          (similarity x0.9 / x0.8, containment 0.7)

The catalog is seeded at construction and never mutated, so one resolver
instance can serve any number of concurrent callers.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from defidesk.core.error_codes import AssetResolutionError, ErrorCode
from defidesk.core.logging import get_logger
from defidesk.core.result import Result

logger = get_logger(__name__)

SEI_CHAIN_ID = 1329

MATCH_EXACT = "exact"
MATCH_ALIAS = "alias"
MATCH_FUZZY = "fuzzy"
MATCH_PARTIAL = "partial"

# Raw similarity must clear this before the symbol/name weighting is applied
_FUZZY_FLOOR = 0.3
_SYMBOL_WEIGHT = 0.9
_NAME_WEIGHT = 0.8
_PARTIAL_SCORE = 0.7


class AssetResolverConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_fuzzy_score: float = 0.6
    max_suggestions: int = 5
    enable_fuzzy_matching: bool = True
    prefer_stablecoins: bool = False
    prefer_popular: bool = True


@dataclass(frozen=True)
class AssetInfo:
    """Read-only catalog entry."""
    symbol: str
    name: str
    decimals: int
    chain_id: int = SEI_CHAIN_ID
    is_stablecoin: bool = False
    is_wrapped: bool = False
    underlying: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    popularity: int = 0
    market_cap: Optional[float] = None
    daily_volume: Optional[float] = None
    price_usd: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "chain_id": self.chain_id,
            "is_stablecoin": self.is_stablecoin,
            "is_wrapped": self.is_wrapped,
            "underlying": self.underlying,
            "aliases": list(self.aliases),
            "tags": list(self.tags),
            "popularity": self.popularity,
            "market_cap": self.market_cap,
            "daily_volume": self.daily_volume,
            "price_usd": self.price_usd,
        }


@dataclass
class AssetResolutionResult:
    asset: AssetInfo
    confidence: float
    match_type: str
    alternatives: List[AssetInfo] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asset": self.asset.to_dict(),
            "confidence": self.confidence,
            "match_type": self.match_type,
            "alternatives": [a.symbol for a in self.alternatives],
            "suggestions": list(self.suggestions),
        }


@dataclass
class _FuzzyMatch:
    asset: AssetInfo
    score: float
    match_type: str


DEFAULT_ASSETS: Tuple[AssetInfo, ...] = (
    AssetInfo(
        symbol="SEI", name="Sei", decimals=6,
        aliases=("sei", "seinetwork"), tags=("native", "gas"),
        popularity=100, market_cap=1_000_000_000, daily_volume=50_000_000, price_usd=0.5,
    ),
    AssetInfo(
        symbol="WSEI", name="Wrapped SEI", decimals=6, is_wrapped=True, underlying="SEI",
        aliases=("wsei", "wrapped-sei"), tags=("wrapped", "defi"), popularity=90,
    ),
    AssetInfo(
        symbol="USDC", name="USD Coin", decimals=6, is_stablecoin=True,
        aliases=("usdc", "usd-coin", "dollar", "stable"), tags=("stablecoin", "defi"),
        popularity=95, market_cap=25_000_000_000, daily_volume=2_000_000_000, price_usd=1.0,
    ),
    AssetInfo(
        symbol="USDT", name="Tether USD", decimals=6, is_stablecoin=True,
        aliases=("usdt", "tether", "stable"), tags=("stablecoin", "defi"),
        popularity=85, market_cap=80_000_000_000, daily_volume=15_000_000_000, price_usd=1.0,
    ),
    AssetInfo(
        symbol="ETH", name="Ethereum", decimals=18,
        aliases=("eth", "ethereum", "ether"), tags=("major", "defi"),
        popularity=98, market_cap=200_000_000_000, daily_volume=8_000_000_000, price_usd=2000,
    ),
    AssetInfo(
        symbol="WETH", name="Wrapped Ethereum", decimals=18, is_wrapped=True, underlying="ETH",
        aliases=("weth", "wrapped-eth"), tags=("wrapped", "defi"), popularity=88,
    ),
    AssetInfo(
        symbol="BTC", name="Bitcoin", decimals=8,
        aliases=("btc", "bitcoin"), tags=("major", "store-of-value"),
        popularity=99, market_cap=500_000_000_000, daily_volume=10_000_000_000, price_usd=45000,
    ),
    AssetInfo(
        symbol="WBTC", name="Wrapped Bitcoin", decimals=8, is_wrapped=True, underlying="BTC",
        aliases=("wbtc", "wrapped-btc"), tags=("wrapped", "defi"), popularity=80,
    ),
    AssetInfo(
        symbol="ATOM", name="Cosmos", decimals=6,
        aliases=("atom", "cosmos"), tags=("cosmos", "ibc"),
        popularity=75, market_cap=3_000_000_000, daily_volume=150_000_000, price_usd=12,
    ),
    AssetInfo(
        symbol="OSMO", name="Osmosis", decimals=6,
        aliases=("osmo", "osmosis"), tags=("cosmos", "dex", "ibc"),
        popularity=70, market_cap=500_000_000, daily_volume=25_000_000, price_usd=1.5,
    ),
)


def _normalize_symbol(raw: str) -> str:
    """Strip everything but letters/digits and uppercase: " usd-coin " -> "USDCOIN"."""
    return re.sub(r"[^a-zA-Z0-9]", "", (raw or "").strip()).upper()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert/delete/substitute cost 1)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance/maxLen, in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class AssetResolver:
    """Resolves asset references against an immutable in-memory catalog."""

    def __init__(self, config: Optional[AssetResolverConfig] = None, assets: Optional[Tuple[AssetInfo, ...]] = None):
        self.config = config or AssetResolverConfig()
        catalog = assets if assets is not None else DEFAULT_ASSETS
        self._assets: Dict[str, AssetInfo] = {a.symbol.upper(): a for a in catalog}
        # alias (normalized) -> first asset declaring it
        self._aliases: Dict[str, AssetInfo] = {}
        for asset in catalog:
            for alias in asset.aliases:
                self._aliases.setdefault(_normalize_symbol(alias), asset)

    def resolve_asset(self, raw_input: str) -> Result[AssetResolutionResult]:
        """Resolve a user-typed asset reference to a catalog entry."""
        try:
            clean = _normalize_symbol(raw_input)
            if not clean:
                return Result.fail(AssetResolutionError(
                    ErrorCode.INVALID_ASSET_INPUT,
                    "Empty or invalid asset input",
                    details={"input": raw_input},
                ))

            exact = self._assets.get(clean)
            if exact:
                return Result.ok(AssetResolutionResult(asset=exact, confidence=1.0, match_type=MATCH_EXACT))

            alias = self._aliases.get(clean)
            if alias:
                return Result.ok(AssetResolutionResult(asset=alias, confidence=0.95, match_type=MATCH_ALIAS))

            if self.config.enable_fuzzy_matching:
                matches = self._find_fuzzy_matches(clean)
                if matches and matches[0].score >= self.config.min_fuzzy_score:
                    best = matches[0]
                    logger.debug("Fuzzy asset match %s -> %s (%.2f)", raw_input, best.asset.symbol, best.score)
                    return Result.ok(AssetResolutionResult(
                        asset=best.asset,
                        confidence=round(best.score, 4),
                        match_type=best.match_type,
                        alternatives=[m.asset for m in matches[1:self.config.max_suggestions]],
                        suggestions=[f"Did you mean {m.asset.symbol} ({m.asset.name})?" for m in matches[:3]],
                    ))

            logger.info("Asset not resolved: %s", raw_input)
            return Result.fail(AssetResolutionError(
                ErrorCode.ASSET_NOT_FOUND,
                f"Could not resolve asset: {raw_input}",
                details={"input": clean, "suggestions": self._suggestions_for_unknown(clean)},
            ))

        except Exception as e:
            logger.exception("Unexpected error during asset resolution")
            return Result.fail(AssetResolutionError(
                ErrorCode.ASSET_RESOLUTION_ERROR,
                "Unexpected error during asset resolution",
                details={"input": raw_input, "original_error": e},
            ))

    def get_asset_info(self, symbol: str) -> Optional[AssetInfo]:
        return self._assets.get((symbol or "").upper())

    def validate_asset_symbol(self, symbol: str) -> bool:
        return (symbol or "").upper() in self._assets

    def search_assets(
        self,
        query: Optional[str] = None,
        is_stablecoin: Optional[bool] = None,
        min_market_cap: Optional[float] = None,
        category: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[AssetInfo]:
        """Filter the catalog; sorted by popularity (if preferred) then market cap."""
        assets = list(self._assets.values())

        if query:
            q = query.lower()
            assets = [
                a for a in assets
                if q in a.symbol.lower() or q in a.name.lower() or any(q in alias.lower() for alias in a.aliases)
            ]
        if is_stablecoin is not None:
            assets = [a for a in assets if a.is_stablecoin == is_stablecoin]
        if min_market_cap is not None:
            assets = [a for a in assets if a.market_cap and a.market_cap >= min_market_cap]
        if category:
            assets = [a for a in assets if category.lower() in a.tags]

        if self.config.prefer_popular:
            assets.sort(key=lambda a: (-a.popularity, -(a.market_cap or 0)))
        else:
            assets.sort(key=lambda a: -(a.market_cap or 0))

        return assets[:limit or self.config.max_suggestions]

    def get_popular_assets(self, limit: int = 10) -> List[AssetInfo]:
        return sorted(self._assets.values(), key=lambda a: -a.popularity)[:limit]

    def get_stablecoins(self) -> List[AssetInfo]:
        return sorted((a for a in self._assets.values() if a.is_stablecoin), key=lambda a: -a.popularity)

    def get_asset_suggestions(self, partial: str, limit: int = 5) -> List[str]:
        """Autosuggest symbols whose symbol, name or alias starts with ``partial``."""
        p = (partial or "").lower()
        if not p:
            return []
        hits = [
            a for a in self._assets.values()
            if a.symbol.lower().startswith(p)
            or a.name.lower().startswith(p)
            or any(alias.lower().startswith(p) for alias in a.aliases)
        ]
        hits.sort(key=lambda a: -a.popularity)
        return [a.symbol for a in hits[:limit]]

    def _find_fuzzy_matches(self, clean: str) -> List[_FuzzyMatch]:
        needle = clean.lower()
        best: Dict[str, _FuzzyMatch] = {}

        def offer(asset: AssetInfo, score: float, match_type: str) -> None:
            current = best.get(asset.symbol)
            if current is None or score > current.score:
                best[asset.symbol] = _FuzzyMatch(asset, score, match_type)

        for asset in self._assets.values():
            symbol = asset.symbol.lower()
            name = _normalize_symbol(asset.name).lower()

            symbol_sim = similarity(needle, symbol)
            if symbol_sim > _FUZZY_FLOOR:
                offer(asset, symbol_sim * _SYMBOL_WEIGHT, MATCH_FUZZY)

            name_sim = similarity(needle, name)
            if name_sim > _FUZZY_FLOOR:
                offer(asset, name_sim * _NAME_WEIGHT, MATCH_FUZZY)

            if needle in symbol or needle in name:
                offer(asset, _PARTIAL_SCORE, MATCH_PARTIAL)

        return sorted(best.values(), key=lambda m: (-m.score, -m.asset.popularity))

    def _suggestions_for_unknown(self, clean: str) -> List[str]:
        suggestions = []
        if self.config.prefer_popular:
            suggestions.append("Try popular assets like USDC, SEI, or ETH")
        if "USD" in clean or "STABLE" in clean or self.config.prefer_stablecoins:
            suggestions.append("For stable value, consider USDC or USDT")
        suggestions.append("Check the spelling of the asset symbol")
        return suggestions
