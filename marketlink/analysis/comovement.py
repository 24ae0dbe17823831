"""Co-movement pattern detection across price series.

Finds symbol pairs whose recent returns move together and groups them
into clusters of jointly moving symbols.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Sequence

import structlog

from marketlink.analysis.correlation import calculate_returns, pearson_correlation
from marketlink.analysis.errors import ValidationError

logger = structlog.get_logger()

DEFAULT_TIME_WINDOW = 30
DEFAULT_THRESHOLD = 0.7
PATTERN_LOOKBACK = 10


class CoMovementStrength(str, Enum):
    """Strength bucket of a co-moving pair."""

    VERY_STRONG = "very_strong"  # > 0.8
    STRONG = "strong"  # > 0.6
    MODERATE = "moderate"  # > 0.4
    WEAK = "weak"


class MovementPattern(str, Enum):
    """Recent joint direction of two price series."""

    BOTH_RISING = "both_rising"
    BOTH_FALLING = "both_falling"
    DIVERGING = "diverging"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class CoMovementPair:
    """Two symbols whose returns correlate above the threshold."""

    symbols: tuple[str, str]
    coefficient: float
    strength: CoMovementStrength
    pattern: MovementPattern

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbols": list(self.symbols),
            "coefficient": self.coefficient,
            "strength": self.strength.value,
            "pattern": self.pattern.value,
        }


@dataclass
class CoMovementCluster:
    """Symbols connected through co-moving pairs."""

    symbols: list[str]
    pairs: list[CoMovementPair] = field(default_factory=list)

    @property
    def average_coefficient(self) -> float:
        if not self.pairs:
            return 0.0
        return sum(p.coefficient for p in self.pairs) / len(self.pairs)

    @property
    def pattern(self) -> MovementPattern:
        """Most common pattern among member pairs (first seen wins ties)."""
        if not self.pairs:
            return MovementPattern.SIDEWAYS
        return Counter(p.pattern for p in self.pairs).most_common(1)[0][0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbols": list(self.symbols),
            "average_coefficient": self.average_coefficient,
            "pattern": self.pattern.value,
            "pairs": [p.to_dict() for p in self.pairs],
        }


def classify_strength(coefficient: float) -> CoMovementStrength:
    abs_val = abs(coefficient)
    if abs_val > 0.8:
        return CoMovementStrength.VERY_STRONG
    if abs_val > 0.6:
        return CoMovementStrength.STRONG
    if abs_val > 0.4:
        return CoMovementStrength.MODERATE
    return CoMovementStrength.WEAK


def calculate_trend(prices: Sequence[float]) -> float:
    """Relative change from first to last price; 0 for short or zero-based series."""
    if len(prices) < 2 or prices[0] == 0:
        return 0.0
    return (prices[-1] - prices[0]) / prices[0]


def identify_movement_pattern(
    prices_a: Sequence[float], prices_b: Sequence[float]
) -> MovementPattern:
    """Compare the trend of the last few prices of each series."""
    trend_a = calculate_trend(prices_a[-PATTERN_LOOKBACK:])
    trend_b = calculate_trend(prices_b[-PATTERN_LOOKBACK:])

    if trend_a > 0 and trend_b > 0:
        return MovementPattern.BOTH_RISING
    if trend_a < 0 and trend_b < 0:
        return MovementPattern.BOTH_FALLING
    if trend_a * trend_b < 0:
        return MovementPattern.DIVERGING
    return MovementPattern.SIDEWAYS


def price_correlation(
    prices_a: Sequence[float],
    prices_b: Sequence[float],
    time_window: int = DEFAULT_TIME_WINDOW,
) -> float:
    """
    Pearson coefficient of simple returns over the last ``time_window`` prices.

    Raises:
        ValidationError: If either window contains a non-finite price
    """
    returns_a = calculate_returns(prices_a[-time_window:])
    returns_b = calculate_returns(prices_b[-time_window:])
    n = min(len(returns_a), len(returns_b))
    if n < 2:
        return 0.0
    return pearson_correlation(returns_a[-n:], returns_b[-n:]).coefficient


def find_co_movement_patterns(
    price_data: Mapping[str, Sequence[float]],
    time_window: int = DEFAULT_TIME_WINDOW,
    threshold: float = DEFAULT_THRESHOLD,
) -> list[CoMovementCluster]:
    """
    Find clusters of symbols whose returns move together.

    Args:
        price_data: Price series per symbol, oldest first
        time_window: Number of most recent prices compared per pair
        threshold: Minimum return correlation for a pair to qualify

    Returns:
        Clusters ordered by average pair coefficient, strongest first

    Raises:
        ValidationError: If ``time_window`` is less than 2
    """
    if time_window < 2:
        raise ValidationError(f"time_window must be >= 2, got {time_window}")

    symbols = list(price_data)
    pairs: list[CoMovementPair] = []

    for i in range(len(symbols)):
        for j in range(i + 1, len(symbols)):
            a, b = symbols[i], symbols[j]
            try:
                coefficient = price_correlation(price_data[a], price_data[b], time_window)
            except ValidationError as e:
                logger.warning("Skipping pair", source=a, target=b, error=str(e))
                continue
            if coefficient > threshold:
                pairs.append(
                    CoMovementPair(
                        symbols=(a, b),
                        coefficient=coefficient,
                        strength=classify_strength(coefficient),
                        pattern=identify_movement_pattern(price_data[a], price_data[b]),
                    )
                )

    clusters = _group_pairs(pairs)
    clusters.sort(key=lambda c: c.average_coefficient, reverse=True)

    logger.info(
        "Detected co-movement patterns",
        symbols=len(symbols),
        pairs=len(pairs),
        clusters=len(clusters),
        time_window=time_window,
    )
    return clusters


def _group_pairs(pairs: list[CoMovementPair]) -> list[CoMovementCluster]:
    """Merge pairs that share a symbol into connected clusters."""
    cluster_of: dict[str, CoMovementCluster] = {}
    clusters: list[CoMovementCluster] = []

    for pair in pairs:
        a, b = pair.symbols
        cluster_a = cluster_of.get(a)
        cluster_b = cluster_of.get(b)

        if cluster_a is None and cluster_b is None:
            cluster = CoMovementCluster(symbols=[a, b])
            clusters.append(cluster)
        elif cluster_a is not None and cluster_b is not None and cluster_a is not cluster_b:
            cluster_a.symbols.extend(cluster_b.symbols)
            cluster_a.pairs.extend(cluster_b.pairs)
            clusters.remove(cluster_b)
            cluster = cluster_a
        else:
            cluster = cluster_a or cluster_b
            for symbol in (a, b):
                if symbol not in cluster.symbols:
                    cluster.symbols.append(symbol)

        cluster.pairs.append(pair)
        for symbol in cluster.symbols:
            cluster_of[symbol] = cluster

    return clusters
