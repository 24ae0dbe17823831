"""Pairwise statistical association between numeric series.

Implements:
- Pearson and Spearman correlation with a bucketed t-statistic p-value
- Rank transformation with average ranks for ties
- Mutual information over equal-width binned series
- Fixed-cutoff interpretation of coefficient strength
"""

import math
from collections import Counter
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Sequence

from marketlink.analysis.errors import ValidationError

DEFAULT_SIGNIFICANCE_LEVEL = 0.05
DEFAULT_BINS = 10


# ============================================================================
# Correlation Types and Models
# ============================================================================


class CorrelationMethod(str, Enum):
    """Correlation coefficient used for a comparison."""

    PEARSON = "pearson"
    SPEARMAN = "spearman"


class Interpretation(str, Enum):
    """Qualitative strength of an association."""

    VERY_STRONG = "very_strong"  # >= 0.8
    STRONG = "strong"  # 0.6 <= x < 0.8
    MODERATE = "moderate"  # 0.4 <= x < 0.6
    WEAK = "weak"  # 0.2 <= x < 0.4
    NONE = "none"  # < 0.2

    @property
    def label(self) -> str:
        """Human-readable label used in insight messages."""
        if self is Interpretation.NONE:
            return "no correlation"
        return f"{self.value.replace('_', ' ')} correlation"


@dataclass(frozen=True)
class CorrelationResult:
    """Outcome of comparing two series."""

    coefficient: float = 0.0  # -1 to 1
    p_value: float = 1.0  # bucketed approximation, lower = more significant
    significant: bool = False
    sample_size: int = 0
    method: CorrelationMethod = CorrelationMethod.PEARSON
    interpretation: Interpretation = Interpretation.NONE

    # Set when the comparison was made between two named entities
    source_id: str | None = None
    target_id: str | None = None

    @property
    def direction(self) -> str:
        """Get correlation direction."""
        if self.coefficient > 0:
            return "positive"
        if self.coefficient < 0:
            return "negative"
        return "none"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["method"] = self.method.value
        data["interpretation"] = self.interpretation.value
        return data


@dataclass(frozen=True)
class MutualInformationResult:
    """Mutual information between two binned series, in bits."""

    mutual_information: float = 0.0  # >= 0
    normalized_mi: float = 0.0  # 0 to 1
    interpretation: Interpretation = Interpretation.NONE
    bins: int = DEFAULT_BINS
    sample_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["interpretation"] = self.interpretation.value
        return data


# ============================================================================
# Statistical Functions
# ============================================================================


def interpret_correlation(value: float) -> Interpretation:
    """Classify an association strength using fixed cutoffs on |value|."""
    abs_val = abs(value)
    if abs_val >= 0.8:
        return Interpretation.VERY_STRONG
    if abs_val >= 0.6:
        return Interpretation.STRONG
    if abs_val >= 0.4:
        return Interpretation.MODERATE
    if abs_val >= 0.2:
        return Interpretation.WEAK
    return Interpretation.NONE


def approximate_p_value(t_stat: float) -> float:
    """
    Map a t-statistic to a coarse two-sided p-value.

    This is a bucketed lookup, not a Student's t CDF; degrees of freedom
    are ignored.
    """
    abs_t = abs(t_stat)
    if abs_t > 3:
        return 0.001
    if abs_t > 2.5:
        return 0.01
    if abs_t > 2:
        return 0.05
    if abs_t > 1.5:
        return 0.1
    return 0.2


def _check_pair(x: Sequence[float], y: Sequence[float]) -> None:
    if len(x) != len(y):
        raise ValidationError(
            f"Series lengths differ ({len(x)} != {len(y)})"
        )
    for value in (*x, *y):
        if not math.isfinite(value):
            raise ValidationError(f"Series contains a non-finite value: {value}")


def _neutral(n: int, method: CorrelationMethod) -> CorrelationResult:
    return CorrelationResult(
        coefficient=0.0,
        p_value=1.0,
        significant=False,
        sample_size=n,
        method=method,
        interpretation=Interpretation.NONE,
    )


def pearson_correlation(
    x: Sequence[float],
    y: Sequence[float],
    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL,
    method: CorrelationMethod = CorrelationMethod.PEARSON,
) -> CorrelationResult:
    """
    Calculate the Pearson correlation coefficient and approximate p-value.

    Args:
        x: First data series
        y: Second data series, same length as ``x``
        significance_level: p-value below which the result is significant
        method: Method recorded on the result (Spearman reuses this on ranks)

    Returns:
        CorrelationResult; a neutral result (r=0, p=1) for fewer than two
        points or a constant series

    Raises:
        ValidationError: If the series lengths differ or contain NaN/inf
    """
    _check_pair(x, y)

    n = len(x)
    if n < 2 or len(set(x)) == 1 or len(set(y)) == 1:
        return _neutral(n, method)

    mean_x = sum(x) / n
    mean_y = sum(y) / n

    numerator = 0.0
    sum_xx = 0.0
    sum_yy = 0.0
    for xi, yi in zip(x, y):
        dx = xi - mean_x
        dy = yi - mean_y
        numerator += dx * dy
        sum_xx += dx * dx
        sum_yy += dy * dy

    denominator = math.sqrt(sum_xx * sum_yy)
    if denominator == 0:
        return _neutral(n, method)

    r = max(-1.0, min(1.0, numerator / denominator))

    df = n - 2
    if df <= 0:
        t_stat = 0.0
    elif 1 - r * r <= 0:
        t_stat = math.copysign(math.inf, r)
    else:
        t_stat = r * math.sqrt(df / (1 - r * r))
    p_value = approximate_p_value(t_stat)

    return CorrelationResult(
        coefficient=r,
        p_value=p_value,
        significant=p_value < significance_level,
        sample_size=n,
        method=method,
        interpretation=interpret_correlation(r),
    )


def spearman_correlation(
    x: Sequence[float],
    y: Sequence[float],
    significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL,
) -> CorrelationResult:
    """Calculate Spearman rank correlation (Pearson on average ranks)."""
    _check_pair(x, y)
    return pearson_correlation(
        _rank_data(x),
        _rank_data(y),
        significance_level=significance_level,
        method=CorrelationMethod.SPEARMAN,
    )


def _rank_data(data: Sequence[float]) -> list[float]:
    """Convert data to ranks (1-based, handling ties with average rank)."""
    n = len(data)
    sorted_indices = sorted(range(n), key=lambda i: data[i])
    ranks = [0.0] * n

    i = 0
    while i < n:
        j = i
        while j < n - 1 and data[sorted_indices[j]] == data[sorted_indices[j + 1]]:
            j += 1
        avg_rank = (i + j + 2) / 2  # +2 because ranks are 1-based
        for k in range(i, j + 1):
            ranks[sorted_indices[k]] = avg_rank
        i = j + 1

    return ranks


def bin_data(data: Sequence[float], bins: int = DEFAULT_BINS) -> list[int]:
    """
    Discretize values into ``bins`` equal-width buckets over [min, max].

    The last bucket is closed so that ``max`` falls inside it. A constant
    series lands entirely in bucket 0.
    """
    if bins < 1:
        raise ValidationError(f"bins must be >= 1, got {bins}")
    if not data:
        return []

    low = min(data)
    high = max(data)
    width = (high - low) / bins
    if width == 0:
        return [0] * len(data)

    return [min(max(math.floor((value - low) / width), 0), bins - 1) for value in data]


def shannon_entropy(counts: Sequence[int], total: int) -> float:
    """Shannon entropy in bits of a frequency table."""
    entropy = 0.0
    for count in counts:
        if count > 0:
            p = count / total
            entropy -= p * math.log2(p)
    return entropy


def mutual_information(
    x: Sequence[float],
    y: Sequence[float],
    bins: int = DEFAULT_BINS,
) -> MutualInformationResult:
    """
    Calculate mutual information between two continuous series.

    Both series are binned independently; MI sums only over cells with a
    nonzero joint probability and is normalized by min(H(x), H(y)).
    """
    _check_pair(x, y)
    if bins < 1:
        raise ValidationError(f"bins must be >= 1, got {bins}")

    n = len(x)
    if n == 0:
        return MutualInformationResult(bins=bins)

    x_binned = bin_data(x, bins)
    y_binned = bin_data(y, bins)

    joint_freq = Counter(zip(x_binned, y_binned))
    x_freq = Counter(x_binned)
    y_freq = Counter(y_binned)

    mi = 0.0
    for (x_bin, y_bin), count in joint_freq.items():
        p_xy = count / n
        p_x = x_freq[x_bin] / n
        p_y = y_freq[y_bin] / n
        mi += p_xy * math.log2(p_xy / (p_x * p_y))
    mi = max(0.0, mi)

    max_entropy = min(
        shannon_entropy(list(x_freq.values()), n),
        shannon_entropy(list(y_freq.values()), n),
    )
    normalized = min(1.0, mi / max_entropy) if max_entropy > 0 else 0.0

    return MutualInformationResult(
        mutual_information=mi,
        normalized_mi=normalized,
        interpretation=interpret_correlation(normalized),
        bins=bins,
        sample_size=n,
    )


def calculate_returns(prices: Sequence[float]) -> list[float]:
    """Simple period-over-period returns; a zero previous price yields 0."""
    returns = []
    for prev, curr in zip(prices, prices[1:]):
        returns.append((curr - prev) / prev if prev != 0 else 0.0)
    return returns


# ============================================================================
# Correlation Analyzer
# ============================================================================


class CorrelationAnalyzer:
    """
    Computes pairwise association between equal-length numeric series.

    Stateless apart from its configuration, so one instance can be shared
    across threads.
    """

    def __init__(
        self,
        significance_level: float = DEFAULT_SIGNIFICANCE_LEVEL,
        bins: int = DEFAULT_BINS,
    ):
        self.significance_level = significance_level
        self.bins = bins

    def pearson(self, x: Sequence[float], y: Sequence[float]) -> CorrelationResult:
        return pearson_correlation(x, y, significance_level=self.significance_level)

    def spearman(self, x: Sequence[float], y: Sequence[float]) -> CorrelationResult:
        return spearman_correlation(x, y, significance_level=self.significance_level)

    def correlate(
        self,
        x: Sequence[float],
        y: Sequence[float],
        method: CorrelationMethod = CorrelationMethod.PEARSON,
    ) -> CorrelationResult:
        """Dispatch to the requested correlation method."""
        if method is CorrelationMethod.SPEARMAN:
            return self.spearman(x, y)
        return self.pearson(x, y)

    def mutual_information(
        self,
        x: Sequence[float],
        y: Sequence[float],
        bins: int | None = None,
    ) -> MutualInformationResult:
        return mutual_information(x, y, bins=bins if bins is not None else self.bins)
