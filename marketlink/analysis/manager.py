"""Relationship analysis orchestration.

Runs a set of entities through correlation and network analysis and turns
the results into ranked insights.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import structlog

from marketlink.analysis.correlation import (
    CorrelationAnalyzer,
    CorrelationMethod,
    CorrelationResult,
    MutualInformationResult,
)
from marketlink.analysis.entities import Entity
from marketlink.analysis.errors import ValidationError
from marketlink.analysis.network import (
    CentralityScores,
    Community,
    EdgeDirection,
    EdgeType,
    NetworkAnalyzer,
)
from marketlink.config import AnalysisSettings

logger = structlog.get_logger()


# ============================================================================
# Result Models
# ============================================================================


class InsightType(str, Enum):
    """Kinds of insight produced by an analysis run."""

    HIGH_CORRELATION = "high_correlation"
    CAUSALITY_DETECTED = "causality_detected"
    CENTRAL_NODE = "central_node"


class Importance(str, Enum):
    """How prominently an insight should be surfaced."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 1, "medium": 2, "high": 3}[self.value]


@dataclass(frozen=True)
class Insight:
    """A derived, human-readable finding about one or more entities."""

    insight_type: InsightType
    message: str
    importance: Importance
    related_entities: list[str]
    metric: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.insight_type.value,
            "message": self.message,
            "importance": self.importance.value,
            "related_entities": list(self.related_entities),
            "metric": self.metric,
        }


@dataclass(frozen=True)
class CausalityResult:
    """Outcome of an externally supplied causality test for one ordered pair."""

    causality_exists: bool
    confidence: float  # 0 to 1
    cause: str | None = None
    effect: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cause": self.cause,
            "effect": self.effect,
            "causality_exists": self.causality_exists,
            "confidence": self.confidence,
            "metadata": dict(self.metadata),
        }


# (cause values, effect values) -> CausalityResult
CausalityTest = Callable[[list[float], list[float]], CausalityResult]


@dataclass
class NetworkMetrics:
    """Graph-level results of one analysis run."""

    centrality: dict[str, CentralityScores]
    communities: list[Community]
    visualization: dict[str, list[dict[str, Any]]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "centrality": {k: v.to_dict() for k, v in self.centrality.items()},
            "communities": [c.to_dict() for c in self.communities],
            "visualization": self.visualization,
        }


@dataclass
class AnalysisResult:
    """Everything produced by one ``analyze_relationships`` call."""

    timestamp: datetime
    correlations: dict[str, CorrelationResult] = field(default_factory=dict)
    causalities: dict[str, CausalityResult] = field(default_factory=dict)
    mutual_information: dict[str, MutualInformationResult] = field(default_factory=dict)
    network_metrics: NetworkMetrics | None = None
    insights: list[Insight] = field(default_factory=list)
    entity_count: int = 0

    @property
    def significant_correlations(self) -> list[CorrelationResult]:
        return [c for c in self.correlations.values() if c.significant]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "entity_count": self.entity_count,
            "correlations": {k: v.to_dict() for k, v in self.correlations.items()},
            "causalities": {k: v.to_dict() for k, v in self.causalities.items()},
            "mutual_information": {
                k: v.to_dict() for k, v in self.mutual_information.items()
            },
            "network_metrics": (
                self.network_metrics.to_dict() if self.network_metrics else None
            ),
            "insights": [i.to_dict() for i in self.insights],
        }


@dataclass
class AnalysisOptions:
    """Per-call switches for ``analyze_relationships``."""

    include_correlation: bool = True
    include_causality: bool = True
    include_network: bool = True
    include_mutual_information: bool = False
    time_window: int | None = 30  # None compares full aligned series
    method: CorrelationMethod = CorrelationMethod.PEARSON
    community_threshold: float | None = None  # None uses the settings value

    @classmethod
    def from_settings(cls, settings: AnalysisSettings, **overrides: Any) -> "AnalysisOptions":
        options = cls(
            time_window=settings.time_window,
            community_threshold=settings.community_threshold,
        )
        return replace(options, **overrides)


def pair_key(source_id: str, target_id: str) -> str:
    return f"{source_id}-{target_id}"


def aligned_values(
    a: Entity, b: Entity, window: int | None = None
) -> tuple[list[float], list[float]]:
    """Values of two entities aligned on their common tail, then windowed."""
    if window is not None and window < 1:
        raise ValidationError(f"window must be >= 1, got {window}")
    values_a = a.values()
    values_b = b.values()
    n = min(len(values_a), len(values_b))
    if window is not None:
        n = min(n, window)
    return values_a[len(values_a) - n:], values_b[len(values_b) - n:]


def _check_unique_ids(entities: Sequence[Entity]) -> None:
    seen: set[str] = set()
    duplicates = []
    for entity in entities:
        if entity.id in seen and entity.id not in duplicates:
            duplicates.append(entity.id)
        seen.add(entity.id)
    if duplicates:
        raise ValidationError(f"Duplicate entity ids: {', '.join(duplicates)}")


# ============================================================================
# Relationship Analysis Manager
# ============================================================================


class RelationshipAnalysisManager:
    """
    Orchestrates correlation and network analysis over a set of entities.

    Each run builds its own NetworkAnalyzer; the latest run's graph and
    result stay available for later retrieval. Overlapping runs on the same
    instance are not supported; use one manager per concurrent analysis.
    """

    LATEST = "latest"

    def __init__(
        self,
        settings: AnalysisSettings | None = None,
        causality_test: CausalityTest | None = None,
    ):
        self.settings = settings or AnalysisSettings()
        self.causality_test = causality_test
        self.correlation_analyzer = CorrelationAnalyzer(
            significance_level=self.settings.significance_level,
            bins=self.settings.mutual_information_bins,
        )
        self._network: NetworkAnalyzer | None = None
        self._results: dict[str, AnalysisResult] = {}

    @property
    def network(self) -> NetworkAnalyzer | None:
        """Graph built by the most recent run with network analysis enabled."""
        return self._network

    # ========================================================================
    # Full Analysis
    # ========================================================================

    def analyze_relationships(
        self,
        entities: Sequence[Entity],
        options: AnalysisOptions | None = None,
        label: str | None = None,
    ) -> AnalysisResult:
        """
        Run correlation, causality and network analysis over ``entities``.

        Entities without a time series take part in the graph but not in
        pairwise comparisons. An empty entity list yields an empty result.

        Args:
            entities: Entities to analyze
            options: Per-call switches; defaults come from the settings
            label: Extra key to store the result under besides "latest"

        Returns:
            AnalysisResult with correlations, network metrics and insights

        Raises:
            ValidationError: If two entities share an id or the time window
                is less than 1
        """
        if options is None:
            options = AnalysisOptions.from_settings(self.settings)

        logger.info(
            "Starting relationship analysis",
            entities=len(entities),
            method=options.method.value,
            time_window=options.time_window,
        )

        result = AnalysisResult(
            timestamp=datetime.now(UTC),
            entity_count=len(entities),
        )

        try:
            _check_unique_ids(entities)
            if options.time_window is not None and options.time_window < 1:
                raise ValidationError(
                    f"time_window must be >= 1, got {options.time_window}"
                )

            if options.include_correlation:
                result.correlations = self.analyze_correlations(
                    entities, options.method, options.time_window
                )

            if options.include_mutual_information:
                result.mutual_information = self.analyze_mutual_information(
                    entities, options.time_window
                )

            if options.include_causality and self.causality_test is not None:
                result.causalities = self.analyze_causalities(
                    entities, options.time_window
                )

            if options.include_network:
                result.network_metrics = self.analyze_network(
                    entities, result.correlations, options.community_threshold
                )

            result.insights = self.generate_insights(result, entities)
        except Exception as e:
            logger.error("Relationship analysis failed", error=str(e))
            raise

        self._results[self.LATEST] = result
        if label is not None:
            self._results[label] = result

        logger.info(
            "Relationship analysis complete",
            correlations=len(result.correlations),
            significant=len(result.significant_correlations),
            communities=(
                len(result.network_metrics.communities)
                if result.network_metrics
                else 0
            ),
            insights=len(result.insights),
        )
        return result

    # ========================================================================
    # Pairwise Analysis
    # ========================================================================

    def analyze_correlations(
        self,
        entities: Sequence[Entity],
        method: CorrelationMethod = CorrelationMethod.PEARSON,
        time_window: int | None = None,
    ) -> dict[str, CorrelationResult]:
        """Correlate every unordered pair of entities that carry a series."""
        series = [e for e in entities if e.has_time_series]
        correlations: dict[str, CorrelationResult] = {}

        for i in range(len(series)):
            for j in range(i + 1, len(series)):
                a, b = series[i], series[j]
                x, y = aligned_values(a, b, time_window)
                try:
                    corr = self.correlation_analyzer.correlate(x, y, method)
                except ValidationError as e:
                    logger.warning(
                        "Skipping pair", source=a.id, target=b.id, error=str(e)
                    )
                    continue
                correlations[pair_key(a.id, b.id)] = replace(
                    corr, source_id=a.id, target_id=b.id
                )

        return correlations

    def analyze_mutual_information(
        self,
        entities: Sequence[Entity],
        time_window: int | None = None,
    ) -> dict[str, MutualInformationResult]:
        """Mutual information for every unordered pair of entities with series."""
        series = [e for e in entities if e.has_time_series]
        results: dict[str, MutualInformationResult] = {}

        for i in range(len(series)):
            for j in range(i + 1, len(series)):
                a, b = series[i], series[j]
                x, y = aligned_values(a, b, time_window)
                try:
                    results[pair_key(a.id, b.id)] = (
                        self.correlation_analyzer.mutual_information(x, y)
                    )
                except ValidationError as e:
                    logger.warning(
                        "Skipping pair", source=a.id, target=b.id, error=str(e)
                    )

        return results

    def analyze_causalities(
        self,
        entities: Sequence[Entity],
        time_window: int | None = None,
    ) -> dict[str, CausalityResult]:
        """Run the configured causality test over every ordered pair with series."""
        if self.causality_test is None:
            return {}

        series = [e for e in entities if e.has_time_series]
        causalities: dict[str, CausalityResult] = {}

        for cause in series:
            for effect in series:
                if cause.id == effect.id:
                    continue
                x, y = aligned_values(cause, effect, time_window)
                try:
                    outcome = self.causality_test(x, y)
                except Exception as e:
                    logger.warning(
                        "Causality test failed",
                        cause=cause.id,
                        effect=effect.id,
                        error=str(e),
                    )
                    continue
                causalities[f"{cause.id}->{effect.id}"] = replace(
                    outcome, cause=cause.id, effect=effect.id
                )

        return causalities

    # ========================================================================
    # Network Analysis
    # ========================================================================

    def build_network(
        self,
        entities: Sequence[Entity],
        correlations: dict[str, CorrelationResult],
    ) -> NetworkAnalyzer:
        """Graph with a node per entity and an edge per significant correlation."""
        network = NetworkAnalyzer(
            strict=self.settings.strict_nodes,
            eigenvector_iterations=self.settings.eigenvector_iterations,
            community_threshold=self.settings.community_threshold,
        )
        for entity in entities:
            network.add_entity(entity)

        for corr in correlations.values():
            if corr.source_id is None or corr.target_id is None:
                continue
            if corr.significant and abs(corr.coefficient) > self.settings.edge_min_coefficient:
                network.add_edge(
                    corr.source_id,
                    corr.target_id,
                    edge_type=EdgeType.CORRELATION,
                    weight=abs(corr.coefficient),
                    strength=corr.coefficient,
                    direction=EdgeDirection.UNDIRECTED,
                    metadata={"p_value": corr.p_value, "method": corr.method.value},
                )

        logger.info(
            "Network built",
            nodes=network.node_count,
            edges=network.edge_count,
        )
        return network

    def analyze_network(
        self,
        entities: Sequence[Entity],
        correlations: dict[str, CorrelationResult],
        community_threshold: float | None = None,
    ) -> NetworkMetrics:
        network = self.build_network(entities, correlations)
        self._network = network
        return NetworkMetrics(
            centrality=network.calculate_centrality(),
            communities=network.detect_communities(community_threshold),
            visualization=network.to_visualization(),
        )

    # ========================================================================
    # Insights
    # ========================================================================

    def generate_insights(
        self,
        result: AnalysisResult,
        entities: Sequence[Entity] = (),
    ) -> list[Insight]:
        """Derive insights from a result, most important first."""
        names = {e.id: e.name for e in entities}
        insights: list[Insight] = []

        for corr in result.correlations.values():
            if corr.significant and abs(corr.coefficient) > self.settings.high_correlation_threshold:
                source = names.get(corr.source_id, corr.source_id)
                target = names.get(corr.target_id, corr.target_id)
                insights.append(
                    Insight(
                        insight_type=InsightType.HIGH_CORRELATION,
                        message=(
                            f"{source} and {target} show a "
                            f"{corr.interpretation.label} ({corr.coefficient * 100:.1f}%)"
                        ),
                        importance=Importance.HIGH,
                        related_entities=[corr.source_id, corr.target_id],
                        metric=corr.coefficient,
                    )
                )

        for causal in result.causalities.values():
            if (
                causal.causality_exists
                and causal.confidence > self.settings.causality_confidence_threshold
            ):
                cause = names.get(causal.cause, causal.cause)
                effect = names.get(causal.effect, causal.effect)
                insights.append(
                    Insight(
                        insight_type=InsightType.CAUSALITY_DETECTED,
                        message=(
                            f"{cause} appears to causally influence {effect} "
                            f"(confidence: {causal.confidence * 100:.1f}%)"
                        ),
                        importance=Importance.HIGH,
                        related_entities=[causal.cause, causal.effect],
                        metric=causal.confidence,
                    )
                )

        if result.network_metrics is not None:
            ranked = sorted(
                result.network_metrics.centrality.items(),
                key=lambda item: item[1].degree,
                reverse=True,
            )[: self.settings.central_node_top_n]
            for node_id, scores in ranked:
                if scores.degree > self.settings.central_node_threshold:
                    insights.append(
                        Insight(
                            insight_type=InsightType.CENTRAL_NODE,
                            message=(
                                f"{names.get(node_id, node_id)} plays a central role "
                                f"in the network (centrality: {scores.degree * 100:.1f}%)"
                            ),
                            importance=Importance.MEDIUM,
                            related_entities=[node_id],
                            metric=scores.degree,
                        )
                    )

        insights.sort(key=lambda i: i.importance.rank, reverse=True)
        return insights

    # ========================================================================
    # Stored Results
    # ========================================================================

    def get_analysis_results(self, key: str = LATEST) -> AnalysisResult | None:
        return self._results.get(key)

    def get_all_results(self) -> list[tuple[str, AnalysisResult]]:
        return list(self._results.items())
