"""Tests for relationship analysis orchestration."""

import json

import pytest

from marketlink.analysis.correlation import CorrelationMethod
from marketlink.analysis.entities import EntityType, create_entity
from marketlink.analysis.errors import ValidationError
from marketlink.analysis.manager import (
    AnalysisOptions,
    AnalysisResult,
    CausalityResult,
    Importance,
    InsightType,
    RelationshipAnalysisManager,
    aligned_values,
    pair_key,
)
from marketlink.config import AnalysisSettings

# Pairwise r: A-B 0.945, A-C 0.964, B-C 0.885
RING_SERIES = {
    "A": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0],
    "B": [2.0, 1.0, 4.0, 3.0, 6.0, 5.0, 8.0, 7.0, 10.0, 9.0],
    "C": [1.0, 3.0, 2.0, 4.0, 6.0, 5.0, 7.0, 9.0, 8.0, 10.0],
}


@pytest.fixture
def manager():
    return RelationshipAnalysisManager()


@pytest.fixture
def linear_pair():
    return [
        create_entity("A", values=[1.0, 2.0, 3.0, 4.0, 5.0], name="Alpha"),
        create_entity("B", values=[2.0, 4.0, 6.0, 8.0, 10.0], name="Beta"),
    ]


@pytest.fixture
def ring_entities():
    return [create_entity(entity_id, values=values) for entity_id, values in RING_SERIES.items()]


class TestHelpers:
    """Tests for pair keys and series alignment."""

    def test_pair_key(self):
        """Test unordered pair keys join ids with a dash."""
        assert pair_key("AAPL", "MSFT") == "AAPL-MSFT"

    def test_aligned_values_tail(self):
        """Test unequal series are aligned on their most recent points."""
        a = create_entity("A", values=[1.0, 2.0, 3.0, 4.0, 5.0])
        b = create_entity("B", values=[30.0, 40.0, 50.0])

        x, y = aligned_values(a, b)
        assert x == [3.0, 4.0, 5.0]
        assert y == [30.0, 40.0, 50.0]

    def test_aligned_values_window(self):
        """Test the window keeps only the last points."""
        a = create_entity("A", values=[1.0, 2.0, 3.0, 4.0, 5.0])
        b = create_entity("B", values=[5.0, 4.0, 3.0, 2.0, 1.0])

        x, y = aligned_values(a, b, window=2)
        assert x == [4.0, 5.0]
        assert y == [2.0, 1.0]

    def test_aligned_values_zero_window(self):
        """Test a window below one is rejected."""
        a = create_entity("A", values=[1.0, 2.0, 3.0])
        b = create_entity("B", values=[3.0, 2.0, 1.0])

        with pytest.raises(ValidationError, match="window must be >= 1"):
            aligned_values(a, b, window=0)


class TestAnalyzeRelationships:
    """Tests for the full analysis pipeline."""

    def test_perfect_pair(self, manager, linear_pair):
        """Test a linear pair yields one significant edge and an insight."""
        result = manager.analyze_relationships(linear_pair)

        corr = result.correlations["A-B"]
        assert corr.coefficient == pytest.approx(1.0)
        assert corr.significant is True
        assert corr.source_id == "A"
        assert corr.target_id == "B"

        assert manager.network.edge_count == 1
        edge = manager.network.get_edge("A", "B")
        assert edge.weight == pytest.approx(1.0)
        assert edge.metadata["method"] == "pearson"

        high = [i for i in result.insights if i.insight_type == InsightType.HIGH_CORRELATION]
        assert len(high) == 1
        assert high[0].related_entities == ["A", "B"]
        assert high[0].importance == Importance.HIGH
        assert "Alpha and Beta" in high[0].message
        assert "very strong correlation" in high[0].message

    def test_ring_forms_community(self, manager, ring_entities):
        """Test three mutually correlated entities form one community."""
        result = manager.analyze_relationships(ring_entities)

        assert len(result.correlations) == 3
        assert all(c.significant for c in result.correlations.values())
        assert result.correlations["A-B"].coefficient == pytest.approx(78 / 82.5)

        communities = result.network_metrics.communities
        assert len(communities) == 1
        assert sorted(communities[0].members) == ["A", "B", "C"]

    def test_insights_sorted_by_importance(self, manager, ring_entities):
        """Test high-importance insights come before medium ones."""
        result = manager.analyze_relationships(ring_entities)

        ranks = [i.importance.rank for i in result.insights]
        assert ranks == sorted(ranks, reverse=True)

        types = [i.insight_type for i in result.insights]
        assert types.count(InsightType.HIGH_CORRELATION) == 3
        assert types.count(InsightType.CENTRAL_NODE) == 3

    def test_central_node_insight(self, manager, ring_entities):
        """Test central nodes are reported with medium importance."""
        result = manager.analyze_relationships(ring_entities)

        central = [i for i in result.insights if i.insight_type == InsightType.CENTRAL_NODE]
        assert all(i.importance == Importance.MEDIUM for i in central)
        assert all("plays a central role" in i.message for i in central)
        assert all(i.metric == 1.0 for i in central)

    def test_empty_entities(self, manager):
        """Test an empty entity list yields an empty result."""
        result = manager.analyze_relationships([])

        assert result.entity_count == 0
        assert result.correlations == {}
        assert result.insights == []
        assert result.network_metrics.communities == []
        assert manager.get_analysis_results() is result

    def test_entities_without_series(self, manager, linear_pair):
        """Test entities without a series join the graph but not comparisons."""
        entities = [*linear_pair, create_entity("TECH", EntityType.SECTOR)]
        result = manager.analyze_relationships(entities)

        assert list(result.correlations) == ["A-B"]
        assert manager.network.has_node("TECH")
        assert result.network_metrics.centrality["TECH"].degree == 0.0

    def test_unequal_lengths_aligned(self, manager):
        """Test pairs of different lengths compare their common tail."""
        entities = [
            create_entity("A", values=[float(v) for v in range(1, 11)]),
            create_entity("B", values=[3.0, 1.0, 4.0, 1.0, 5.0]),
        ]
        result = manager.analyze_relationships(entities)
        assert result.correlations["A-B"].sample_size == 5

    def test_time_window(self, manager, ring_entities):
        """Test the time window bounds the sample size."""
        options = AnalysisOptions(time_window=5)
        result = manager.analyze_relationships(ring_entities, options)
        assert all(c.sample_size == 5 for c in result.correlations.values())

    def test_duplicate_ids_rejected(self, manager, linear_pair):
        """Test entities sharing an id fail before any comparison."""
        twin = create_entity("A", values=[5.0, 4.0, 3.0, 2.0, 1.0])

        with pytest.raises(ValidationError, match="Duplicate entity ids: A"):
            manager.analyze_relationships([*linear_pair, twin])

    def test_zero_time_window_rejected(self, manager, linear_pair):
        """Test a time window below one is rejected."""
        with pytest.raises(ValidationError, match="time_window must be >= 1"):
            manager.analyze_relationships(linear_pair, AnalysisOptions(time_window=0))

    def test_invalid_pair_skipped(self, manager, linear_pair):
        """Test a pair with non-finite values is skipped, not fatal."""
        bad = create_entity("BAD", values=[1.0, float("nan"), 3.0, 4.0, 5.0])
        result = manager.analyze_relationships([*linear_pair, bad])

        assert list(result.correlations) == ["A-B"]
        assert manager.network.has_node("BAD")

    def test_negative_correlation_edge(self, manager):
        """Test negative correlations keep their sign as edge strength."""
        entities = [
            create_entity("UP", values=[1.0, 2.0, 3.0, 4.0, 5.0]),
            create_entity("DOWN", values=[10.0, 8.0, 6.0, 4.0, 2.0]),
        ]
        manager.analyze_relationships(entities)

        edge = manager.network.get_edge("UP", "DOWN")
        assert edge.weight == pytest.approx(1.0)
        assert edge.strength == pytest.approx(-1.0)

    def test_insignificant_pair_has_no_edge(self, manager):
        """Test only significant correlations become edges."""
        entities = [
            create_entity("A", values=[1.0, 2.0, 3.0, 4.0, 5.0]),
            create_entity("B", values=[5.0, 2.0, 4.0, 1.0, 3.0]),
        ]
        result = manager.analyze_relationships(entities)

        assert result.correlations["A-B"].significant is False
        assert manager.network.edge_count == 0
        assert result.insights == []

    def test_spearman_method(self, manager):
        """Test the correlation method is configurable per call."""
        entities = [
            create_entity("X", values=[1.0, 2.0, 3.0, 4.0, 5.0]),
            create_entity("Y", values=[1.0, 4.0, 9.0, 16.0, 25.0]),
        ]
        options = AnalysisOptions(method=CorrelationMethod.SPEARMAN)
        result = manager.analyze_relationships(entities, options)

        corr = result.correlations["X-Y"]
        assert corr.method == CorrelationMethod.SPEARMAN
        assert corr.coefficient == pytest.approx(1.0)

    def test_mutual_information_option(self, manager, linear_pair):
        """Test mutual information is computed only when requested."""
        assert manager.analyze_relationships(linear_pair).mutual_information == {}

        options = AnalysisOptions(include_mutual_information=True)
        result = manager.analyze_relationships(linear_pair, options)
        assert result.mutual_information["A-B"].normalized_mi == pytest.approx(1.0)

    def test_correlation_disabled(self, manager, linear_pair):
        """Test disabling correlation leaves an edgeless graph."""
        options = AnalysisOptions(include_correlation=False)
        result = manager.analyze_relationships(linear_pair, options)

        assert result.correlations == {}
        assert manager.network.node_count == 2
        assert manager.network.edge_count == 0

    def test_network_disabled(self, manager, linear_pair):
        """Test disabling the network skips metrics and central nodes."""
        options = AnalysisOptions(include_network=False)
        result = manager.analyze_relationships(linear_pair, options)

        assert result.network_metrics is None
        assert all(i.insight_type != InsightType.CENTRAL_NODE for i in result.insights)

    def test_fresh_network_each_run(self, manager, linear_pair, ring_entities):
        """Test each run builds its own graph."""
        manager.analyze_relationships(ring_entities)
        manager.analyze_relationships(linear_pair)

        assert manager.network.node_count == 2
        assert not manager.network.has_node("C")

    def test_result_serializable(self, manager, ring_entities):
        """Test results serialize to JSON."""
        options = AnalysisOptions(include_mutual_information=True)
        data = manager.analyze_relationships(ring_entities, options).to_dict()

        decoded = json.loads(json.dumps(data))
        assert decoded["entity_count"] == 3
        assert decoded["correlations"]["A-B"]["method"] == "pearson"
        assert decoded["insights"][0]["type"] == "high_correlation"
        assert len(decoded["network_metrics"]["visualization"]["nodes"]) == 3


class TestCausality:
    """Tests for the pluggable causality test."""

    def test_no_test_configured(self, manager, linear_pair):
        """Test causality is skipped without a configured test."""
        assert manager.analyze_relationships(linear_pair).causalities == {}

    def test_causality_insight(self, linear_pair):
        """Test confident causal links produce insights."""
        calls = []

        def stub_test(cause, effect):
            calls.append((cause, effect))
            # Only the first ordered pair is causal
            return CausalityResult(causality_exists=len(calls) == 1, confidence=0.9)

        manager = RelationshipAnalysisManager(causality_test=stub_test)
        result = manager.analyze_relationships(linear_pair)

        assert set(result.causalities) == {"A->B", "B->A"}
        assert result.causalities["A->B"].cause == "A"
        assert result.causalities["A->B"].effect == "B"

        causal = [i for i in result.insights if i.insight_type == InsightType.CAUSALITY_DETECTED]
        assert len(causal) == 1
        assert causal[0].related_entities == ["A", "B"]
        assert "Alpha appears to causally influence Beta" in causal[0].message

    def test_low_confidence_ignored(self, linear_pair):
        """Test causal links below the confidence threshold are not reported."""
        manager = RelationshipAnalysisManager(
            causality_test=lambda cause, effect: CausalityResult(True, 0.5)
        )
        result = manager.analyze_relationships(linear_pair)

        assert len(result.causalities) == 2
        assert all(
            i.insight_type != InsightType.CAUSALITY_DETECTED for i in result.insights
        )

    def test_failing_test_skipped(self, linear_pair):
        """Test a causality test that raises does not abort the run."""

        def broken(cause, effect):
            raise RuntimeError("not enough lags")

        manager = RelationshipAnalysisManager(causality_test=broken)
        result = manager.analyze_relationships(linear_pair)

        assert result.causalities == {}
        assert "A-B" in result.correlations

    def test_causality_disabled(self, linear_pair):
        """Test the option switches causality off."""
        manager = RelationshipAnalysisManager(
            causality_test=lambda cause, effect: CausalityResult(True, 0.99)
        )
        result = manager.analyze_relationships(
            linear_pair, AnalysisOptions(include_causality=False)
        )
        assert result.causalities == {}


class TestStoredResults:
    """Tests for result retrieval."""

    def test_latest_result(self, manager, linear_pair):
        """Test the last run is stored as latest."""
        assert manager.get_analysis_results() is None
        result = manager.analyze_relationships(linear_pair)
        assert manager.get_analysis_results() is result
        assert manager.get_analysis_results("latest") is result

    def test_labeled_results(self, manager, linear_pair, ring_entities):
        """Test labeled runs stay retrievable after later runs."""
        first = manager.analyze_relationships(linear_pair, label="pair")
        second = manager.analyze_relationships(ring_entities, label="ring")

        assert manager.get_analysis_results("pair") is first
        assert manager.get_analysis_results("ring") is second
        assert manager.get_analysis_results() is second
        assert [key for key, _ in manager.get_all_results()] == ["latest", "pair", "ring"]

    def test_unknown_label(self, manager):
        """Test unknown labels return None."""
        assert manager.get_analysis_results("missing") is None


class TestSettings:
    """Tests for settings flowing into the manager."""

    def test_options_from_settings(self):
        """Test options pick up settings defaults and overrides."""
        settings = AnalysisSettings(time_window=60, community_threshold=0.8)
        options = AnalysisOptions.from_settings(settings, include_network=False)

        assert options.time_window == 60
        assert options.community_threshold == 0.8
        assert options.include_network is False

    def test_edge_min_coefficient(self, linear_pair):
        """Test edges require the coefficient to clear the configured minimum."""
        settings = AnalysisSettings(edge_min_coefficient=1.0)
        manager = RelationshipAnalysisManager(settings)
        manager.analyze_relationships(linear_pair)
        assert manager.network.edge_count == 0

    def test_central_node_top_n(self, ring_entities):
        """Test the number of central node insights is capped."""
        manager = RelationshipAnalysisManager(AnalysisSettings(central_node_top_n=1))
        result = manager.analyze_relationships(ring_entities)

        central = [i for i in result.insights if i.insight_type == InsightType.CENTRAL_NODE]
        assert len(central) == 1

    def test_result_defaults(self):
        """Test an empty result has no significant correlations."""
        from datetime import UTC, datetime

        result = AnalysisResult(timestamp=datetime.now(UTC))
        assert result.significant_correlations == []
        assert result.to_dict()["network_metrics"] is None
