"""Correlation, mutual information and graph analysis over typed entities."""

from marketlink.analysis.comovement import (
    CoMovementCluster,
    CoMovementPair,
    CoMovementStrength,
    MovementPattern,
    find_co_movement_patterns,
)
from marketlink.analysis.correlation import (
    CorrelationAnalyzer,
    CorrelationMethod,
    CorrelationResult,
    Interpretation,
    MutualInformationResult,
    mutual_information,
    pearson_correlation,
    spearman_correlation,
)
from marketlink.analysis.entities import (
    Entity,
    EntityType,
    TimeSeriesPoint,
    create_entity,
    series_from_values,
)
from marketlink.analysis.errors import (
    AnalysisError,
    DuplicateNodeError,
    GraphReferenceError,
    ValidationError,
)
from marketlink.analysis.manager import (
    AnalysisOptions,
    AnalysisResult,
    CausalityResult,
    CausalityTest,
    Importance,
    Insight,
    InsightType,
    NetworkMetrics,
    RelationshipAnalysisManager,
)
from marketlink.analysis.network import (
    CentralityScores,
    Community,
    EdgeDirection,
    EdgeType,
    NetworkAnalyzer,
    NetworkEdge,
    NetworkNode,
)

__all__ = [
    # Entities
    "Entity",
    "EntityType",
    "TimeSeriesPoint",
    "create_entity",
    "series_from_values",
    # Errors
    "AnalysisError",
    "DuplicateNodeError",
    "GraphReferenceError",
    "ValidationError",
    # Correlation
    "CorrelationAnalyzer",
    "CorrelationMethod",
    "CorrelationResult",
    "Interpretation",
    "MutualInformationResult",
    "mutual_information",
    "pearson_correlation",
    "spearman_correlation",
    # Network
    "CentralityScores",
    "Community",
    "EdgeDirection",
    "EdgeType",
    "NetworkAnalyzer",
    "NetworkEdge",
    "NetworkNode",
    # Co-movement
    "CoMovementCluster",
    "CoMovementPair",
    "CoMovementStrength",
    "MovementPattern",
    "find_co_movement_patterns",
    # Orchestration
    "AnalysisOptions",
    "AnalysisResult",
    "CausalityResult",
    "CausalityTest",
    "Importance",
    "Insight",
    "InsightType",
    "NetworkMetrics",
    "RelationshipAnalysisManager",
]
