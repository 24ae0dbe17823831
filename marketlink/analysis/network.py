"""Entity relationship graph with centrality and community analysis.

Nodes live in an arena indexed by position; string ids map to indices
through a lookup table owned by the graph. Edges are keyed by their
(source, target) index pair. Every metric is recomputed from the current
graph state on each call.
"""

import math
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any

import networkx as nx
import structlog

from marketlink.analysis.entities import Entity, EntityType
from marketlink.analysis.errors import (
    DuplicateNodeError,
    GraphReferenceError,
    ValidationError,
)

logger = structlog.get_logger()

DEFAULT_COMMUNITY_THRESHOLD = 0.5
DEFAULT_EIGENVECTOR_ITERATIONS = 10


# ============================================================================
# Graph Models
# ============================================================================


class EdgeType(str, Enum):
    """Kinds of relationship an edge can represent."""

    CORRELATION = "correlation"
    CAUSATION = "causation"
    SIMILARITY = "similarity"
    INFLUENCE = "influence"


class EdgeDirection(str, Enum):
    """Whether an edge counts for both endpoints or only its source."""

    DIRECTED = "directed"
    UNDIRECTED = "undirected"


NODE_COLORS = {
    EntityType.STOCK: "#4285f4",
    EntityType.SECTOR: "#ea4335",
    EntityType.POLICY: "#fbbc04",
    EntityType.NEWS_EVENT: "#34a853",
    EntityType.THEME: "#9aa0a6",
    EntityType.INDICATOR: "#ff6d01",
}
DEFAULT_NODE_COLOR = "#757575"

EDGE_COLORS = {
    EdgeType.CORRELATION: "#4285f4",
    EdgeType.CAUSATION: "#ea4335",
    EdgeType.SIMILARITY: "#34a853",
    EdgeType.INFLUENCE: "#fbbc04",
}
DEFAULT_EDGE_COLOR = "#9aa0a6"


@dataclass(frozen=True)
class NetworkNode:
    """A graph node; one per entity."""

    id: str
    entity_type: EntityType
    index: int
    attributes: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return str(self.attributes.get("name") or self.id)


@dataclass(frozen=True)
class NetworkEdge:
    """A weighted relationship between two nodes."""

    source: str
    target: str
    edge_type: EdgeType = EdgeType.CORRELATION
    weight: float = 1.0  # 0 to 1
    strength: float = 1.0  # signed, e.g. the correlation coefficient
    direction: EdgeDirection = EdgeDirection.UNDIRECTED
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return f"{self.source}-{self.target}"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = self.id
        data["edge_type"] = self.edge_type.value
        data["direction"] = self.direction.value
        return data


@dataclass(frozen=True)
class CentralityScores:
    """Centrality of one node, each measure scaled to [0, 1] over the graph."""

    degree: float = 0.0
    betweenness: float = 0.0
    closeness: float = 0.0
    eigenvector: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Community:
    """Nodes connected through edges heavier than a threshold."""

    id: int
    members: list[str]
    threshold: float = DEFAULT_COMMUNITY_THRESHOLD

    @property
    def size(self) -> int:
        return len(self.members)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "members": list(self.members),
            "size": self.size,
            "threshold": self.threshold,
        }


def _scale_to_max(scores: dict[str, float]) -> dict[str, float]:
    """Divide every score by the maximum; all zeros when the maximum is not positive."""
    max_score = max(scores.values(), default=0.0)
    if max_score <= 0:
        return {node_id: 0.0 for node_id in scores}
    return {node_id: score / max_score for node_id, score in scores.items()}


# ============================================================================
# Network Analyzer
# ============================================================================


class NetworkAnalyzer:
    """
    Typed graph of entities and relationships.

    Provides:
    - Node/edge upserts with endpoint and weight validation
    - Degree, betweenness (neighbor-bridge heuristic), closeness and
      eigenvector (fixed-iteration power method) centrality
    - Threshold-based community detection
    - Render-ready visualization payloads

    Not safe for concurrent mutation; use one analyzer per analysis run.
    """

    def __init__(
        self,
        strict: bool = False,
        eigenvector_iterations: int = DEFAULT_EIGENVECTOR_ITERATIONS,
        community_threshold: float = DEFAULT_COMMUNITY_THRESHOLD,
    ):
        self.strict = strict
        self.eigenvector_iterations = eigenvector_iterations
        self.community_threshold = community_threshold

        self._nodes: list[NetworkNode] = []
        self._index: dict[str, int] = {}
        self._edges: dict[tuple[int, int], NetworkEdge] = {}

    # ========================================================================
    # Graph Construction
    # ========================================================================

    def add_node(
        self,
        node_id: str,
        entity_type: EntityType = EntityType.STOCK,
        attributes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> NetworkNode:
        """
        Add a node, or update the attributes of an existing one.

        A node's type is fixed when it is first added.

        Raises:
            DuplicateNodeError: If the id exists and the analyzer is strict
        """
        attributes = dict(attributes or {})
        metadata = dict(metadata or {})

        existing = self._index.get(node_id)
        if existing is None:
            node = NetworkNode(
                id=node_id,
                entity_type=entity_type,
                index=len(self._nodes),
                attributes=attributes,
                metadata=metadata,
            )
            self._index[node_id] = node.index
            self._nodes.append(node)
            return node

        if self.strict:
            raise DuplicateNodeError(node_id)

        current = self._nodes[existing]
        if current.entity_type is not entity_type:
            logger.warning(
                "Ignoring type change on existing node",
                node_id=node_id,
                current_type=current.entity_type.value,
                requested_type=entity_type.value,
            )
        node = replace(current, attributes=attributes, metadata=metadata)
        self._nodes[existing] = node
        logger.debug("Node updated", node_id=node_id)
        return node

    def add_entity(self, entity: Entity) -> NetworkNode:
        """Add a node for an entity."""
        return self.add_node(entity.id, entity.entity_type, entity.attributes)

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: EdgeType = EdgeType.CORRELATION,
        weight: float = 1.0,
        strength: float | None = None,
        direction: EdgeDirection = EdgeDirection.UNDIRECTED,
        metadata: dict[str, Any] | None = None,
    ) -> NetworkEdge:
        """
        Add or replace the edge from ``source`` to ``target``.

        Raises:
            GraphReferenceError: If either endpoint is not in the graph
            ValidationError: If the weight is outside [0, 1] or it is a self-loop
        """
        source_idx = self._require(source)
        target_idx = self._require(target)
        if source_idx == target_idx:
            raise ValidationError(f"Self-loop edges are not supported: {source}")
        if not (math.isfinite(weight) and 0.0 <= weight <= 1.0):
            raise ValidationError(f"Edge weight must be in [0, 1], got {weight}")

        edge = NetworkEdge(
            source=source,
            target=target,
            edge_type=edge_type,
            weight=weight,
            strength=weight if strength is None else strength,
            direction=direction,
            metadata=dict(metadata or {}),
        )
        self._edges[(source_idx, target_idx)] = edge
        return edge

    def clear(self) -> None:
        """Remove all nodes and edges."""
        self._nodes.clear()
        self._index.clear()
        self._edges.clear()

    # ========================================================================
    # Graph Queries
    # ========================================================================

    @property
    def nodes(self) -> list[NetworkNode]:
        return list(self._nodes)

    @property
    def edges(self) -> list[NetworkEdge]:
        return list(self._edges.values())

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._index

    def get_node(self, node_id: str) -> NetworkNode:
        return self._nodes[self._require(node_id)]

    def get_edge(self, source: str, target: str) -> NetworkEdge | None:
        """Get the edge stored for exactly (source, target), if any."""
        key = (self._require(source), self._require(target))
        return self._edges.get(key)

    def neighbors(self, node_id: str) -> list[str]:
        """Nodes reachable in one hop, following edge direction."""
        adjacency = self._adjacency()
        return [self._nodes[i].id for i in adjacency[self._require(node_id)]]

    def is_directly_connected(self, a: str, b: str) -> bool:
        """True if an edge exists between the two nodes in either direction."""
        a_idx, b_idx = self._require(a), self._require(b)
        return (a_idx, b_idx) in self._edges or (b_idx, a_idx) in self._edges

    def edge_weight(self, a: str, b: str) -> float:
        """Weight of the edge between two nodes in either direction, 0 if none."""
        a_idx, b_idx = self._require(a), self._require(b)
        edge = self._edges.get((a_idx, b_idx)) or self._edges.get((b_idx, a_idx))
        return edge.weight if edge else 0.0

    def shortest_paths(self, node_id: str) -> dict[str, float]:
        """
        Hop distances from ``node_id`` over the undirected view of the graph.

        Unreachable nodes map to ``math.inf``.
        """
        lengths = nx.single_source_shortest_path_length(
            self._undirected_graph(), self._require(node_id)
        )
        return {node.id: lengths.get(node.index, math.inf) for node in self._nodes}

    # ========================================================================
    # Centrality
    # ========================================================================

    def degree_centrality(self) -> dict[str, float]:
        """Incident edge count per node, divided by the maximum count."""
        counts = [0] * len(self._nodes)
        for (source_idx, target_idx), edge in self._edges.items():
            counts[source_idx] += 1
            if edge.direction is EdgeDirection.UNDIRECTED:
                counts[target_idx] += 1

        return _scale_to_max(
            {node.id: float(counts[node.index]) for node in self._nodes}
        )

    def betweenness_centrality(self) -> dict[str, float]:
        """
        Approximate betweenness via a bridge heuristic.

        Each node scores the number of ordered pairs of its neighbors that
        are not directly connected to each other; scores are divided by the
        maximum. This is not shortest-path betweenness.
        """
        adjacency = self._adjacency()
        connected = set(self._edges)

        scores: dict[str, float] = {}
        for node in self._nodes:
            neighbors = adjacency[node.index]
            bridged = 0
            for a in neighbors:
                for b in neighbors:
                    if a != b and (a, b) not in connected and (b, a) not in connected:
                        bridged += 1
            scores[node.id] = float(bridged)

        return _scale_to_max(scores)

    def closeness_centrality(self) -> dict[str, float]:
        """
        1 / (sum of hop distances to every reachable node).

        Unreachable nodes are excluded from the sum; an isolated node
        scores 0.
        """
        graph = self._undirected_graph()
        closeness: dict[str, float] = {}
        for node in self._nodes:
            total = sum(nx.single_source_shortest_path_length(graph, node.index).values())
            closeness[node.id] = 1.0 / total if total > 0 else 0.0
        return closeness

    def eigenvector_centrality(self, iterations: int | None = None) -> dict[str, float]:
        """
        Power iteration for a fixed number of rounds.

        Every node starts at 1; each round replaces a node's value with the
        sum of its neighbors' values and L2-normalizes the vector. There is
        no convergence check. A graph without edges yields all zeros.
        """
        if iterations is None:
            iterations = self.eigenvector_iterations
        if iterations < 1:
            raise ValidationError(f"iterations must be >= 1, got {iterations}")

        adjacency = self._adjacency()
        values = [1.0] * len(self._nodes)
        for _ in range(iterations):
            updated = [
                sum(values[neighbor] for neighbor in adjacency[i])
                for i in range(len(values))
            ]
            norm = math.sqrt(sum(v * v for v in updated))
            values = [v / norm for v in updated] if norm > 0 else updated

        return {node.id: values[node.index] for node in self._nodes}

    def calculate_centrality(self) -> dict[str, CentralityScores]:
        """All four centrality measures per node, each divided by its maximum."""
        degree = self.degree_centrality()
        betweenness = self.betweenness_centrality()
        closeness = _scale_to_max(self.closeness_centrality())
        eigenvector = _scale_to_max(self.eigenvector_centrality())

        return {
            node.id: CentralityScores(
                degree=degree[node.id],
                betweenness=betweenness[node.id],
                closeness=closeness[node.id],
                eigenvector=eigenvector[node.id],
            )
            for node in self._nodes
        }

    # ========================================================================
    # Communities
    # ========================================================================

    def detect_communities(self, threshold: float | None = None) -> list[Community]:
        """
        Group nodes connected through edges with ``weight > threshold``.

        Edges are crossed in either direction. Singleton groups are dropped.
        Members are listed in insertion order; communities are ordered by
        their earliest member.
        """
        if threshold is None:
            threshold = self.community_threshold

        communities: list[Community] = []
        for component in nx.connected_components(self._undirected_graph(threshold)):
            members = sorted(component)
            if len(members) > 1:
                communities.append(
                    Community(
                        id=len(communities),
                        members=[self._nodes[i].id for i in members],
                        threshold=threshold,
                    )
                )

        return communities

    # ========================================================================
    # Visualization
    # ========================================================================

    def to_visualization(self) -> dict[str, list[dict[str, Any]]]:
        """Render-ready nodes and edges for a graph-drawing widget."""
        degree = self.degree_centrality()

        nodes = [
            {
                "id": node.id,
                "label": node.label,
                "type": node.entity_type.value,
                "size": degree[node.id] * 50 + 10,
                "color": NODE_COLORS.get(node.entity_type, DEFAULT_NODE_COLOR),
            }
            for node in self._nodes
        ]
        edges = [
            {
                "id": edge.id,
                "from": edge.source,
                "to": edge.target,
                "label": edge.edge_type.value,
                "width": edge.weight * 5,
                "color": EDGE_COLORS.get(edge.edge_type, DEFAULT_EDGE_COLOR),
            }
            for edge in self._edges.values()
        ]
        return {"nodes": nodes, "edges": edges}

    # ========================================================================
    # Internals
    # ========================================================================

    def _require(self, node_id: str) -> int:
        try:
            return self._index[node_id]
        except KeyError:
            raise GraphReferenceError(node_id) from None

    def _adjacency(self) -> list[list[int]]:
        """Distinct one-hop neighbors per node index, following direction."""
        adjacency: list[list[int]] = [[] for _ in self._nodes]
        for (source_idx, target_idx), edge in self._edges.items():
            if target_idx not in adjacency[source_idx]:
                adjacency[source_idx].append(target_idx)
            if (
                edge.direction is EdgeDirection.UNDIRECTED
                and source_idx not in adjacency[target_idx]
            ):
                adjacency[target_idx].append(source_idx)
        return adjacency

    def _undirected_graph(self, min_weight: float | None = None) -> nx.Graph:
        """Undirected view over node indices, optionally only edges above a weight."""
        graph = nx.Graph()
        graph.add_nodes_from(range(len(self._nodes)))
        graph.add_edges_from(
            key
            for key, edge in self._edges.items()
            if min_weight is None or edge.weight > min_weight
        )
        return graph
