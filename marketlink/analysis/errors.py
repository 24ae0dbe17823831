"""Errors raised by the relationship analysis engine."""


class AnalysisError(Exception):
    """Base class for analysis engine errors."""


class ValidationError(AnalysisError, ValueError):
    """Input series or parameters are unusable (mismatched lengths, bad weights)."""


class GraphReferenceError(AnalysisError, KeyError):
    """An operation referenced a node that is not in the graph."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Unknown node: {node_id}")

    def __str__(self) -> str:
        return f"Unknown node: {self.node_id}"


class DuplicateNodeError(AnalysisError):
    """A node id was added twice while the graph enforces unique ids."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id}")
