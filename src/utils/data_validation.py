"""
Validation helpers for model wiring and trajectory output tables.
"""

from typing import Iterable, List, Optional
import pandas as pd
import networkx as nx
from src.utils.logging_utils import get_logger

logger = get_logger(__name__)


def validate_dataframe(
    df: pd.DataFrame,
    required_columns: Optional[List[str]] = None,
    min_rows: int = 1
) -> bool:
    """
    Validate an output table has the expected shape.

    Args:
        df: DataFrame to validate
        required_columns: List of column names that must be present
        min_rows: Minimum number of rows required

    Returns:
        True if validation passes

    Raises:
        ValueError: If validation fails
    """
    if not isinstance(df, pd.DataFrame):
        raise ValueError("Input must be a pandas DataFrame")

    if len(df) < min_rows:
        raise ValueError(f"DataFrame must have at least {min_rows} rows, got {len(df)}")

    if required_columns:
        missing = set(required_columns) - set(df.columns)
        if missing:
            raise ValueError(f"Missing required columns: {sorted(missing)}")

    logger.debug(f"DataFrame validation passed: {len(df)} rows, {len(df.columns)} columns")
    return True


def validate_dag_structure(
    graph: nx.DiGraph,
    required_nodes: Optional[List[str]] = None,
    what: str = "Graph",
) -> bool:
    """
    Validate that a dependency or routing graph has no cycles.

    Args:
        graph: NetworkX directed graph to validate
        required_nodes: List of node names that must be present
        what: Label used in error messages (e.g. "Parameter dependencies")

    Returns:
        True if validation passes

    Raises:
        ValueError: If a required node is missing or the graph contains a cycle
    """
    if not isinstance(graph, nx.DiGraph):
        raise ValueError("Input must be a NetworkX DiGraph")

    if required_nodes:
        missing = set(required_nodes) - set(graph.nodes())
        if missing:
            raise ValueError(f"{what}: missing required nodes: {sorted(missing)}")

    if not nx.is_directed_acyclic_graph(graph):
        cycle = [edge[0] for edge in nx.find_cycle(graph)]
        raise ValueError(f"{what} contain a cycle: {' -> '.join(map(str, cycle))}")

    logger.debug(f"{what} validation passed: {len(graph.nodes())} nodes, {len(graph.edges())} edges")
    return True


def validate_references(names: Iterable[str], known: Iterable[str], what: str) -> bool:
    """
    Check that every referenced name exists.

    Raises:
        ValueError: Listing the unknown names
    """
    known_set = set(known)
    unknown = sorted({n for n in names if n not in known_set})
    if unknown:
        raise ValueError(f"Unknown {what}: {unknown}")
    return True
