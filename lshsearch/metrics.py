"""
Distance metrics used to rank candidates.

This module maps metric names to functions computing the distance between a
query vector and a batch of candidate vectors. Smaller is closer for every
metric.
"""

import numpy as np

from lshsearch.exceptions import ConfigurationError


def l1_distance(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    return np.abs(vectors - query).sum(axis=-1)


def l2_distance(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    return np.sqrt(((vectors - query) ** 2).sum(axis=-1))


def cosine_distance(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """
    One minus the cosine similarity.

    Zero vectors have no direction; their distance to anything is 1.
    """
    query_norm = np.linalg.norm(query)
    norms = np.linalg.norm(vectors, axis=-1)
    denom = norms * query_norm
    dots = vectors @ query
    similarity = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return 1.0 - similarity


# Each metric takes (query, vectors) and returns one distance per vector
METRICS = {
    "l1": l1_distance,
    "l2": l2_distance,
    "cosine": cosine_distance,
}


def get_metric(name: str):
    """
    Look up a metric by name.

    Args:
        name: One of the keys of METRICS.

    Returns:
        The distance function.

    Raises:
        ConfigurationError: If the metric is unknown.
    """
    try:
        return METRICS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown metric {name!r}, expected one of {sorted(METRICS)}"
        ) from None
