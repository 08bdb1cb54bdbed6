"""
Recall benchmarks for LSH indexes.

Ground truth comes from a brute-force scan of the whole dataset, which is
exactly the work an LSH index tries to avoid, so keep query sets small.
"""

import time
from dataclasses import dataclass
from typing import Any

import numpy as np

from lshsearch.dataset import ArrayDataset, as_dataset, take_rows
from lshsearch.exceptions import ConfigurationError
from lshsearch.metrics import get_metric
from lshsearch.scanner import TopKScanner


@dataclass
class BenchmarkResult:
    """
    Attributes:
        recall: Mean fraction of the true k nearest neighbours found.
        mean_candidates: Mean number of distinct candidates scanned per query.
        mean_query_seconds: Mean wall-clock time per query.
    """

    recall: float
    mean_candidates: float
    mean_query_seconds: float


def _as_queries(queries: Any, dim: int) -> np.ndarray:
    queries = np.asarray(queries, dtype=np.float64)
    if queries.ndim == 1:
        queries = queries.reshape(1, -1)
    if queries.ndim != 2 or queries.shape[1] != dim:
        raise ConfigurationError(
            f"Queries must have shape (n, {dim}), got {queries.shape}"
        )
    return queries


def exact_topk(dataset: Any, queries: Any, k: int, metric: str = "l2") -> list[list[tuple[int, float]]]:
    """
    Exact k nearest neighbours by linear scan.

    Args:
        dataset: 2D array or dataset view.
        queries: 2D array of query vectors (or a single 1D vector).
        k: Number of neighbours per query.
        metric: Distance metric name.

    Returns:
        For every query, up to k (key, distance) pairs, nearest first,
        ties broken by key.
    """
    if k < 1:
        raise ConfigurationError(f"k must be positive, got {k}")
    dataset = as_dataset(dataset)
    distance = get_metric(metric)
    queries = _as_queries(queries, dataset.dim())
    if isinstance(dataset, ArrayDataset):
        vectors = dataset.array.astype(np.float64)
    else:
        vectors = take_rows(dataset, range(dataset.size())).astype(np.float64)

    results = []
    for query in queries:
        distances = distance(query, vectors)
        # Stable sort keeps equal distances in key order.
        order = np.argsort(distances, kind="stable")[:k]
        results.append([(int(key), float(distances[key])) for key in order])
    return results


def recall(approx: list[list[tuple[int, float]]], exact: list[list[tuple[int, float]]]) -> float:
    """
    Mean fraction of exact neighbour keys present in the approximate results.

    Both arguments hold one ranked list of (key, distance) pairs per query.
    """
    if len(approx) != len(exact):
        raise ConfigurationError(
            f"Got {len(approx)} approximate and {len(exact)} exact result lists"
        )
    scores = []
    for found, truth in zip(approx, exact):
        truth_keys = {key for key, _ in truth}
        if not truth_keys:
            continue
        found_keys = {key for key, _ in found}
        scores.append(len(found_keys & truth_keys) / len(truth_keys))
    return float(np.mean(scores)) if scores else 0.0


def evaluate(index: Any, dataset: Any, queries: Any, k: int, metric: str = "l2") -> BenchmarkResult:
    """
    Query an index and compare against brute force.

    Args:
        index: A filled LshIndex whose keys are row numbers of dataset.
        dataset: The indexed vectors.
        queries: 2D array of query vectors.
        k: Number of neighbours per query.
        metric: Distance metric name.

    Returns:
        Recall, candidate count and query time averages.
    """
    dataset = as_dataset(dataset)
    queries = _as_queries(queries, dataset.dim())
    truth = exact_topk(dataset, queries, k, metric)

    scanner = TopKScanner(dataset, k=k, metric=metric)
    found = []
    candidates = []
    elapsed = 0.0
    for query in queries:
        t0 = time.perf_counter()
        found.append(index.query(query, scanner))
        elapsed += time.perf_counter() - t0
        candidates.append(scanner.cnt)

    n = max(len(queries), 1)
    return BenchmarkResult(
        recall=recall(found, truth),
        mean_candidates=sum(candidates) / n,
        mean_query_seconds=elapsed / n,
    )
