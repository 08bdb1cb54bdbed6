"""
Candidate scanners.

An index query does not rank anything itself: it forwards the keys found in
its buckets to a scanner, which computes true distances and keeps the best
results. Any object with ``reset(query)``, ``__call__(key)`` and
``finalize()`` can be passed to ``LshIndex.query``.
"""

import heapq
from typing import Any, Optional, Protocol

import numpy as np

from lshsearch.dataset import DatasetView, as_dataset
from lshsearch.exceptions import ConfigurationError
from lshsearch.metrics import get_metric


class Scanner(Protocol):
    def reset(self, query: np.ndarray) -> None:
        ...

    def __call__(self, key: int) -> None:
        ...

    def finalize(self) -> Any:
        ...


class TopKScanner:
    """
    Exact reranking of LSH candidates.

    Keys forwarded more than once during a query (the same point found in
    several tables, or inserted twice) are scanned only once.

    Example:
        >>> scanner = TopKScanner(vectors, k=5, metric="l2")
        >>> results = index.query(vectors[0], scanner)
        >>> results[0]
        (0, 0.0)
    """

    def __init__(self, dataset: Any, k: int = 10, metric: str = "l2") -> None:
        """
        Args:
            dataset: The vectors the index keys refer to, by row number.
            k: Number of neighbours to keep.
            metric: Distance metric name, see lshsearch.metrics.METRICS.
        """
        if k < 1:
            raise ConfigurationError(f"k must be positive, got {k}")
        self.dataset: DatasetView = as_dataset(dataset)
        self.k = k
        self.metric = metric
        self._distance = get_metric(metric)

        self._query: Optional[np.ndarray] = None
        self._seen: set[int] = set()
        self._heap: list[tuple[float, int]] = []  # max-heap via negated distances
        self._results: list[tuple[int, float]] = []

    def reset(self, query: np.ndarray) -> None:
        query = np.asarray(query, dtype=np.float64).ravel()
        if query.shape[0] != self.dataset.dim():
            raise ConfigurationError(
                f"Query dimension {query.shape[0]} does not match "
                f"dataset dimension {self.dataset.dim()}"
            )
        self._query = query
        self._seen = set()
        self._heap = []
        self._results = []

    def __call__(self, key: int) -> None:
        if self._query is None:
            raise RuntimeError("reset() must be called before scanning candidates")
        if key in self._seen:
            return
        if not 0 <= key < self.dataset.size():
            raise ConfigurationError(
                f"Candidate key {key} is outside the dataset of {self.dataset.size()} rows"
            )
        self._seen.add(key)

        vector = np.asarray(self.dataset[key], dtype=np.float64)
        distance = float(self._distance(self._query, vector[np.newaxis, :])[0])
        entry = (-distance, -key)
        if len(self._heap) < self.k:
            heapq.heappush(self._heap, entry)
        elif entry > self._heap[0]:
            heapq.heapreplace(self._heap, entry)

    @property
    def cnt(self) -> int:
        """Number of distinct candidates scanned since the last reset."""
        return len(self._seen)

    def finalize(self) -> list[tuple[int, float]]:
        """
        Produce the ranked result.

        Returns:
            Up to k (key, distance) pairs, nearest first, ties broken by key.
        """
        self._results = sorted(
            ((-neg_key, -neg_dist) for neg_dist, neg_key in self._heap),
            key=lambda item: (item[1], item[0]),
        )
        return self._results

    def topk(self) -> list[tuple[int, float]]:
        """The result of the last finalize()."""
        return list(self._results)
