"""
ITQ index benchmark using lshsearch

This script builds an ITQ index over synthetic clustered vectors, saves it,
loads it back and measures recall against brute-force search.
"""

import logging
import os
import tempfile

import numpy as np

from lshsearch import ItqLsh, ItqParameter
from lshsearch.benchmark import evaluate

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def make_dataset(rng, n_points=20000, n_clusters=50, dim=64):
    centers = rng.standard_normal((n_clusters, dim)) * 5
    labels = rng.integers(0, n_clusters, size=n_points)
    return (centers[labels] + rng.standard_normal((n_points, dim))).astype(np.float32)


def main():
    rng = np.random.default_rng(0)
    vectors = make_dataset(rng)
    queries = vectors[rng.choice(len(vectors), size=100, replace=False)]
    queries = queries + rng.standard_normal(queries.shape).astype(np.float32) * 0.1
    print(f"Dataset: {vectors.shape[0]} vectors of dimension {vectors.shape[1]}")

    param = ItqParameter(M=521, L=5, D=vectors.shape[1], N=8, S=2000, I=50)
    index = ItqLsh(param, seed=0)

    print("\nTraining...")
    index.train(vectors)

    print("Hashing...")
    index.hash(vectors, progress=lambda done, total: print(f"  {done}/{total}", end="\r"))
    print()

    path = os.path.join(tempfile.mkdtemp(), "itq.lsh")
    index.save(path)
    print(f"Saved index to {path} ({os.path.getsize(path)} bytes)")

    loaded = ItqLsh.open(path)
    for k in [1, 10, 50]:
        result = evaluate(loaded, vectors, queries, k=k)
        print(
            f"k={k:3d}  recall={result.recall:.3f}  "
            f"candidates={result.mean_candidates:.0f}  "
            f"time={result.mean_query_seconds * 1000:.2f} ms"
        )


if __name__ == "__main__":
    main()
