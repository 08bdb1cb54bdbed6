"""
LshIndex - In-memory multi-table LSH index.

This module provides the storage side of LSH: L bucket tables filled by a
hash scheme, candidate lookup for queries, and the binary file format for
saving and loading a trained index.
"""

import logging
from typing import Any, Callable, ClassVar, Optional

import numpy as np

from lshsearch.codec import UINT_MAX, BinaryReader, BinaryWriter, read_buckets, write_buckets
from lshsearch.dataset import as_dataset, take_rows
from lshsearch.exceptions import ConfigurationError
from lshsearch.scanner import Scanner
from lshsearch.schemes import (
    HashScheme,
    ItqParameter,
    ItqScheme,
    Parameter,
    RandomHyperplaneScheme,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class LshIndex:
    """
    A multi-table LSH index over integer keys.

    Each of the L tables maps a bucket id in [0, M) to the keys inserted
    into that bucket, in insertion order. A query hashes the query vector
    into every table and forwards the keys of the matching buckets to a
    scanner, which computes true distances and ranks them.

    API:
    - reset(param, seed=None) - New parameters, empty tables
    - train(dataset) - Learn the hash functions (trainable schemes)
    - insert(key, vector) - Add one vector under a key
    - hash(dataset) - Add every row of a dataset under its row number
    - query(vector, scanner) - Forward candidates to a scanner, return its result
    - save(path) / load(path, seed=None) - Binary persistence

    Training and insertion are not thread-safe. Once the index is no longer
    modified, concurrent queries are safe as long as each uses its own
    scanner.

    Example:
        >>> import numpy as np
        >>> vectors = np.random.default_rng(0).standard_normal((1000, 32))
        >>> index = ItqLsh(ItqParameter(M=521, L=5, D=32, N=8, S=200, I=50), seed=0)
        >>> index.train(vectors).hash(vectors)
        >>> results = index.query(vectors[0], TopKScanner(vectors, k=10))
    """

    scheme_cls: ClassVar[Optional[type]] = None

    def __init__(self, scheme: HashScheme):
        """
        Initialize the index around a hash scheme.

        Args:
            scheme: The scheme computing bucket ids. The index takes
                ownership of it.
        """
        self.scheme = scheme
        self._tables = self._empty_tables(scheme.param.L)

    @staticmethod
    def _empty_tables(n_tables: int) -> list[dict[int, list[int]]]:
        return [{} for _ in range(n_tables)]

    @property
    def param(self) -> Parameter:
        return self.scheme.param

    @property
    def tables(self) -> list[dict[int, tuple[int, ...]]]:
        """Snapshot of every bucket table."""
        return [
            {bucket_id: tuple(keys) for bucket_id, keys in table.items()}
            for table in self._tables
        ]

    def bucket(self, table_id: int, bucket_id: int) -> tuple[int, ...]:
        """Keys stored in one bucket, empty if the bucket was never used."""
        self.scheme.check_table(table_id)
        return tuple(self._tables[table_id].get(bucket_id, ()))

    def __len__(self) -> int:
        """Number of inserted points (every point is in each table once)."""
        return sum(len(keys) for keys in self._tables[0].values())

    def reset(self, param: Parameter, seed: Any = None) -> "LshIndex":
        """
        Install new parameters and drop all hash functions and buckets.

        Args:
            param: Parameters for the scheme.
            seed: Seed or numpy Generator for the scheme's random draws.

        Returns:
            self for method chaining.
        """
        self.scheme.reset(param, seed)
        self._tables = self._empty_tables(self.param.L)
        return self

    def train(self, dataset: Any) -> "LshIndex":
        """
        Learn the hash functions from a dataset.

        Args:
            dataset: 2D array or dataset view with vectors of dimension D.

        Returns:
            self for method chaining.
        """
        self.scheme.train(as_dataset(dataset))
        return self

    def hash_value(self, table_id: int, vector: Any) -> int:
        """
        Bucket id of a vector in one table.

        Args:
            table_id: Table number in [0, L).
            vector: 1D vector of length D.

        Returns:
            Bucket id in [0, M).
        """
        return self.scheme.hash_value(table_id, vector)

    def insert(self, key: int, vector: Any) -> "LshIndex":
        """
        Add a vector to the bucket it hashes to in every table.

        Inserting the same key twice stores it twice.

        Args:
            key: Unsigned 32-bit key, usually the row number of the vector.
            vector: 1D vector of length D.

        Returns:
            self for method chaining.
        """
        key = _check_key(key)
        vector = self.scheme.as_vector(vector)
        bucket_ids = [self.scheme.hash_value(k, vector) for k in range(self.param.L)]
        for table, bucket_id in zip(self._tables, bucket_ids):
            table.setdefault(bucket_id, []).append(key)
        return self

    def hash(
        self,
        dataset: Any,
        progress: Optional[ProgressCallback] = None,
        batch_size: int = 1024,
    ) -> "LshIndex":
        """
        Insert every row of a dataset, keyed by its row number.

        Bucket ids for the whole dataset are computed before any bucket is
        touched, so a failure leaves the tables unchanged.

        Args:
            dataset: 2D array or dataset view with vectors of dimension D.
            progress: Called as progress(done, total) after each batch.
            batch_size: Number of rows hashed at once.

        Returns:
            self for method chaining.
        """
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        dataset = as_dataset(dataset)
        self.scheme.check_dim(dataset.dim())
        self.scheme.require_trained()
        total = dataset.size()
        if total > UINT_MAX + 1:
            raise ConfigurationError(f"Dataset of {total} rows has keys beyond {UINT_MAX}")

        n_tables = self.param.L
        # One uint array of shape (L, batch) per batch
        batches = []
        for start in range(0, total, batch_size):
            stop = min(start + batch_size, total)
            rows = take_rows(dataset, range(start, stop))
            batches.append(np.stack([self.scheme.hash_values(k, rows) for k in range(n_tables)]))
            if progress is not None:
                progress(stop, total)

        for batch_number, bucket_ids in enumerate(batches):
            start = batch_number * batch_size
            for table, table_ids in zip(self._tables, bucket_ids):
                for key, bucket_id in enumerate(table_ids.tolist(), start):
                    table.setdefault(bucket_id, []).append(key)

        logger.info(f"Hashed {total} vectors into {n_tables} tables")
        return self

    bulk_hash = hash

    def query(self, vector: Any, scanner: Scanner) -> Any:
        """
        Find approximate nearest neighbours of a vector.

        Every table is consulted. Keys are forwarded once per occurrence,
        so a point present in several tables reaches the scanner several
        times; deduplication is up to the scanner.

        Args:
            vector: 1D query vector of length D.
            scanner: Receives reset(vector), then one call per candidate key,
                then finalize().

        Returns:
            Whatever scanner.finalize() returns.
        """
        vector = self.scheme.as_vector(vector)
        bucket_ids = [self.scheme.hash_value(k, vector) for k in range(self.param.L)]

        scanner.reset(vector)
        for table, bucket_id in zip(self._tables, bucket_ids):
            for key in table.get(bucket_id, ()):
                scanner(key)
        return scanner.finalize()

    def save(self, path: str) -> None:
        """
        Save the index as a binary file.

        The file holds the persisted parameters, then for every table its
        fold weights, its buckets and the scheme's learned matrices. Numbers
        are written in the native widths and byte order of this host.

        Args:
            path: Destination file, overwritten.
        """
        self.scheme.require_trained()
        writer = BinaryWriter()
        self.scheme.write_header(writer)
        for k in range(self.param.L):
            self.scheme.write_table_head(writer, k)
            write_buckets(writer, self._tables[k])
            self.scheme.write_table_tail(writer, k)

        data = writer.getvalue()
        with open(path, "wb") as f:
            f.write(data)
        logger.info(f"Saved index with {self.param.L} tables to {path} ({len(data)} bytes)")

    def load(self, path: str, seed: Any = None) -> "LshIndex":
        """
        Replace the whole index with the contents of a file.

        Nothing changes if the file cannot be read or decoded.

        Args:
            path: File written by save() with the same scheme.
            seed: Seed or numpy Generator for later retraining.

        Returns:
            self for method chaining.

        Raises:
            OSError: If the file cannot be read.
            IndexFormatError: If the file is truncated or inconsistent.
        """
        scheme, tables = _decode(_read_file(path), type(self.scheme), seed)
        self.scheme = scheme
        self._tables = tables
        logger.info(f"Loaded index with {scheme.param.L} tables from {path}")
        return self

    @classmethod
    def open(
        cls, path: str, seed: Any = None, scheme_cls: Optional[type] = None
    ) -> "LshIndex":
        """
        Create an index from a file.

        Args:
            path: File written by save().
            seed: Seed or numpy Generator for later retraining.
            scheme_cls: Scheme that wrote the file. Defaults to the scheme
                of this index class.
        """
        scheme_cls = scheme_cls or cls.scheme_cls
        if scheme_cls is None:
            raise ConfigurationError("scheme_cls is required to open a generic LshIndex")
        scheme, tables = _decode(_read_file(path), scheme_cls, seed)
        index = cls.__new__(cls)
        LshIndex.__init__(index, scheme)
        index._tables = tables
        logger.info(f"Opened index with {scheme.param.L} tables from {path}")
        return index


class ItqLsh(LshIndex):
    """
    LSH index with Iterative Quantization hash functions.

    Needs train() on a dataset before anything can be inserted.
    """

    Parameter = ItqParameter
    scheme_cls = ItqScheme

    def __init__(self, param: ItqParameter, seed: Any = None):
        super().__init__(ItqScheme(param, seed))


class RhpLsh(LshIndex):
    """LSH index with random hyperplane hash functions. No training needed."""

    Parameter = Parameter
    scheme_cls = RandomHyperplaneScheme

    def __init__(self, param: Parameter, seed: Any = None):
        super().__init__(RandomHyperplaneScheme(param, seed))


def _check_key(key: Any) -> int:
    if isinstance(key, bool) or not isinstance(key, (int, np.integer)):
        raise ConfigurationError(f"Key must be an integer, got {key!r}")
    key = int(key)
    if not 0 <= key <= UINT_MAX:
        raise ConfigurationError(f"Key {key} is outside [0, {UINT_MAX}]")
    return key


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _decode(
    data: bytes, scheme_cls: type, seed: Any = None
) -> tuple[HashScheme, list[dict[int, list[int]]]]:
    """Decode a saved index into a new scheme and new bucket tables."""
    reader = BinaryReader(data)
    scheme = scheme_cls.read_header(reader, seed)
    param = scheme.param
    tables = []
    for k in range(param.L):
        scheme.read_table_head(reader, k)
        tables.append(read_buckets(reader, param.M, k))
        scheme.read_table_tail(reader, k)
    reader.expect_end()
    scheme.finish_load()
    return scheme, tables
