"""
Hash scheme interface shared by every LSH variant.

A hash scheme owns the per-table state that turns a vector into a bucket id:
the learned (or randomly drawn) projections and the fold weights. Bucket
storage, insertion, querying and the bucket part of the file format live in
LshIndex and are the same for every scheme.
"""

import abc
from dataclasses import dataclass, fields, replace
from typing import Any, ClassVar

import numpy as np

from lshsearch.codec import UINT, UINT_MAX, BinaryReader, BinaryWriter
from lshsearch.dataset import DatasetView
from lshsearch.exceptions import ConfigurationError, IndexFormatError, NotTrainedError


@dataclass
class Parameter:
    """
    Index parameters shared by every scheme.

    Attributes:
        M: Number of buckets per hash table.
        L: Number of hash tables.
        D: Dimension of the indexed vectors.
        N: Code length, the number of sign bits per vector and table.
    """

    M: int
    L: int
    D: int
    N: int

    # Header fields in on-disk order
    persisted_fields: ClassVar[tuple[str, ...]] = ("M", "L", "D", "N")

    def validate(self) -> None:
        for name in self.persisted_fields:
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or isinstance(value, bool):
                raise ConfigurationError(f"Parameter {name} must be an integer, got {value!r}")
            if not 1 <= value <= UINT_MAX:
                raise ConfigurationError(
                    f"Parameter {name} must be between 1 and {UINT_MAX}, got {value}"
                )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class HashScheme(abc.ABC):
    """
    Per-table hash functions of one LSH scheme.

    Subclasses define how sign bits are computed (``codes``) and how their
    learned state is trained and serialized. Folding the bits into a bucket
    id is common: every set bit adds its table's random weight, and the sum
    modulo M is the bucket id.
    """

    parameter_cls: ClassVar[type] = Parameter
    trainable: ClassVar[bool] = False

    def __init__(self, param: Parameter, seed: Any = None) -> None:
        self.reset(param, seed)

    @property
    def param(self) -> Parameter:
        """Copy of the installed parameters."""
        return replace(self._param)

    @property
    def weights(self) -> np.ndarray:
        """Fold weights, shape (L, N), values in [0, M)."""
        return self._weights

    def reset(self, param: Parameter, seed: Any = None) -> None:
        """
        Install new parameters and draw fresh fold weights.

        Args:
            param: Parameters, validated here. The scheme keeps its own
                copy, so later changes to param have no effect.
            seed: Seed or numpy Generator for every random draw of this
                scheme. None draws fresh entropy from the OS.
        """
        if type(param) is not self.parameter_cls:
            raise ConfigurationError(
                f"{type(self).__name__} needs a {self.parameter_cls.__name__}, "
                f"got {type(param).__name__}"
            )
        param = replace(param)
        param.validate()
        self._param = param
        self._rng = np.random.default_rng(seed)
        self._weights = self._rng.integers(
            0, param.M, size=(param.L, param.N), dtype=np.int64
        ).astype(UINT)
        self._weights.setflags(write=False)
        self._reset_state()

    @abc.abstractmethod
    def _reset_state(self) -> None:
        """Drop (or draw) the per-table hash state after a reset."""

    @property
    @abc.abstractmethod
    def is_trained(self) -> bool:
        """Whether the scheme can hash vectors."""

    def train(self, dataset: DatasetView) -> None:
        """Learn the per-table hash state from a dataset. No-op by default."""
        self.check_dim(dataset.dim())

    @abc.abstractmethod
    def codes(self, table_id: int, vectors: np.ndarray) -> np.ndarray:
        """
        Sign bits of a batch of vectors in one table.

        Args:
            table_id: Table number in [0, L).
            vectors: Array of shape (n, D), already validated.

        Returns:
            Boolean array of shape (n, N).
        """

    def check_dim(self, dim: int) -> None:
        if dim != self._param.D:
            raise ConfigurationError(
                f"Vector dimension {dim} does not match index dimension {self._param.D}"
            )

    def check_table(self, table_id: int) -> None:
        if not 0 <= table_id < self._param.L:
            raise ConfigurationError(
                f"Table {table_id} does not exist, the index has {self._param.L} tables"
            )

    def require_trained(self) -> None:
        if not self.is_trained:
            raise NotTrainedError(
                f"{type(self).__name__} must be trained or loaded before hashing"
            )

    def fold(self, table_id: int, codes: np.ndarray) -> np.ndarray:
        """
        Fold sign bits into bucket ids.

        The weighted sum wraps around at 2**32 like an unsigned int before
        the modulo, so ids agree with index files written by 32-bit code.
        """
        sums = np.where(codes, self._weights[table_id], 0).sum(axis=-1, dtype=np.uint64)
        return ((sums & np.uint64(UINT_MAX)) % np.uint64(self._param.M)).astype(UINT)

    def hash_values(self, table_id: int, vectors: np.ndarray) -> np.ndarray:
        """Bucket ids of a batch of vectors, shape (n,)."""
        self.check_table(table_id)
        self.require_trained()
        vectors = np.asarray(vectors)
        if vectors.ndim != 2:
            raise ConfigurationError(f"Vectors must be a 2D array, got shape {vectors.shape}")
        self.check_dim(vectors.shape[1])
        return self.fold(table_id, self.codes(table_id, vectors))

    def as_vector(self, vector: Any) -> np.ndarray:
        """A single vector of length D, given as shape (D,) or (1, D)."""
        vector = np.asarray(vector)
        if vector.ndim == 2 and vector.shape[0] == 1:
            vector = vector[0]
        if vector.ndim != 1:
            raise ConfigurationError(
                f"Expected a single vector of shape ({self._param.D},), got shape {vector.shape}"
            )
        self.check_dim(vector.shape[0])
        return vector

    def hash_value(self, table_id: int, vector: Any) -> int:
        """Bucket id of a single vector in one table."""
        vector = self.as_vector(vector)
        return int(self.hash_values(table_id, vector[np.newaxis, :])[0])

    # -- serialization hooks --

    def write_header(self, writer: BinaryWriter) -> None:
        for name in self._param.persisted_fields:
            writer.write_uint(int(getattr(self._param, name)))

    @classmethod
    def read_header(cls, reader: BinaryReader, seed: Any = None) -> "HashScheme":
        """
        Read the parameter header and return a new scheme sized for it.

        The returned scheme has no trained state until its table sections are
        read. Parameters that are not persisted are left as None.

        Args:
            reader: Reader positioned at the start of the file.
            seed: Seed or numpy Generator for later retraining.
        """
        values = {
            name: reader.read_uint(f"parameter {name}")
            for name in cls.parameter_cls.persisted_fields
        }
        for f in fields(cls.parameter_cls):
            values.setdefault(f.name, None)
        param = cls.parameter_cls(**values)
        try:
            param.validate()
        except ConfigurationError as e:
            raise IndexFormatError(f"Invalid parameters in index file: {e}") from e
        needed = param.L * cls._min_table_bytes(param)
        if needed > reader.remaining:
            raise IndexFormatError(
                f"Truncated index: {param.L} tables need at least {needed} bytes, "
                f"only {reader.remaining} left"
            )
        scheme = cls.__new__(cls)
        scheme._param = param
        scheme._rng = np.random.default_rng(seed)
        scheme._weights = np.zeros((param.L, param.N), dtype=UINT)
        scheme._prepare_load()
        return scheme

    @classmethod
    def _min_table_bytes(cls, param: Parameter) -> int:
        """Smallest possible size of one table section: weights and an empty bucket list."""
        return (param.N + 1) * UINT.itemsize

    def _prepare_load(self) -> None:
        """Allocate per-table state before the table sections are read."""
        self._reset_state()

    def write_table_head(self, writer: BinaryWriter, table_id: int) -> None:
        writer.write_uints(self._weights[table_id])

    def read_table_head(self, reader: BinaryReader, table_id: int) -> None:
        weights = reader.read_uints(self._param.N, f"table {table_id} weights")
        if (weights >= self._param.M).any():
            raise IndexFormatError(
                f"Table {table_id} has fold weights not below M={self._param.M}"
            )
        self._weights[table_id] = weights

    @abc.abstractmethod
    def write_table_tail(self, writer: BinaryWriter, table_id: int) -> None:
        """Write the learned state of one table, after its buckets."""

    @abc.abstractmethod
    def read_table_tail(self, reader: BinaryReader, table_id: int) -> None:
        """Read the learned state of one table, after its buckets."""

    def finish_load(self) -> None:
        """Called once every table section has been read."""
        self._weights.setflags(write=False)


def read_matrix(reader: BinaryReader, rows: int, cols: int, field: str) -> np.ndarray:
    """Read a row-major float32 matrix and reject non-finite values."""
    values = reader.read_floats(rows * cols, field).reshape(rows, cols)
    if not np.isfinite(values).all():
        raise IndexFormatError(f"{field} contains non-finite values")
    return values

