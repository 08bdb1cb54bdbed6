"""
Iterative Quantization (ITQ) hashing.

Every table learns its own hash function from a random sample of the
dataset: a PCA basis reducing vectors to N dimensions, followed by an
orthogonal rotation chosen so that the sign bits of the rotated coordinates
lose as little information as possible.

Reference:
    Gong Y, Lazebnik S, Gordo A, Perronnin F. Iterative quantization: A
    procrustean approach to learning binary codes for large-scale image
    retrieval. IEEE TPAMI, 2013, 35(12): 2916-2929.
"""

import logging
from dataclasses import dataclass, replace
from typing import ClassVar, Optional

import numpy as np

from lshsearch.codec import FLOAT, BinaryReader, BinaryWriter
from lshsearch.dataset import DatasetView, take_rows
from lshsearch.exceptions import ConfigurationError, TrainingError
from lshsearch.schemes.base import HashScheme, Parameter, read_matrix

logger = logging.getLogger(__name__)

# Smallest kept eigenvalue relative to the largest one
EIGEN_RTOL = 1e-10


@dataclass
class ItqParameter(Parameter):
    """
    ITQ parameters.

    Attributes:
        S: Number of dataset rows sampled to train each table.
        I: Number of rotation refinement iterations. Only used by training,
            not saved with the index (None after loading).
    """

    S: int
    I: Optional[int] = None

    persisted_fields: ClassVar[tuple[str, ...]] = ("M", "L", "D", "N", "S")

    def validate(self) -> None:
        super().validate()
        if self.N > self.D:
            raise ConfigurationError(
                f"Code length N={self.N} cannot exceed the dimension D={self.D}"
            )
        if self.S < 2:
            raise ConfigurationError(f"Sample size S must be at least 2, got {self.S}")
        if self.I is not None and (not isinstance(self.I, (int, np.integer)) or self.I < 0):
            raise ConfigurationError(f"Iteration count I must be a non-negative integer, got {self.I!r}")


class ItqScheme(HashScheme):
    """
    ITQ hash functions for L tables.

    Learned state per table k:
    - basis[k], shape (N, D): PCA basis, one principal direction per row.
    - rotation[k], shape (N, N): transposed ITQ rotation.

    A vector v hashes to the sign pattern of rotation[k] @ (basis[k] @ v),
    folded into a bucket id with the table's weights.
    """

    parameter_cls = ItqParameter
    trainable = True

    def _reset_state(self) -> None:
        self._basis: Optional[np.ndarray] = None
        self._rotation: Optional[np.ndarray] = None

    @property
    def is_trained(self) -> bool:
        return self._basis is not None

    @property
    def iterations(self) -> Optional[int]:
        """Iteration count I. Setting it redraws nothing, so a loaded index can be retrained."""
        return self._param.I

    @iterations.setter
    def iterations(self, value: Optional[int]) -> None:
        param = replace(self._param, I=value)
        param.validate()
        self._param = param

    @property
    def basis(self) -> Optional[np.ndarray]:
        return self._basis

    @property
    def rotation(self) -> Optional[np.ndarray]:
        return self._rotation

    def train(self, dataset: DatasetView) -> None:
        """
        Learn a basis and a rotation for every table.

        Each table draws its own sample of S distinct rows, so tables end up
        with different hash functions. Nothing is installed unless every
        table trained successfully.

        Args:
            dataset: At least S vectors of dimension D.

        Raises:
            ConfigurationError: If the dimension does not match, the dataset
                has fewer than S rows, or I is not set.
            TrainingError: If the sample is degenerate (too few distinct
                directions to fill N principal components).
        """
        param = self._param
        if param.I is None:
            raise ConfigurationError("Iteration count I must be set to train")
        self.check_dim(dataset.dim())
        if dataset.size() < param.S:
            raise ConfigurationError(
                f"Dataset has {dataset.size()} vectors, fewer than the sample size S={param.S}"
            )
        if param.S - 1 < param.N:
            raise TrainingError(
                f"A sample of S={param.S} vectors spans at most {param.S - 1} "
                f"directions, cannot learn N={param.N} components"
            )

        logger.info(
            f"Training ITQ: {param.L} tables, {param.S} samples, "
            f"{param.N} bits, {param.I} iterations"
        )
        basis = np.empty((param.L, param.N, param.D), dtype=FLOAT)
        rotation = np.empty((param.L, param.N, param.N), dtype=FLOAT)
        for k in range(param.L):
            indices = np.sort(self._rng.choice(dataset.size(), size=param.S, replace=False))
            sample = take_rows(dataset, indices).astype(np.float64)
            pca, coords = self._pca(sample, k)
            omega, error = self._iterate(coords)
            logger.debug(f"Table {k}: quantization error {error:.6f}")
            basis[k] = pca.T
            rotation[k] = omega.T

        self._basis = basis
        self._rotation = rotation

    def _pca(self, sample: np.ndarray, table_id: int) -> tuple[np.ndarray, np.ndarray]:
        """
        Principal components of a sample.

        Returns:
            The (D, N) matrix of the N leading eigenvectors of the sample
            covariance, in ascending eigenvalue order, and the (S, N)
            coordinates of the centered sample in that basis.
        """
        if not np.isfinite(sample).all():
            raise TrainingError(f"Table {table_id}: training sample contains non-finite values")

        centered = sample - sample.mean(axis=0)
        cov = (centered.T @ centered) / (sample.shape[0] - 1)
        try:
            eigvals, eigvecs = np.linalg.eigh(cov)
        except np.linalg.LinAlgError as e:
            raise TrainingError(f"Table {table_id}: eigen decomposition failed: {e}") from e

        n = self._param.N
        largest = eigvals[-1]
        if not largest > 0:
            raise TrainingError(f"Table {table_id}: training sample has zero variance")
        if not eigvals[-n] > largest * EIGEN_RTOL:
            raise TrainingError(
                f"Table {table_id}: covariance is rank deficient, fewer than "
                f"{n} significant principal components"
            )

        pca = eigvecs[:, -n:]
        return pca, centered @ pca

    def _iterate(self, coords: np.ndarray) -> tuple[np.ndarray, float]:
        """
        Refine a random rotation by alternating between binarizing the
        rotated coordinates and solving the orthogonal Procrustes problem.

        Returns:
            The (N, N) rotation and the mean squared quantization error of
            the codes it produces.
        """
        n = self._param.N
        gaussian = self._rng.standard_normal(size=(n, n))
        try:
            omega, _, _ = np.linalg.svd(gaussian)
            for _ in range(self._param.I):
                codes = np.where(coords @ omega > 0, 1.0, -1.0)
                u, _, vt = np.linalg.svd(codes.T @ coords)
                omega = vt.T @ u.T
        except np.linalg.LinAlgError as e:
            raise TrainingError(f"ITQ rotation did not converge: {e}") from e

        if not np.isfinite(omega).all():
            raise TrainingError("ITQ rotation contains non-finite values")
        rotated = coords @ omega
        error = float(np.mean((np.where(rotated > 0, 1.0, -1.0) - rotated) ** 2))
        return omega, error

    def codes(self, table_id: int, vectors: np.ndarray) -> np.ndarray:
        # Same float32 accumulation whatever the input dtype.
        projected = vectors.astype(FLOAT, copy=False) @ self._basis[table_id].T
        return projected @ self._rotation[table_id].T > 0

    @classmethod
    def _min_table_bytes(cls, param: ItqParameter) -> int:
        return super()._min_table_bytes(param) + param.N * (param.D + param.N) * FLOAT.itemsize

    def _prepare_load(self) -> None:
        param = self._param
        self._basis = np.zeros((param.L, param.N, param.D), dtype=FLOAT)
        self._rotation = np.zeros((param.L, param.N, param.N), dtype=FLOAT)

    def write_table_tail(self, writer: BinaryWriter, table_id: int) -> None:
        # Row i of the basis is followed by row i of the rotation.
        writer.write_floats(
            np.concatenate([self._basis[table_id], self._rotation[table_id]], axis=1)
        )

    def read_table_tail(self, reader: BinaryReader, table_id: int) -> None:
        param = self._param
        rows = read_matrix(
            reader, param.N, param.D + param.N, f"table {table_id} basis and rotation"
        )
        self._basis[table_id] = rows[:, :param.D]
        self._rotation[table_id] = rows[:, param.D:]
