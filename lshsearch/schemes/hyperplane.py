"""
Random hyperplane hashing.

Each bit is the side of a random hyperplane through the origin that the
vector falls on, which makes collisions likely for vectors at a small angle
(cosine similarity). Nothing is learned: the hyperplanes are drawn when the
scheme is reset.
"""

import numpy as np

from lshsearch.codec import FLOAT, BinaryReader, BinaryWriter
from lshsearch.schemes.base import HashScheme, Parameter, read_matrix


class RandomHyperplaneScheme(HashScheme):
    """
    Random projections with sign hashing.

    hyperplanes[k] has shape (N, D), one Gaussian normal vector per bit.
    """

    parameter_cls = Parameter
    trainable = False

    def _reset_state(self) -> None:
        param = self._param
        self._hyperplanes = self._rng.standard_normal(
            size=(param.L, param.N, param.D)
        ).astype(FLOAT)

    @property
    def is_trained(self) -> bool:
        return True

    @property
    def hyperplanes(self) -> np.ndarray:
        return self._hyperplanes

    def codes(self, table_id: int, vectors: np.ndarray) -> np.ndarray:
        return vectors.astype(FLOAT, copy=False) @ self._hyperplanes[table_id].T > 0

    @classmethod
    def _min_table_bytes(cls, param: Parameter) -> int:
        return super()._min_table_bytes(param) + param.N * param.D * FLOAT.itemsize

    def _prepare_load(self) -> None:
        param = self._param
        self._hyperplanes = np.zeros((param.L, param.N, param.D), dtype=FLOAT)

    def write_table_tail(self, writer: BinaryWriter, table_id: int) -> None:
        writer.write_floats(self._hyperplanes[table_id])

    def read_table_tail(self, reader: BinaryReader, table_id: int) -> None:
        param = self._param
        self._hyperplanes[table_id] = read_matrix(
            reader, param.N, param.D, f"table {table_id} hyperplanes"
        )
