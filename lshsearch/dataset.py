"""
Read-only dataset views consumed by training, bulk hashing and scanning.

Any object exposing ``size()``, ``dim()`` and integer indexing works as a
dataset. Plain numpy arrays are wrapped in ArrayDataset, which also supports
gathering many rows at once.
"""

from typing import Any, Protocol, Sequence, runtime_checkable

import numpy as np

from lshsearch.exceptions import ConfigurationError


@runtime_checkable
class DatasetView(Protocol):
    """Read access to ``size()`` vectors of length ``dim()``."""

    def size(self) -> int:
        ...

    def dim(self) -> int:
        ...

    def __getitem__(self, index: int) -> Any:
        ...


class ArrayDataset:
    """
    Dataset view over a 2D numpy array.

    The array is kept in its own dtype (integer datasets stay integer) and
    is not copied: the view shares its memory but cannot write to it.

    Example:
        >>> data = ArrayDataset(np.zeros((10, 4), dtype=np.float32))
        >>> data.size(), data.dim()
        (10, 4)
    """

    def __init__(self, array: Any) -> None:
        array = np.asarray(array)
        if array.ndim != 2:
            raise ConfigurationError(f"Dataset must be a 2D array, got shape {array.shape}")
        if not np.issubdtype(array.dtype, np.number) or np.issubdtype(array.dtype, np.complexfloating):
            raise ConfigurationError(f"Dataset must hold real numbers, got dtype {array.dtype}")
        view = array.view()
        view.setflags(write=False)
        self._array = view

    @property
    def array(self) -> np.ndarray:
        return self._array

    def size(self) -> int:
        return self._array.shape[0]

    def dim(self) -> int:
        return self._array.shape[1]

    def __getitem__(self, index: int) -> np.ndarray:
        return self._array[index]

    def __len__(self) -> int:
        return self.size()

    def rows(self, indices: Sequence[int]) -> np.ndarray:
        """Gather the given rows as a 2D array."""
        return self._array[np.asarray(indices, dtype=np.intp)]


def as_dataset(data: Any) -> DatasetView:
    """
    Coerce data into a dataset view.

    Args:
        data: A DatasetView, a 2D numpy array or a nested sequence of numbers.

    Returns:
        A dataset view over data.

    Raises:
        ConfigurationError: If data cannot be viewed as a 2D dataset.
    """
    if isinstance(data, ArrayDataset):
        return data
    if isinstance(data, (np.ndarray, list, tuple)):
        return ArrayDataset(data)
    if isinstance(data, DatasetView):
        return data
    raise ConfigurationError(
        f"Expected an array or an object with size(), dim() and indexing, "
        f"got {type(data).__name__}"
    )


def take_rows(dataset: DatasetView, indices: Sequence[int]) -> np.ndarray:
    """Gather rows of any dataset view into a 2D array."""
    rows = getattr(dataset, "rows", None)
    if rows is not None:
        return np.asarray(rows(indices))
    if len(indices) == 0:
        return np.empty((0, dataset.dim()))
    return np.stack([np.asarray(dataset[int(i)]) for i in indices])
