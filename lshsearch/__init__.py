"""
lshsearch - In-memory approximate nearest neighbour search with LSH.

lshsearch hashes vectors into several bucket tables with a locality-sensitive
hash scheme (learned Iterative Quantization or random hyperplanes), looks up
the buckets of a query to collect candidates, and reranks the candidates by
true distance.
"""

from lshsearch.__version__ import __version__
from lshsearch.dataset import ArrayDataset, as_dataset
from lshsearch.exceptions import (
    ConfigurationError,
    IndexFormatError,
    LshError,
    NotTrainedError,
    TrainingError,
)
from lshsearch.index import ItqLsh, LshIndex, RhpLsh
from lshsearch.scanner import TopKScanner
from lshsearch.schemes import (
    HashScheme,
    ItqParameter,
    ItqScheme,
    Parameter,
    RandomHyperplaneScheme,
)

__all__ = [
    "ArrayDataset",
    "ConfigurationError",
    "HashScheme",
    "IndexFormatError",
    "ItqLsh",
    "ItqParameter",
    "ItqScheme",
    "LshError",
    "LshIndex",
    "NotTrainedError",
    "Parameter",
    "RandomHyperplaneScheme",
    "RhpLsh",
    "TopKScanner",
    "TrainingError",
    "__version__",
    "as_dataset",
]
