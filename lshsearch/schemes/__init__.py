"""
Hash schemes.

A scheme turns a vector into one bucket id per table. ItqScheme learns its
hash functions from the data, RandomHyperplaneScheme draws them at random.
"""

from lshsearch.schemes.base import HashScheme, Parameter
from lshsearch.schemes.hyperplane import RandomHyperplaneScheme
from lshsearch.schemes.itq import ItqParameter, ItqScheme

__all__ = [
    "HashScheme",
    "ItqParameter",
    "ItqScheme",
    "Parameter",
    "RandomHyperplaneScheme",
]
