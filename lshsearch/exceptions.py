"""
Exceptions raised by lshsearch.

Every error the library raises on purpose derives from LshError, so callers
can catch the whole family at once. File-system failures are not wrapped and
surface as the builtin OSError.
"""


class LshError(Exception):
    """Base class for lshsearch errors."""


class ConfigurationError(LshError, ValueError):
    """
    Parameters or inputs do not match the index configuration.

    Raised for invalid parameters, vectors whose length differs from the
    index dimension, datasets too small for the requested sample size and
    keys or table numbers out of range.
    """


class TrainingError(LshError, RuntimeError):
    """Training produced no usable hash functions (degenerate sample)."""


class NotTrainedError(LshError, RuntimeError):
    """A hash was requested from a scheme that was neither trained nor loaded."""


class IndexFormatError(LshError, ValueError):
    """A serialized index is truncated or internally inconsistent."""
