"""
Error Types

All failures raised by the cross-similarity kernel and orchestrators.
Every error is a ValueError so callers that already guard against invalid
values keep working.
"""


class CrossSimilarityError(ValueError):
    """Base class for all cross-similarity failures."""


class EmptyInputError(CrossSimilarityError):
    """A query or reference feature sequence has zero frames."""


class DegenerateInputError(CrossSimilarityError):
    """Embedding parameters leave zero or negative usable frames."""


class EmptyMatrixError(CrossSimilarityError):
    """Pairwise distance computation produced an empty matrix."""


class ConfigurationError(CrossSimilarityError):
    """An option is out of range or a boolean option is not a boolean."""


class DimensionMismatchError(CrossSimilarityError):
    """Frame or matrix dimensions are incompatible."""
