"""
Cross-Similarity Parameters Module

All tunable options for the batch and streaming orchestrators.

The numeric kernel never imports this module: every kernel function takes
its parameters explicitly. Orchestrators unpack a params record and pass the
fields through.

USAGE:
    from crosssim.params import CrossSimilarityParams, DEFAULT_PARAMS

    # Use default params
    params = DEFAULT_PARAMS

    # Binary OTI scoring with a shorter embedding
    custom = CrossSimilarityParams(oti_binary=True, embed_dimension=4)
"""

from dataclasses import dataclass, replace
from typing import Dict

import numpy as np

from crosssim.errors import ConfigurationError


@dataclass(frozen=True)
class CrossSimilarityParams:
    """
    Per-invocation cross-similarity configuration.

    Attributes:
        tau: Embedding stride in frames, also the streaming release size (default 1)
        embed_dimension: Frames stacked per embedded vector, 1 = no embedding (default 9)
        kappa: Percentile fraction for the adaptive distance threshold (default 0.095)
        noti: Number of circular shifts tried for transposition (default 12 = one octave)
        oti: Rotate the reference by its optimal transposition before embedding (default True)
        to_blocked: Build stacked embeddings on the binary OTI path (default True)
        oti_binary: Use binary OTI scoring instead of thresholded distances (default False)
        optimise_threshold: Skip percentile thresholding on the query axis (default False)
    """
    tau: int = 1
    embed_dimension: int = 9
    kappa: float = 0.095
    noti: int = 12
    oti: bool = True
    to_blocked: bool = True
    oti_binary: bool = False
    optimise_threshold: bool = False

    @property
    def min_frames_size(self) -> int:
        """Query frames needed for one streaming step."""
        return self.embed_dimension + 1

    def with_overrides(self, **changes) -> 'CrossSimilarityParams':
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict:
        """
        Export all parameters as a flat dictionary.

        Returns:
            Dictionary with all parameter values
        """
        return {
            'tau': self.tau,
            'embed_dimension': self.embed_dimension,
            'kappa': self.kappa,
            'noti': self.noti,
            'oti': self.oti,
            'to_blocked': self.to_blocked,
            'oti_binary': self.oti_binary,
            'optimise_threshold': self.optimise_threshold,
        }


# Default batch configuration
DEFAULT_PARAMS = CrossSimilarityParams()

# Streaming steps see a handful of query frames, so the query axis is not
# thresholded
DEFAULT_STREAMING_PARAMS = CrossSimilarityParams(optimise_threshold=True)


def _is_int(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def validate_params(params: CrossSimilarityParams) -> bool:
    """
    Validate parameters for consistency.

    Parameters:
        params: CrossSimilarityParams instance to validate

    Returns:
        True if params are valid

    Raises:
        ConfigurationError: If any option is out of range or has the wrong type
    """
    if not _is_int(params.tau) or params.tau < 1:
        raise ConfigurationError(f"tau must be an integer >= 1, got {params.tau!r}")
    if not _is_int(params.embed_dimension) or params.embed_dimension < 1:
        raise ConfigurationError(
            f"embed_dimension must be an integer >= 1, got {params.embed_dimension!r}"
        )
    if not _is_int(params.noti) or params.noti < 0:
        raise ConfigurationError(f"noti must be an integer >= 0, got {params.noti!r}")
    if not isinstance(params.kappa, (int, float, np.integer, np.floating)) or not (0.0 <= params.kappa <= 1.0):
        raise ConfigurationError(f"kappa must be in [0, 1], got {params.kappa!r}")

    for name in ('oti', 'to_blocked', 'oti_binary', 'optimise_threshold'):
        value = getattr(params, name)
        if not isinstance(value, (bool, np.bool_)):
            raise ConfigurationError(
                f"Invalid type for parameter '{name}', expects Boolean type, got {type(value).__name__}"
            )

    return True


# Validate defaults on import
validate_params(DEFAULT_PARAMS)
validate_params(DEFAULT_STREAMING_PARAMS)
