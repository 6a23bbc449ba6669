"""
Cross-Similarity Kernel Module - Core Numeric Functions

This module contains the deterministic kernel for chroma cross-similarity.

DESIGN CONSTRAINTS:
- No I/O operations (no file reading/writing)
- No plotting or visualization
- Explicit parameters (no params module imports)
- Value semantics: inputs are never modified in place
- Only numpy and scipy dependencies

PROCESSING PIPELINE:
1. Optional transposition of the reference (global chroma -> OTI -> rotation)
2. Time-delay embedding (frames -> stacked frames)
3a. Pairwise distances -> percentile thresholds -> element-wise joined binary matrices
3b. Per-pair OTI -> binary match/mismatch matrix

References:
- Serra, J., Gomez, E., & Herrera, P. (2008). Transposing chroma
  representations to a common key.
- Serra, J., Serra, X., & Andrzejak, R. G. (2009). Cross recurrence
  quantification for cover song identification.
- Serra, J., et al. (2008). Chroma binary similarity and local alignment
  applied to cover song identification.
"""

import warnings
from typing import Callable, Optional

import numpy as np
from scipy.spatial.distance import cdist

from crosssim.errors import (
    ConfigurationError,
    DegenerateInputError,
    DimensionMismatchError,
    EmptyInputError,
    EmptyMatrixError,
)


# =============================================================================
# DEFAULT PARAMETERS (Explicit - No Params Imports)
# =============================================================================

DEFAULT_TAU: int = 1
DEFAULT_EMBED_DIMENSION: int = 9
DEFAULT_KAPPA: float = 0.095
DEFAULT_NOTI: int = 12

# Binary OTI similarity coefficients
MATCH_COEF: float = 1.0
MISMATCH_COEF: float = 0.0

# OTI shifts counted as a match: no transposition or one semitone
MATCH_SHIFTS = (0, 1)

Combine = Callable[[np.ndarray, np.ndarray], np.ndarray]


# =============================================================================
# FEATURE SEQUENCE HELPERS
# =============================================================================

def validate_feature_sequence(frames, name: str = 'feature') -> np.ndarray:
    """
    Convert a feature sequence to a 2D float array and check its shape.

    CONTRACT:
    - Input: array-like of frames, each frame a sequence of bin values
    - Output: (n_frames, n_bins) float64 array
    - Zero frames -> EmptyInputError
    - Ragged frames or non-2D input -> DimensionMismatchError

    Parameters:
        frames: Feature sequence (ndarray or nested sequences)
        name: Sequence name used in error messages

    Returns:
        Feature array (n_frames, n_bins)
    """
    if isinstance(frames, np.ndarray):
        if frames.ndim == 0 or frames.shape[0] == 0:
            raise EmptyInputError(f"input {name} array is empty.")
        feature = frames.astype(np.float64, copy=False)
    else:
        frames = list(frames)
        if len(frames) == 0:
            raise EmptyInputError(f"input {name} array is empty.")
        frame_shapes = {np.shape(frame) for frame in frames}
        if len(frame_shapes) != 1:
            raise DimensionMismatchError(
                f"all frames of {name} must have the same number of bins, got {sorted(frame_shapes)}"
            )
        feature = np.asarray(frames, dtype=np.float64)

    if feature.ndim != 2:
        raise DimensionMismatchError(
            f"{name} must have shape (n_frames, n_bins), got {feature.shape}"
        )
    if feature.shape[1] == 0:
        raise EmptyInputError(f"input {name} frames have no bins.")

    return feature


def check_matching_bins(query_feature: np.ndarray, reference_feature: np.ndarray) -> None:
    """Raise DimensionMismatchError unless both sequences share a bin count."""
    if query_feature.shape[1] != reference_feature.shape[1]:
        raise DimensionMismatchError(
            f"query has {query_feature.shape[1]} bins but reference has "
            f"{reference_feature.shape[1]}"
        )


def global_average_chroma(feature: np.ndarray) -> np.ndarray:
    """
    Compute the global chroma vector of a sequence.

    CONTRACT:
    - Input: feature (n_frames, n_bins) float array
    - Output: (n_bins,) float array, per-bin sum divided by its maximum
    - Left unnormalised when the maximum is not positive

    Parameters:
        feature: Feature sequence

    Returns:
        Global chroma vector (n_bins,)
    """
    global_chroma = np.sum(feature, axis=0)
    max_value = np.max(global_chroma)
    if max_value > 0:
        global_chroma = global_chroma / max_value
    return global_chroma


def rotate_chroma(vector: np.ndarray, shift: int) -> np.ndarray:
    """Circularly rotate a vector so its last `shift` bins move to the front."""
    return np.roll(vector, shift)


def rotate_sequence(feature: np.ndarray, shift: int) -> np.ndarray:
    """Rotate the bin ordering of every frame in a sequence by `shift`."""
    return np.roll(feature, shift, axis=1)


# =============================================================================
# TIME-DELAY EMBEDDING
# =============================================================================

def to_time_embedding(
    feature: np.ndarray,
    m: int = DEFAULT_EMBED_DIMENSION,
    tau: int = DEFAULT_TAU
) -> np.ndarray:
    """
    Construct a stacked time-delay embedding of a feature sequence.

    CONTRACT:
    - Input: feature (n_frames, n_bins), m >= 1, tau >= 1
    - m == 1: the input is returned as is
    - Output: (n_frames - m*tau, n_bins*m) float array
    - Only rows 0, tau, 2*tau, ... are populated; rows off the stride stay zero
    - n_frames - m*tau <= 0 -> DegenerateInputError

    ALGORITHM:
    Row i is the concatenation of frames i, i+tau, ..., i+(m-1)*tau.

    Parameters:
        feature: Feature sequence (n_frames, n_bins)
        m: Embedding dimension (frames per stacked vector)
        tau: Embedding stride in frames

    Returns:
        Embedded sequence
    """
    if m == 1:
        return feature

    n_frames, n_bins = feature.shape
    increment = m * tau
    frame_size = n_frames - increment
    if frame_size <= 0:
        raise DegenerateInputError(
            f"embedding with m={m}, tau={tau} needs more than {increment} frames, got {n_frames}"
        )

    embedding = np.zeros((frame_size, n_bins * m), dtype=feature.dtype)
    for i in range(0, frame_size, tau):
        embedding[i] = feature[i:i + increment:tau].reshape(-1)

    return embedding


# =============================================================================
# OPTIMAL TRANSPOSITION INDEX
# =============================================================================

def optimal_transposition_index(
    chroma_a: np.ndarray,
    chroma_b: np.ndarray,
    nshifts: int = DEFAULT_NOTI
) -> int:
    """
    Find the circular shift that best aligns the key of B to the key of A.

    CONTRACT:
    - Input: two feature sequences with the same bin count, nshifts >= 0
    - Output: int in [0, nshifts]
    - Ties resolve to the lowest shift
    - optimal_transposition_index(A, A, n) == 0

    ALGORITHM:
    1. Reduce both sequences to normalised global chroma vectors
    2. For each shift k: dot(global_a, rotate(global_b, k))
    3. Return the argmax

    Parameters:
        chroma_a: Sequence providing the target key (n_frames_a, n_bins)
        chroma_b: Sequence to be transposed (n_frames_b, n_bins)
        nshifts: Highest shift tried

    Returns:
        Optimal transposition index
    """
    global_a = global_average_chroma(chroma_a)
    global_b = global_average_chroma(chroma_b)

    if nshifts > global_b.shape[0]:
        warnings.warn(
            f"nshifts={nshifts} exceeds the bin count ({global_b.shape[0]}); "
            "larger shifts wrap onto smaller ones",
            stacklevel=2
        )

    value_at_shifts = np.array([
        np.dot(global_a, rotate_chroma(global_b, k)) for k in range(nshifts + 1)
    ])

    return int(np.argmax(value_at_shifts))


# =============================================================================
# EUCLIDEAN DISTANCE THRESHOLDING
# =============================================================================

def pairwise_distance(embed_a: np.ndarray, embed_b: np.ndarray) -> np.ndarray:
    """
    Euclidean distance between every frame of A and every frame of B.

    Returns:
        Distance matrix (n_a, n_b)

    Raises:
        EmptyMatrixError: If the distance matrix is empty
    """
    distances = cdist(embed_a, embed_b, metric='euclidean')
    if distances.size == 0:
        raise EmptyMatrixError("empty array found inside euclidean cross similarity matrix.")
    return distances


def heaviside_step(values: np.ndarray) -> np.ndarray:
    """Binarise: values >= 0 -> 1, values < 0 -> 0."""
    return np.heaviside(values, 1.0)


def threshold_rows(distances: np.ndarray, kappa: float = DEFAULT_KAPPA) -> np.ndarray:
    """
    Binarise each row of a distance matrix against its own percentile.

    CONTRACT:
    - Input: distances (n_rows, n_cols), kappa in [0, 1]
    - Output: (n_rows, n_cols) array of {0, 1}
    - Entry is 1 when distance <= the row's kappa*100-th percentile
    - Percentile uses linear interpolation

    Parameters:
        distances: Distance matrix
        kappa: Percentile fraction

    Returns:
        Binary similarity matrix
    """
    thresholds = np.percentile(distances, kappa * 100, axis=1, keepdims=True)
    return heaviside_step(thresholds - distances)


def combine_similarity(
    similarity_x: np.ndarray,
    similarity_y_t: np.ndarray,
    combine: Optional[Combine] = None
) -> np.ndarray:
    """
    Join the query-axis and reference-axis binary matrices.

    Both inputs are laid out (n_query, n_reference). The default join is the
    element-wise product: an entry survives only when each frame is among
    the other's nearest neighbours (cross recurrence plot, Serra 2009).

    Parameters:
        similarity_x: Query-axis binary matrix
        similarity_y_t: Reference-axis binary matrix, transposed
        combine: Element-wise join of the two matrices (default numpy.multiply)

    Returns:
        Cross-similarity matrix (n_query, n_reference)

    Raises:
        DimensionMismatchError: If the two matrices differ in shape
    """
    if similarity_x.shape != similarity_y_t.shape:
        raise DimensionMismatchError(
            f"cannot combine {similarity_x.shape} with {similarity_y_t.shape}"
        )
    if combine is None:
        combine = np.multiply
    return np.asarray(combine(similarity_x, similarity_y_t))


def euclidean_cross_similarity(
    query_embedding: np.ndarray,
    reference_embedding: np.ndarray,
    kappa: float = DEFAULT_KAPPA,
    optimise_threshold: bool = False,
    combine: Optional[Combine] = None
) -> np.ndarray:
    """
    Thresholded Euclidean cross-similarity between two embedded sequences.

    CONTRACT:
    - Input: query_embedding (n_q, d), reference_embedding (n_r, d)
    - Output: (n_q, n_r) float32 matrix
    - Non-boolean optimise_threshold -> ConfigurationError

    ALGORITHM:
    1. D = pairwise distances (n_q, n_r)
    2. similarity_x: all ones if optimise_threshold, else rows of D thresholded
    3. similarity_y: rows of D^T thresholded, transposed back to (n_q, n_r)
    4. Combine similarity_x and similarity_y element by element

    Parameters:
        query_embedding: Embedded query sequence
        reference_embedding: Embedded reference sequence
        kappa: Percentile fraction for both axes
        optimise_threshold: Skip thresholding on the query axis
        combine: Element-wise join of the two binary matrices

    Returns:
        Cross-similarity matrix
    """
    distances = pairwise_distance(query_embedding, reference_embedding)
    t_distances = distances.T

    if not isinstance(optimise_threshold, (bool, np.bool_)):
        raise ConfigurationError(
            "Invalid type for parameter 'optimise_threshold', expects Boolean type"
        )
    if optimise_threshold:
        similarity_x = np.ones_like(distances)
    else:
        similarity_x = threshold_rows(distances, kappa)

    similarity_y_t = threshold_rows(t_distances, kappa).T

    csm = combine_similarity(similarity_x, similarity_y_t, combine)
    return csm.astype(np.float32)


# =============================================================================
# BINARY OTI SIMILARITY
# =============================================================================

def chroma_binary_sim_matrix(
    chroma_a: np.ndarray,
    chroma_b: np.ndarray,
    nshifts: int = DEFAULT_NOTI,
    match_coef: float = MATCH_COEF,
    mismatch_coef: float = MISMATCH_COEF
) -> np.ndarray:
    """
    Binary similarity from the per-pair optimal transposition index.

    CONTRACT:
    - Input: chroma_a (n_a, d), chroma_b (n_b, d), nshifts >= 0
    - Output: (n_a, n_b) float32, every entry match_coef or mismatch_coef
    - Entry (i, j) is match_coef when the best shift of b[j] against a[i]
      is 0 or 1 semitone
    - Ties resolve to the lowest shift

    Every shift of every pair is evaluated; cost is O(n_a * n_b * nshifts * d).

    Parameters:
        chroma_a: First sequence (rows of the output)
        chroma_b: Second sequence (columns of the output)
        nshifts: Highest shift tried
        match_coef: Value for matching pairs
        mismatch_coef: Value for non-matching pairs

    Returns:
        Binary similarity matrix (n_a, n_b)
    """
    n_a = chroma_a.shape[0]
    n_b = chroma_b.shape[0]
    sim_matrix = np.full((n_a, n_b), mismatch_coef, dtype=np.float32)

    # (nshifts + 1, n_b, d): every frame of B at every shift
    shifted_b = np.stack([np.roll(chroma_b, k, axis=1) for k in range(nshifts + 1)])

    for i in range(n_a):
        value_at_shifts = shifted_b @ chroma_a[i]
        oti_index = np.argmax(value_at_shifts, axis=0)
        sim_matrix[i, np.isin(oti_index, MATCH_SHIFTS)] = match_coef

    return sim_matrix
