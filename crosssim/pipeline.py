"""
Batch Cross-Similarity Module

Computes the cross-similarity matrix of two complete feature sequences.
Stateless: the same inputs and params always give the same matrix.
"""

from typing import Optional

import numpy as np

from crosssim import kernel
from crosssim.kernel import Combine
from crosssim.params import CrossSimilarityParams, DEFAULT_PARAMS, validate_params


def compute_cross_similarity(
    query_feature,
    reference_feature,
    params: CrossSimilarityParams = DEFAULT_PARAMS,
    combine: Optional[Combine] = None
) -> np.ndarray:
    """
    Compute the cross-similarity matrix of a query and a reference sequence.

    CONTRACT:
    - Input: two non-empty feature sequences with the same bin count
    - Output: float32 matrix (see kernel.euclidean_cross_similarity and
      kernel.chroma_binary_sim_matrix for shapes)
    - Inputs are never modified
    - All validation happens before any computation: query, reference,
      bin counts, then params

    DECISION TREE:
    - oti_binary: binary OTI scoring on the raw sequences. With to_blocked
      the embeddings are still built, so degenerate embedding params raise.
    - otherwise: optional OTI rotation of the reference, embedding of both
      sequences, thresholded Euclidean similarity.

    Parameters:
        query_feature: Query chroma sequence (n_frames, n_bins)
        reference_feature: Reference chroma sequence (n_frames, n_bins)
        params: Cross-similarity params
        combine: Element-wise join of the two binary matrices (default numpy.multiply)

    Returns:
        Cross-similarity matrix

    Raises:
        EmptyInputError: If either sequence has no frames
        DimensionMismatchError: If the bin counts differ
        DegenerateInputError: If the embedding leaves no frames
        ConfigurationError: If params are invalid
    """
    query = kernel.validate_feature_sequence(query_feature, 'queryFeature')
    reference = kernel.validate_feature_sequence(reference_feature, 'referenceFeature')
    kernel.check_matching_bins(query, reference)
    validate_params(params)

    if params.oti_binary:
        if params.to_blocked:
            # Stacked blocks are built but scoring runs on raw frames
            kernel.to_time_embedding(query, params.embed_dimension, params.tau)
            kernel.to_time_embedding(reference, params.embed_dimension, params.tau)
        return kernel.chroma_binary_sim_matrix(query, reference, params.noti)

    if params.oti:
        oti_index = kernel.optimal_transposition_index(query, reference, params.noti)
        reference = kernel.rotate_sequence(reference, oti_index)

    query_embedding = kernel.to_time_embedding(query, params.embed_dimension, params.tau)
    reference_embedding = kernel.to_time_embedding(reference, params.embed_dimension, params.tau)

    return kernel.euclidean_cross_similarity(
        query_embedding,
        reference_embedding,
        kappa=params.kappa,
        optimise_threshold=params.optimise_threshold,
        combine=combine
    )
