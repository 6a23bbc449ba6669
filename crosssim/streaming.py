"""
Streaming Cross-Similarity Module

Step-driven cross-similarity of a query stream against a fixed reference.

The upstream writes query frames with push() and announces the end of the
stream with end_of_stream(). The caller drives process(); each call either
completes one step (acquire -> compute -> emit one matrix -> release) or
returns a status telling the caller to come back later. Nothing blocks.

STATE:
- Query buffer: frames pushed but not yet released
- Reference: the fixed reference, rotated by every OTI applied so far
- Stopped flag: set by end_of_stream()

BOUNDS:
- At most embed_dimension + 1 query frames are used per step
- tau frames are released per step (everything left on the final step)
"""

from collections import deque
from enum import Enum
from itertools import islice
from typing import Callable, Deque, Iterable, Iterator, List, Optional

import numpy as np

from crosssim import kernel
from crosssim.errors import DimensionMismatchError
from crosssim.kernel import Combine
from crosssim.params import CrossSimilarityParams, DEFAULT_STREAMING_PARAMS, validate_params


class StepStatus(Enum):
    """Result of one StreamingCrossSimilarity.process() call."""
    OK = 'ok'                  # one matrix emitted
    NEED_INPUT = 'need_input'  # not enough frames yet, stream still open
    NO_INPUT = 'no_input'      # stream ended and nothing is left


def pad_frames(frames: np.ndarray, min_frames: int) -> np.ndarray:
    """
    Pad a short batch by re-appending its leading frames circularly.

    CONTRACT:
    - Input: frames (n, n_bins) with n >= 1, min_frames >= 1
    - Output: frames unchanged if n >= min_frames, else (min_frames, n_bins)
      where row k is frames[k % n]

    Parameters:
        frames: Acquired query frames
        min_frames: Minimum number of frames

    Returns:
        Padded batch
    """
    n_frames = frames.shape[0]
    if n_frames >= min_frames:
        return frames
    return frames[np.arange(min_frames) % n_frames]


class StreamingCrossSimilarity:
    """
    Explicit state for streaming cross-similarity.

    CONTRACT:
    - Reference is given once, at construction
    - Each OK step emits exactly one matrix to the sink
    - Call reset() before reusing the object for a new stream
    - Not thread-safe; drive from a single thread

    Example:
        stream = StreamingCrossSimilarity(reference)
        stream.push(query_frames)
        stream.end_of_stream()
        while stream.process() is StepStatus.OK:
            pass
        matrices = stream.outputs
    """

    def __init__(
        self,
        reference_feature,
        params: CrossSimilarityParams = DEFAULT_STREAMING_PARAMS,
        sink: Optional[Callable[[np.ndarray], None]] = None,
        combine: Optional[Combine] = None
    ) -> None:
        validate_params(params)
        self.params = params
        self.sink = sink
        self.combine = combine
        self._initial_reference = kernel.validate_feature_sequence(
            reference_feature, 'referenceFeature'
        ).copy()
        self.reset()

    def reset(self) -> None:
        """Reset state to initial values."""
        self.reference: np.ndarray = self._initial_reference
        self._reference_embedding: Optional[np.ndarray] = None
        self._buffer: Deque[np.ndarray] = deque()
        self._stopped: bool = False
        self.outputs: List[np.ndarray] = []

    @property
    def n_bins(self) -> int:
        return self._initial_reference.shape[1]

    @property
    def min_frames_size(self) -> int:
        return self.params.min_frames_size

    @property
    def available(self) -> int:
        """Query frames pushed and not yet released."""
        return len(self._buffer)

    @property
    def stopped(self) -> bool:
        return self._stopped

    def push(self, frames) -> None:
        """
        Append query frames to the input buffer.

        Parameters:
            frames: One frame (n_bins,) or a batch (n_frames, n_bins)

        Raises:
            DimensionMismatchError: If the bin count differs from the reference
            RuntimeError: If the stream has already ended
        """
        if self._stopped:
            raise RuntimeError("cannot push query frames after end_of_stream()")

        block = np.asarray(frames, dtype=np.float64)
        if block.size == 0:
            return
        if block.ndim == 1:
            block = block[np.newaxis, :]
        if block.ndim != 2 or block.shape[1] != self.n_bins:
            raise DimensionMismatchError(
                f"query frames must have {self.n_bins} bins, got shape {block.shape}"
            )

        self._buffer.extend(block.copy())

    def end_of_stream(self) -> None:
        """Signal that no more query frames will be pushed."""
        self._stopped = True

    def process(self) -> StepStatus:
        """
        Run one step.

        Returns:
            StepStatus.OK after emitting one matrix,
            StepStatus.NEED_INPUT while waiting for more frames,
            StepStatus.NO_INPUT once the ended stream is drained
        """
        min_size = self.min_frames_size

        if self.available >= min_size:
            acquire_size = min_size
            release_size = min(self.params.tau, self.available)
        elif not self._stopped:
            return StepStatus.NEED_INPUT
        elif self.available == 0:
            return StepStatus.NO_INPUT
        else:
            # Drain what is left instead of waiting for frames that never come
            acquire_size = self.available
            release_size = self.available

        frames = np.array(list(islice(self._buffer, acquire_size)))
        batch = pad_frames(frames, min_size)

        csm = self._compute(batch)
        self._emit(csm)

        for _ in range(release_size):
            self._buffer.popleft()

        return StepStatus.OK

    def _compute(self, query_batch: np.ndarray) -> np.ndarray:
        params = self.params

        if params.oti:
            oti_index = kernel.optimal_transposition_index(query_batch, self.reference, params.noti)
            if oti_index != 0:
                self.reference = kernel.rotate_sequence(self.reference, oti_index)
                self._reference_embedding = None

        query_embedding = kernel.to_time_embedding(query_batch, params.embed_dimension, params.tau)
        reference_embedding = self._embedded_reference()

        if params.oti_binary:
            return kernel.chroma_binary_sim_matrix(query_embedding, reference_embedding, params.noti)

        return kernel.euclidean_cross_similarity(
            query_embedding,
            reference_embedding,
            kappa=params.kappa,
            optimise_threshold=params.optimise_threshold,
            combine=self.combine
        )

    def _embedded_reference(self) -> np.ndarray:
        if self._reference_embedding is None:
            self._reference_embedding = kernel.to_time_embedding(
                self.reference, self.params.embed_dimension, self.params.tau
            )
        return self._reference_embedding

    def _emit(self, csm: np.ndarray) -> None:
        if self.sink is None:
            self.outputs.append(csm)
        else:
            self.sink(csm)


def iter_cross_similarity(
    query_frames: Iterable,
    reference_feature,
    params: CrossSimilarityParams = DEFAULT_STREAMING_PARAMS,
    combine: Optional[Combine] = None
) -> Iterator[np.ndarray]:
    """
    Drive a StreamingCrossSimilarity over an iterable of query frames.

    Frames are pushed one at a time; every completed step is yielded as
    soon as it is emitted. The stream is ended when the iterable is
    exhausted and the remaining frames are drained.

    Parameters:
        query_frames: Iterable of query frames (n_bins,) or frame batches
        reference_feature: Reference chroma sequence
        params: Cross-similarity params
        combine: Element-wise join of the two binary matrices

    Yields:
        One cross-similarity matrix per step
    """
    pending: Deque[np.ndarray] = deque()
    stream = StreamingCrossSimilarity(reference_feature, params, sink=pending.append, combine=combine)

    for frame in query_frames:
        stream.push(frame)
        while stream.process() is StepStatus.OK:
            yield pending.popleft()

    stream.end_of_stream()
    while stream.process() is StepStatus.OK:
        yield pending.popleft()
