"""
Streaming Cross-Similarity Tests

Tests for the step-driven streaming state machine: acquire/release sizes,
end-of-stream draining, padding and reference transposition carried
between steps.
"""

import numpy as np
import pytest

from crosssim.errors import DegenerateInputError, DimensionMismatchError, EmptyInputError
from crosssim.params import CrossSimilarityParams, DEFAULT_STREAMING_PARAMS
from crosssim.pipeline import compute_cross_similarity
from crosssim.streaming import (
    StepStatus,
    StreamingCrossSimilarity,
    iter_cross_similarity,
    pad_frames,
)


# =============================================================================
# SYNTHETIC CHROMA GENERATORS
# =============================================================================

def generate_random_chroma(n_frames: int = 40, n_bins: int = 12, seed: int = 0) -> np.ndarray:
    """Random chroma frames, each peak-normalised to 1."""
    rng = np.random.default_rng(seed)
    chroma = rng.random((n_frames, n_bins)) + 1e-3
    return chroma / np.max(chroma, axis=1, keepdims=True)


def generate_key_chroma(n_frames: int = 40, key: int = 0, seed: int = 0) -> np.ndarray:
    """Major-triad chroma in a given key with a little noise."""
    profile = np.full(12, 0.1)
    profile[[0, 4, 7]] = [1.0, 0.8, 0.9]

    rng = np.random.default_rng(seed)
    frames = profile + 0.05 * rng.random((n_frames, 12))
    return np.roll(frames, key, axis=1)


def drain(stream: StreamingCrossSimilarity) -> int:
    """Run steps until the stream stops producing; return the step count."""
    steps = 0
    while stream.process() is StepStatus.OK:
        steps += 1
    return steps


# =============================================================================
# PADDING TESTS
# =============================================================================

class TestPadFrames:
    """Tests for pad_frames."""

    def test_circular_reuse(self):
        frames = np.arange(3)[:, np.newaxis] * np.ones((3, 2))
        padded = pad_frames(frames, 5)
        np.testing.assert_array_equal(padded[:, 0], [0, 1, 2, 0, 1])

    def test_single_frame(self):
        frames = np.ones((1, 12))
        assert pad_frames(frames, 4).shape == (4, 12)

    def test_long_enough_unchanged(self):
        frames = generate_random_chroma(6)
        assert pad_frames(frames, 5) is frames


# =============================================================================
# STATE MACHINE TESTS
# =============================================================================

class TestStreamingStateMachine:
    """Acquire, release and end-of-stream behavior."""

    def test_short_stream_drains_once(self):
        """Three frames and end of stream with embed_dimension=4 still give one matrix."""
        reference = generate_random_chroma(10)
        params = CrossSimilarityParams(embed_dimension=4, optimise_threshold=True)
        stream = StreamingCrossSimilarity(reference, params)
        assert stream.min_frames_size == 5

        stream.push(generate_random_chroma(3, seed=1))
        assert stream.process() is StepStatus.NEED_INPUT
        assert stream.outputs == []

        stream.end_of_stream()
        assert stream.process() is StepStatus.OK
        assert len(stream.outputs) == 1
        assert stream.outputs[0].shape == (1, 10 - 4)
        assert stream.available == 0

        assert stream.process() is StepStatus.NO_INPUT
        assert len(stream.outputs) == 1

    def test_empty_stream_no_input(self):
        stream = StreamingCrossSimilarity(generate_random_chroma(20))
        assert stream.process() is StepStatus.NEED_INPUT
        stream.end_of_stream()
        assert stream.process() is StepStatus.NO_INPUT
        assert stream.outputs == []

    def test_release_one_frame_per_step(self):
        """With tau=1 each step slides the window by one frame."""
        params = CrossSimilarityParams(embed_dimension=2)
        stream = StreamingCrossSimilarity(generate_random_chroma(20), params)

        stream.push(generate_random_chroma(6, seed=1))
        assert drain(stream) == 4
        assert stream.available == 2

        stream.end_of_stream()
        assert drain(stream) == 1
        assert stream.available == 0
        assert len(stream.outputs) == 5
        for csm in stream.outputs:
            assert csm.shape == (1, 20 - 2)

    def test_release_tau_frames(self):
        """tau frames are released per step."""
        params = CrossSimilarityParams(embed_dimension=1, tau=2)
        stream = StreamingCrossSimilarity(generate_random_chroma(15), params)

        stream.push(generate_random_chroma(5, seed=1))
        assert stream.process() is StepStatus.OK
        assert stream.available == 3
        assert stream.process() is StepStatus.OK
        assert stream.available == 1
        assert stream.process() is StepStatus.NEED_INPUT

        stream.end_of_stream()
        assert stream.process() is StepStatus.OK
        assert stream.process() is StepStatus.NO_INPUT
        assert [csm.shape for csm in stream.outputs] == [(2, 15)] * 3

    def test_push_single_frames(self):
        stream = StreamingCrossSimilarity(generate_random_chroma(20))
        for frame in generate_random_chroma(4, seed=1):
            stream.push(frame)
        assert stream.available == 4

    def test_default_streaming_params(self):
        stream = StreamingCrossSimilarity(generate_random_chroma(30))
        assert stream.params is DEFAULT_STREAMING_PARAMS

        stream.push(generate_random_chroma(10, seed=1))
        assert stream.process() is StepStatus.OK

        csm = stream.outputs[0]
        assert csm.shape == (1, 30 - 9)
        assert set(np.unique(csm)) <= {0.0, 1.0}

    def test_step_matches_batch(self):
        """One full window scores exactly like a batch call on the same frames."""
        params = CrossSimilarityParams(embed_dimension=3, oti=False)
        reference = generate_random_chroma(25)
        window = generate_random_chroma(4, seed=1)

        stream = StreamingCrossSimilarity(reference, params)
        stream.push(window)
        assert stream.process() is StepStatus.OK

        expected = compute_cross_similarity(window, reference, params)
        assert stream.outputs[0].shape == (1, 25 - 3)
        np.testing.assert_array_equal(stream.outputs[0], expected)

    def test_binary_scoring_uses_embeddings(self):
        params = CrossSimilarityParams(embed_dimension=3, oti_binary=True)
        stream = StreamingCrossSimilarity(generate_random_chroma(12), params)

        stream.push(generate_random_chroma(4, seed=1))
        stream.end_of_stream()
        assert drain(stream) == 2

        for csm in stream.outputs:
            assert csm.shape == (1, 12 - 3)
            assert set(np.unique(csm)) <= {0.0, 1.0}

    def test_sink_receives_outputs(self):
        received = []
        params = CrossSimilarityParams(embed_dimension=2)
        stream = StreamingCrossSimilarity(generate_random_chroma(10), params, sink=received.append)

        stream.push(generate_random_chroma(3, seed=1))
        stream.end_of_stream()
        drain(stream)

        assert len(received) == 2
        assert stream.outputs == []

    def test_reset(self):
        reference = np.roll(generate_key_chroma(20), -3, axis=1)
        params = CrossSimilarityParams(embed_dimension=2)
        stream = StreamingCrossSimilarity(reference, params)

        stream.push(generate_key_chroma(5, seed=1))
        stream.end_of_stream()
        drain(stream)
        stream.reset()

        assert stream.available == 0
        assert not stream.stopped
        assert stream.outputs == []
        np.testing.assert_array_equal(stream.reference, reference)


# =============================================================================
# TRANSPOSITION TESTS
# =============================================================================

class TestStreamingTransposition:
    """The reference is rotated by OTI and the rotation carries over."""

    def test_rotation_carries_over(self):
        base = generate_key_chroma(20)
        reference = np.roll(base, -3, axis=1)
        reference_copy = reference.copy()
        params = CrossSimilarityParams(embed_dimension=2)
        stream = StreamingCrossSimilarity(reference, params)

        stream.push(generate_key_chroma(8, seed=1))
        stream.end_of_stream()
        drain(stream)

        np.testing.assert_array_equal(stream.reference, base)
        np.testing.assert_array_equal(reference, reference_copy)

    def test_no_rotation_without_oti(self):
        reference = np.roll(generate_key_chroma(20), -3, axis=1)
        params = CrossSimilarityParams(embed_dimension=2, oti=False)
        stream = StreamingCrossSimilarity(reference, params)

        stream.push(generate_key_chroma(8, seed=1))
        drain(stream)

        np.testing.assert_array_equal(stream.reference, reference)


# =============================================================================
# ERROR TESTS
# =============================================================================

class TestStreamingErrors:
    """Failures surface to the caller."""

    def test_empty_reference(self):
        with pytest.raises(EmptyInputError):
            StreamingCrossSimilarity([])

    def test_bin_mismatch(self):
        stream = StreamingCrossSimilarity(generate_random_chroma(20))
        with pytest.raises(DimensionMismatchError):
            stream.push(generate_random_chroma(3, n_bins=24))

    def test_push_after_end(self):
        stream = StreamingCrossSimilarity(generate_random_chroma(20))
        stream.end_of_stream()
        with pytest.raises(RuntimeError):
            stream.push(generate_random_chroma(1))

    def test_degenerate_window(self):
        """embed_dimension + 1 frames cannot hold an embedding with tau=2."""
        params = CrossSimilarityParams(embed_dimension=2, tau=2)
        stream = StreamingCrossSimilarity(generate_random_chroma(20), params)

        stream.push(generate_random_chroma(3, seed=1))
        with pytest.raises(DegenerateInputError):
            stream.process()


# =============================================================================
# DRIVER TESTS
# =============================================================================

class TestIterCrossSimilarity:
    """Tests for the generator driver."""

    def test_step_count(self):
        """n frames with embedding width m give n - m + 1 matrices."""
        params = CrossSimilarityParams(embed_dimension=2)
        matrices = list(iter_cross_similarity(generate_random_chroma(6, seed=1), generate_random_chroma(20), params))

        assert len(matrices) == 5

    def test_matches_manual_driving(self):
        params = CrossSimilarityParams(embed_dimension=3)
        query = generate_key_chroma(12, seed=2)
        reference = generate_key_chroma(25, key=4)

        stream = StreamingCrossSimilarity(reference, params)
        stream.push(query)
        stream.end_of_stream()
        drain(stream)

        matrices = list(iter_cross_similarity(query, reference, params))

        assert len(matrices) == len(stream.outputs)
        for produced, expected in zip(matrices, stream.outputs):
            np.testing.assert_array_equal(produced, expected)
