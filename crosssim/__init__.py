"""
crosssim - Chroma Cross-Similarity

This package contains the modules for cross-similarity of chroma sequences:
- kernel: Embedding, transposition, thresholding and binary OTI scoring
- params: Configuration record and validation
- errors: Error types
- pipeline: Batch cross-similarity of two complete sequences
- streaming: Step-driven cross-similarity of a query stream
"""

__version__ = "1.0.0"
