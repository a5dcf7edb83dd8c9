"""
Error taxonomy for the ranking core.

Every failure is a synchronous contract violation raised before any result is
produced. All errors derive from ``ValueError`` so a caller that only knows
"bad argument" still catches them.
"""

from __future__ import annotations


class RankError(ValueError):
    """Base class for all ranking-core contract violations."""


class EmptyInput(RankError):
    """A required collection (query, index, relevance list) is empty."""

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"{what} is empty")


class LengthMismatch(RankError):
    """Two paired sequences have different lengths."""

    def __init__(self, left: int, right: int, what: str = "sequences"):
        self.left = left
        self.right = right
        super().__init__(f"Length mismatch between {what}: {left} != {right}")


class DimensionMismatch(RankError):
    """An embedding does not have the retriever's fixed dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding dimension mismatch: retriever has {expected} dimensions, got {actual}"
        )


class InvalidK(RankError):
    """A rank cutoff lies outside the valid range."""

    def __init__(self, k: int, length: int | None = None):
        self.k = k
        self.length = length
        if length is None:
            message = f"Invalid k={k}: must be non-negative"
        else:
            message = f"Invalid k={k} for a list of length {length}"
        super().__init__(message)


class UnsortedIndices(RankError):
    """Sparse-vector indices are not strictly increasing."""

    def __init__(self, position: int, previous: int, current: int):
        self.position = position
        super().__init__(
            f"Sparse indices must be strictly increasing: "
            f"index {current} at position {position} follows {previous}"
        )


class InvalidParameter(RankError):
    """A scoring parameter is out of range."""

    def __init__(self, name: str, value: object, constraint: str):
        self.name = name
        self.value = value
        super().__init__(f"Invalid parameter {name}={value!r}: {constraint}")


__all__ = [
    "RankError",
    "EmptyInput",
    "LengthMismatch",
    "DimensionMismatch",
    "InvalidK",
    "UnsortedIndices",
    "InvalidParameter",
]
