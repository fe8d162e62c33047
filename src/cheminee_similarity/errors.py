"""
Exception hierarchy for the similarity model.

Load-time and batch-wide failures (`AssetError`, `ModelTopologyError`,
`InferenceError`, `ConfigError`) propagate to the caller. Per-row failures
derive from `RowError` and are turned into an empty ranking by
`SimilarityModel.transform`.
"""


class SimilarityError(Exception):
    """Base class for every error raised by this package."""


class AssetError(SimilarityError):
    """A centroid or model asset is missing, malformed or has an inconsistent shape."""


class ModelTopologyError(SimilarityError):
    """The encoder does not expose the expected input/output entry points."""


class InferenceError(SimilarityError):
    """The encoder call itself failed."""


class ConfigError(SimilarityError):
    """Settings could not be read or contain invalid values."""


class RowError(SimilarityError):
    """A single row could not be ranked."""


class ShapeError(RowError):
    """A feature or latent row has the wrong width."""


class NumericError(RowError):
    """A latent row or its distances contain NaN or infinity."""
