"""Rank KMeans cluster centroids by distance to encoded molecular feature vectors."""

from .centroids import CentroidTable, load_centroids
from .encoder import CallableEncoder, EncoderAdapter
from .errors import (
    AssetError,
    ConfigError,
    InferenceError,
    ModelTopologyError,
    NumericError,
    RowError,
    ShapeError,
    SimilarityError,
)
from .model import RowResult, SimilarityModel, build_similarity_model
from .ranker import rank_batch, rank_centroids, rms_distances

__version__ = "0.1.0"

__all__ = [
    "AssetError",
    "CallableEncoder",
    "CentroidTable",
    "ConfigError",
    "EncoderAdapter",
    "InferenceError",
    "ModelTopologyError",
    "NumericError",
    "RowError",
    "RowResult",
    "ShapeError",
    "SimilarityError",
    "SimilarityModel",
    "build_similarity_model",
    "load_centroids",
    "rank_batch",
    "rank_centroids",
    "rms_distances",
]
