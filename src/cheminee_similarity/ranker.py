"""
Ranks centroids by distance to a latent vector.

The distance is the root-mean-square difference between the latent vector
and a centroid:

    d(x, c) = sqrt(mean((x_i - c_i)^2))

i.e. the plain Euclidean norm scaled by 1/sqrt(D). Reported distances keep
the scaling.

The encoder emits a few more columns than the centroid dimensionality; only
the first D columns of a latent vector take part in the distance.

Ranking is a stable sort on ascending distance, so equal distances keep
ascending cluster index order.
"""

import numpy as np
import numpy.typing as npt

from .centroids import CentroidTable
from .errors import NumericError, ShapeError

# Upper bound on the float32 elements held by one broadcast chunk in rank_batch
_CHUNK_ELEMENTS = 1 << 24


def _centroid_values(centroids):
    if isinstance(centroids, CentroidTable):
        return centroids.values
    return np.asarray(centroids, dtype=np.float32)


def slice_latent(latent, dims: int) -> npt.NDArray[np.float32]:
    """Drop the trailing latent columns beyond `dims`."""
    try:
        latent = np.asarray(latent, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise ShapeError(f"Latent vector is not a float vector ({e})") from e

    if latent.ndim != 1:
        raise ShapeError(f"Latent vector must be 1-D, got shape {latent.shape}")
    if latent.shape[0] < dims:
        raise ShapeError(f"Latent vector has {latent.shape[0]} dims, centroids need {dims}")

    return latent[:dims]


def rms_distances(latent, centroids) -> npt.NDArray[np.float32]:
    """
    Root-mean-square distance from `latent` to every centroid.

    Args:
        latent: 1-D array of width >= centroid dimensionality.
        centroids: CentroidTable or (K, D) array.

    Returns:
        np.ndarray of shape (K,)
    """
    values = _centroid_values(centroids)
    lf_slice = slice_latent(latent, values.shape[1])

    if not np.all(np.isfinite(lf_slice)):
        raise NumericError("Latent vector contains NaN or infinite values")

    with np.errstate(over="ignore"):
        distances = np.sqrt(np.mean(np.square(values - lf_slice), axis=1))

    if not np.all(np.isfinite(distances)):
        raise NumericError("Distance computation overflowed")

    return distances


def _check_top_n(top_n, count):
    if top_n is None:
        return count
    if top_n <= 0:
        raise ValueError(f"top_n must be positive, got {top_n}")
    return min(top_n, count)


def rank_centroids(latent, centroids, top_n=None) -> list[int]:
    """
    Return cluster indices ordered nearest first.

    The full ranking has one entry per centroid; `top_n` keeps only the
    first `top_n` of them.
    """
    distances = rms_distances(latent, centroids)
    limit = _check_top_n(top_n, distances.shape[0])

    order = np.argsort(distances, kind="stable")
    return order[:limit].tolist()


def rank_batch(latents, centroids, top_n=None) -> npt.NDArray[np.int64]:
    """
    Vectorized ranking of a (B, >=D) latent matrix.

    Produces the same ordering as calling `rank_centroids` on each row, but
    raises on the first malformed input instead of isolating rows.

    Returns:
        np.ndarray of shape (B, K) (or (B, top_n)) with cluster indices.
    """
    values = _centroid_values(centroids)
    k, dims = values.shape
    limit = _check_top_n(top_n, k)

    latents = np.asarray(latents, dtype=np.float32)
    if latents.ndim != 2:
        raise ShapeError(f"Latent batch must be 2-D, got shape {latents.shape}")
    if latents.shape[1] < dims:
        raise ShapeError(f"Latent batch has {latents.shape[1]} dims, centroids need {dims}")

    lf_slice = latents[:, :dims]
    if not np.all(np.isfinite(lf_slice)):
        raise NumericError("Latent batch contains NaN or infinite values")

    chunk = max(1, _CHUNK_ELEMENTS // (k * dims))
    ranked = np.empty((latents.shape[0], limit), dtype=np.int64)

    for start in range(0, latents.shape[0], chunk):
        stop = start + chunk
        diff = values[np.newaxis, :, :] - lf_slice[start:stop, np.newaxis, :]
        with np.errstate(over="ignore"):
            distances = np.sqrt(np.mean(np.square(diff), axis=2))
        if not np.all(np.isfinite(distances)):
            raise NumericError("Distance computation overflowed")
        ranked[start:stop] = np.argsort(distances, axis=1, kind="stable")[:, :limit]

    return ranked
