"""
Centroid table for the latent space clusters.

The centroids are produced offline by KMeans on encoder latent vectors and
are loaded once, before any ranking call. Three on-disk formats are accepted:

1. Delimited text (`.csv`, `.txt`, anything else)
   - One centroid per line, comma-separated floats, no header.
   - Every line must have the same number of columns.

2. NumPy array (`.npy`)
   - The array written by `np.save(..., kmeans.cluster_centers_)`.

3. Pickled KMeans model (`.pkl`, `.joblib`)
   - A fitted scikit-learn estimator loaded with `joblib`; its
     `cluster_centers_` attribute is used.

Whatever the source, the table keeps a read-only float32 copy so it can be
shared between threads without locking.
"""

import logging
import pickle
from pathlib import Path

import joblib
import numpy as np
import numpy.typing as npt

from .errors import AssetError

logger = logging.getLogger(__name__)

nd_float32 = npt.NDArray[np.float32]

NPY_SUFFIXES = {".npy"}
PICKLE_SUFFIXES = {".pkl", ".pickle", ".joblib"}


class CentroidTable:
    """Immutable K x D matrix of cluster centroids."""

    def __init__(self, centroids):
        try:
            array = np.array(centroids, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise AssetError(f"Centroids are not a numeric matrix ({e})") from e

        if array.ndim != 2:
            raise AssetError(f"Centroids must be a 2-D matrix, got shape {array.shape}")
        if array.shape[0] == 0 or array.shape[1] == 0:
            raise AssetError(f"Centroid table is empty (shape {array.shape})")
        if not np.all(np.isfinite(array)):
            raise AssetError("Centroid table contains NaN or infinite values")

        array.setflags(write=False)
        self._centroids = array

    @property
    def values(self) -> nd_float32:
        return self._centroids

    @property
    def shape(self) -> tuple[int, int]:
        return self._centroids.shape

    @property
    def centroid_count(self) -> int:
        return self._centroids.shape[0]

    @property
    def dimensionality(self) -> int:
        return self._centroids.shape[1]

    def row(self, index: int) -> nd_float32:
        if not 0 <= index < self.centroid_count:
            raise IndexError(f"Centroid index {index} out of range [0, {self.centroid_count})")
        return self._centroids[index]

    def __len__(self):
        return self.centroid_count

    def __repr__(self):
        return f"CentroidTable(clusters={self.centroid_count}, dims={self.dimensionality})"


def parse_centroid_lines(lines, source="<memory>") -> nd_float32:
    rows = []
    width = None

    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue

        try:
            row = [float(value) for value in line.split(",")]
        except ValueError as e:
            raise AssetError(f"{source}:{line_no}: invalid float value ({e})") from e

        if width is None:
            width = len(row)
        elif len(row) != width:
            raise AssetError(
                f"{source}:{line_no}: expected {width} columns, found {len(row)}"
            )

        rows.append(row)

    if not rows:
        raise AssetError(f"{source}: no centroid rows found")

    return np.asarray(rows, dtype=np.float32)


def _load_text(path: Path) -> nd_float32:
    try:
        with open(path, "r", encoding="utf-8") as file:
            return parse_centroid_lines(file, source=str(path))
    except (OSError, UnicodeDecodeError) as e:
        raise AssetError(f"{path}: cannot read centroid file ({e})") from e


def _load_npy(path: Path) -> nd_float32:
    try:
        return np.load(path)
    except (OSError, ValueError, EOFError, pickle.UnpicklingError) as e:
        raise AssetError(f"{path}: not a valid .npy centroid array ({e})") from e


def _load_kmeans(path: Path) -> nd_float32:
    try:
        model = joblib.load(path)
    except (OSError, EOFError, ValueError, ImportError, AttributeError, pickle.UnpicklingError) as e:
        raise AssetError(f"{path}: not a valid pickled model ({e})") from e

    if hasattr(model, "cluster_centers_"):
        return np.asarray(model.cluster_centers_)
    raise AssetError(f"{path}: {type(model).__name__} has no cluster_centers_")


def load_centroids(path) -> CentroidTable:
    """
    Load a centroid table from disk.

    Args:
        path: Path to a delimited text file, a `.npy` array or a pickled
            KMeans model.

    Returns:
        CentroidTable

    Raises:
        AssetError: the file is missing, unreadable or has an inconsistent shape.
    """
    path = Path(path)
    if not path.is_file():
        raise AssetError(f"Centroid asset not found: {path}")

    suffix = path.suffix.lower()
    if suffix in NPY_SUFFIXES:
        centroids = _load_npy(path)
    elif suffix in PICKLE_SUFFIXES:
        centroids = _load_kmeans(path)
    else:
        centroids = _load_text(path)

    table = CentroidTable(centroids)
    logger.info("Loaded %d centroids of dimension %d from %s",
                table.centroid_count, table.dimensionality, path)
    return table
