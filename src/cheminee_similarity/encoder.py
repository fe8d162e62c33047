"""
Latent encoder adapter.

The pretrained encoder is treated as an opaque function from a (B, D_in)
int64 matrix to a (B, >=D_lat) float matrix. Anything with an `encode`
method honouring that contract can be plugged in: the TensorFlow backends in
`backends.py`, or a plain function wrapped in `CallableEncoder` (handy for
tests and for embedding applications that run inference elsewhere).

`EncoderAdapter` owns the shape bookkeeping around that call:

1. Validate the batch
   - Non-empty, every row the same width, matching the model input width
     when the model declares one.

2. Encode once per batch
   - The whole matrix is handed to the encoder in a single call.

3. Validate the output
   - One latent row per input row, cast to float32. Rows of the wrong width
     are passed through as they are and fail later, one row at a time.

Encoder failures are not retried; inference is deterministic so a retry
would fail the same way.
"""

import logging
from typing import Callable, Optional, Protocol

import numpy as np
import numpy.typing as npt

from .errors import InferenceError, ShapeError, SimilarityError

logger = logging.getLogger(__name__)


class Encoder(Protocol):
    input_width: Optional[int]

    def encode(self, features: npt.NDArray[np.int64]) -> np.ndarray:
        ...


class CallableEncoder:
    """Encoder backed by a plain function."""

    def __init__(self, fn: Callable[[np.ndarray], np.ndarray], input_width: Optional[int] = None):
        self.fn = fn
        self.input_width = input_width

    def encode(self, features):
        return self.fn(features)


def row_width(row) -> Optional[int]:
    try:
        return len(row)
    except TypeError:
        return None


def check_feature_row(row, width: int, index: int = 0) -> npt.NDArray[np.int64]:
    """Convert one feature row into an int64 vector of the given width."""
    try:
        features = np.asarray(row)
    except (TypeError, ValueError, OverflowError) as e:
        raise ShapeError(f"Feature row {index} is not an integer vector ({e})") from e

    if features.ndim != 1 or features.shape[0] != width or width == 0:
        raise ShapeError(f"Feature row {index} has shape {features.shape}, expected ({width},)")

    # Integral floats (e.g. 3.0 from a float array) are accepted, 9.7 is not
    if features.dtype.kind == "f":
        if not np.all(np.isfinite(features)) or not np.all(features == np.round(features)):
            raise ShapeError(f"Feature row {index} has non-integer values")
        if np.any(np.abs(features) >= 2.0 ** 63):
            raise ShapeError(f"Feature row {index} does not fit in int64")
    elif features.dtype.kind == "u":
        if np.any(features > np.iinfo(np.int64).max):
            raise ShapeError(f"Feature row {index} does not fit in int64")
    elif features.dtype.kind != "i":
        raise ShapeError(f"Feature row {index} is not an integer vector (dtype {features.dtype})")

    return features.astype(np.int64)


def check_feature_batch(batch, input_width=None) -> npt.NDArray[np.int64]:
    """Convert a batch of feature rows into an int64 matrix."""
    rows = list(batch)

    if not rows:
        raise ShapeError("Feature batch is empty")

    width = row_width(rows[0]) if input_width is None else input_width
    if width is None:
        raise ShapeError("Feature row 0 is not a sequence")

    return np.stack([check_feature_row(row, width, i) for i, row in enumerate(rows)])


def _latent_row(row):
    try:
        return np.asarray(row, dtype=np.float32)
    except (TypeError, ValueError):
        return row


class EncoderAdapter:
    def __init__(self, encoder: Encoder):
        self.encoder = encoder

    @property
    def input_width(self) -> Optional[int]:
        return getattr(self.encoder, "input_width", None)

    def encode(self, batch):
        """
        Encode a batch of feature rows into latent rows.

        Args:
            batch: Sequence of equal-length integer sequences, or a 2-D array.

        Returns:
            np.ndarray of shape (len(batch), latent_width), float32. When the
            encoder returns rows of different widths, a list with one float32
            row per input row instead.

        Raises:
            ShapeError: the batch is empty or its rows differ in width.
            ModelTopologyError: the encoder lacks its expected entry points.
            InferenceError: the encoder call failed or returned a bad shape.
        """
        features = check_feature_batch(batch, self.input_width)

        try:
            latents = self.encoder.encode(features)
        except SimilarityError:
            raise
        except Exception as e:
            raise InferenceError(f"Encoder failed on batch of {features.shape[0]} rows: {e}") from e

        rows = features.shape[0]
        try:
            matrix = np.asarray(latents, dtype=np.float32)
        except (TypeError, ValueError):
            matrix = None

        if matrix is not None and matrix.ndim == 2 and matrix.shape[0] == rows:
            logger.debug("Encoded batch %s -> %s", features.shape, matrix.shape)
            return matrix

        # Ragged output: keep one entry per row and let the ranker reject bad rows
        try:
            latent_rows = list(latents)
        except TypeError as e:
            raise InferenceError(f"Encoder output is not a sequence of rows ({e})") from e

        if len(latent_rows) != rows:
            raise InferenceError(f"Encoder returned {len(latent_rows)} rows for {rows} input rows")

        logger.debug("Encoded batch %s -> %d ragged rows", features.shape, rows)
        return [_latent_row(row) for row in latent_rows]
