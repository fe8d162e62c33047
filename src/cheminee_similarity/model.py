"""
Similarity model: feature rows in, ranked cluster labels out.

Workflow Overview:
------------------
1. Construction
   - `SimilarityModel` holds the encoder adapter and the centroid table.
     Both are loaded once (`from_paths` / `build_similarity_model`) and never
     mutated, so one instance can be shared by every caller.

2. Row validation
   - Rows whose width differs from the encoder input width (or, when the
     model does not declare one, the most common row width) are failed on their own
     and left out of the encoder call.

3. Batch encoding
   - The remaining rows go through the encoder in a single call. Encoder
     topology or inference failures fail the whole call.

4. Per-row ranking
   - Every latent row is ranked against all centroids independently. A row
     that cannot be ranked gets an empty ranking and a logged warning; its
     siblings are unaffected. With `workers > 1` rows are ranked on a thread
     pool.

5. Result assembly
   - One result per input row, in input order.
"""

import collections
import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Optional

from .centroids import CentroidTable, load_centroids
from .encoder import EncoderAdapter, check_feature_row, row_width
from .errors import RowError, ShapeError
from .ranker import rank_centroids

logger = logging.getLogger(__name__)


def expected_width(rows):
    """Most common row width in the batch; ties go to the earliest row."""
    widths = collections.Counter(w for w in map(row_width, rows) if w is not None)
    if not widths:
        return None
    return widths.most_common(1)[0][0]


@dataclass(frozen=True)
class RowResult:
    ranking: list
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SimilarityModel:
    def __init__(self, encoder, centroids: CentroidTable, workers: int = 1, top_n: Optional[int] = None):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if top_n is not None and top_n <= 0:
            raise ValueError(f"top_n must be positive, got {top_n}")

        self.encoder = encoder if isinstance(encoder, EncoderAdapter) else EncoderAdapter(encoder)
        self.centroids = centroids
        self.workers = workers
        self.top_n = top_n

    @classmethod
    def from_paths(cls, encoder_path, centroids_path, workers=1, top_n=None, **encoder_options):
        """Load the encoder artifact and the centroid table eagerly."""
        from .backends import load_encoder

        centroids = load_centroids(centroids_path)
        encoder = load_encoder(encoder_path, **encoder_options)
        return cls(encoder, centroids, workers=workers, top_n=top_n)

    @property
    def num_clusters(self) -> int:
        return self.centroids.centroid_count

    @property
    def latent_dim(self) -> int:
        return self.centroids.dimensionality

    def _rank_row(self, index, latent, top_n):
        try:
            return RowResult(rank_centroids(latent, self.centroids, top_n=top_n))
        except (RowError, FloatingPointError, ValueError) as e:
            logger.warning("Failed to retrieve cluster labels for row %d: %s", index, e)
            return RowResult([], e)

    def transform_detailed(self, batch, top_n=None) -> list[RowResult]:
        """
        Rank every row of `batch`, keeping the reason a row failed.

        Returns:
            list of RowResult, one per input row, in input order.
        """
        rows = list(batch)
        if not rows:
            return []

        top_n = self.top_n if top_n is None else top_n
        if top_n is not None and top_n <= 0:
            raise ValueError(f"top_n must be positive, got {top_n}")

        width = self.encoder.input_width
        if width is None:
            width = expected_width(rows)

        results: list = [None] * len(rows)
        valid, features = [], []
        for i, row in enumerate(rows):
            try:
                features.append(check_feature_row(row, width, i))
                valid.append(i)
            except ShapeError as e:
                logger.warning("Failed to encode row %d: %s", i, e)
                results[i] = RowResult([], e)

        if valid:
            latents = self.encoder.encode(features)

            if self.workers > 1:
                with concurrent.futures.ThreadPoolExecutor(max_workers=self.workers) as executor:
                    ranked = list(executor.map(
                        lambda item: self._rank_row(item[0], item[1], top_n),
                        zip(valid, latents),
                    ))
            else:
                ranked = [self._rank_row(i, latent, top_n) for i, latent in zip(valid, latents)]

            for i, result in zip(valid, ranked):
                results[i] = result

        return results

    def transform(self, batch, top_n=None) -> list[list[int]]:
        """
        Map feature rows to cluster labels ordered nearest first.

        A row that could not be ranked yields an empty list; the returned list
        always has one entry per input row.
        """
        return [result.ranking for result in self.transform_detailed(batch, top_n=top_n)]


def build_similarity_model(settings) -> SimilarityModel:
    """Construct the model from `config.Settings`."""
    return SimilarityModel.from_paths(
        settings.encoder_path,
        settings.centroids_path,
        workers=settings.workers,
        top_n=settings.top_n,
        signature=settings.signature,
        input_name=settings.input_name,
        output_name=settings.output_name,
        num_threads=settings.num_threads,
    )
