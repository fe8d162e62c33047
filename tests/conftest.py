import numpy as np
import pytest

from cheminee_similarity import CallableEncoder, CentroidTable, SimilarityModel

# Latent rows carry one trailing column the ranker must ignore
TRAILING_VALUE = 99.0


def passthrough(features):
    """Latent = features as floats plus a trailing column."""
    latents = features.astype(np.float32)
    trailing = np.full((latents.shape[0], 1), TRAILING_VALUE, dtype=np.float32)
    latents = np.hstack([latents, trailing])
    # A leading -1 marks a row whose latent vector is corrupted
    latents[features[:, 0] == -1] = np.nan
    return latents


@pytest.fixture
def example_centroids():
    return CentroidTable([[0, 0], [10, 10], [5, 5]])


@pytest.fixture
def stub_encoder():
    return CallableEncoder(passthrough)


@pytest.fixture
def model(stub_encoder, example_centroids):
    return SimilarityModel(stub_encoder, example_centroids)


@pytest.fixture
def write_csv(tmp_path):
    def _write(name, text):
        path = tmp_path / name
        path.write_text(text)
        return path

    return _write
