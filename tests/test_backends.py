import numpy as np
import pytest

tf = pytest.importorskip("tensorflow")

from cheminee_similarity import AssetError, ModelTopologyError, SimilarityModel  # noqa: E402
from cheminee_similarity.backends import (  # noqa: E402
    SavedModelEncoder,
    TFLiteEncoder,
    dequantize_output,
    load_encoder,
    quantize_input,
)


class TinyEncoder(tf.Module):
    """Copies 3 integer features into a 4-wide latent vector (last column zero)."""

    def __init__(self):
        super().__init__()
        self.kernel = tf.Variable(np.eye(3, 4, dtype=np.float32))

    @tf.function(input_signature=[tf.TensorSpec([None, 3], tf.int64, name="dense_input")])
    def serve(self, dense_input):
        return {"output_0": tf.matmul(tf.cast(dense_input, tf.float32), self.kernel)}

    @tf.function(input_signature=[tf.TensorSpec([None, 3], tf.float32, name="dense_input")])
    def serve_float(self, dense_input):
        return tf.matmul(dense_input, self.kernel)


@pytest.fixture(scope="module")
def tiny_module():
    return TinyEncoder()


@pytest.fixture(scope="module")
def saved_model_dir(tmp_path_factory, tiny_module):
    path = tmp_path_factory.mktemp("vae_encoder")
    tf.saved_model.save(tiny_module, str(path), signatures={"serving_default": tiny_module.serve})
    return path


@pytest.fixture(scope="module")
def tflite_path(tmp_path_factory, tiny_module):
    converter = tf.lite.TFLiteConverter.from_concrete_functions(
        [tiny_module.serve_float.get_concrete_function()], tiny_module
    )
    path = tmp_path_factory.mktemp("tflite") / "encoder.tflite"
    path.write_bytes(converter.convert())
    return path


def test_saved_model_encode(saved_model_dir):
    encoder = SavedModelEncoder(saved_model_dir)

    latents = encoder.encode(np.array([[1, 2, 3], [4, 5, 6]], dtype=np.int64))

    assert encoder.input_width == 3
    assert encoder.output_name == "output_0"
    np.testing.assert_allclose(latents, [[1, 2, 3, 0], [4, 5, 6, 0]])


def test_saved_model_missing_signature(saved_model_dir):
    with pytest.raises(ModelTopologyError, match="signature"):
        SavedModelEncoder(saved_model_dir, signature="predict")


def test_saved_model_missing_input(saved_model_dir):
    with pytest.raises(ModelTopologyError, match="input"):
        SavedModelEncoder(saved_model_dir, input_name="features")


def test_saved_model_missing_output(saved_model_dir):
    with pytest.raises(ModelTopologyError, match="output"):
        SavedModelEncoder(saved_model_dir, output_name="latent")


def test_saved_model_missing_dir(tmp_path):
    with pytest.raises(AssetError):
        SavedModelEncoder(tmp_path / "missing")


def test_tflite_encode_whole_batch(tflite_path):
    encoder = TFLiteEncoder(tflite_path)

    latents = encoder.encode(np.array([[1, 2, 3], [4, 5, 6], [7, 8, 9]], dtype=np.int64))

    assert encoder.input_width == 3
    np.testing.assert_allclose(latents, [[1, 2, 3, 0], [4, 5, 6, 0], [7, 8, 9, 0]])

    # Different batch size re-allocates the input tensor
    np.testing.assert_allclose(encoder.encode(np.array([[0, 0, 1]], dtype=np.int64)), [[0, 0, 1, 0]])


def test_tflite_bad_file(tmp_path):
    path = tmp_path / "broken.tflite"
    path.write_bytes(b"not a flatbuffer")

    with pytest.raises(AssetError):
        TFLiteEncoder(path)


def test_load_encoder_dispatch(saved_model_dir, tflite_path, tmp_path):
    assert isinstance(load_encoder(saved_model_dir), SavedModelEncoder)
    assert isinstance(load_encoder(tflite_path), TFLiteEncoder)

    with pytest.raises(AssetError):
        load_encoder(tmp_path / "nothing.bin")


def test_quantization_helpers():
    detail = {"quantization": (0.5, 10), "dtype": np.int8}

    quantized = quantize_input(np.array([1.0, -2.0], dtype=np.float32), detail)
    assert quantized.dtype == np.int8
    assert quantized.tolist() == [12, 6]
    np.testing.assert_allclose(dequantize_output(quantized, detail), [1.0, -2.0])

    passthrough = {"quantization": (0.0, 0), "dtype": np.float32}
    assert dequantize_output(np.array([3], dtype=np.int32), passthrough).dtype == np.float32


def test_end_to_end_from_paths(saved_model_dir, tmp_path):
    centroids = tmp_path / "centroids.csv"
    centroids.write_text("0,0,0\n10,10,10\n5,5,5\n")

    model = SimilarityModel.from_paths(saved_model_dir, centroids, top_n=3)

    assert model.latent_dim == 3
    assert model.transform([[1, 1, 1], [9, 9, 9], [1, 1]]) == [[0, 2, 1], [1, 2, 0], []]


@pytest.fixture(scope="module")
def quantized_tflite_path(tmp_path_factory, tiny_module):
    def representative_dataset():
        rng = np.random.default_rng(0)
        for _ in range(64):
            yield [rng.integers(0, 10, size=(1, 3)).astype(np.float32)]

    converter = tf.lite.TFLiteConverter.from_concrete_functions(
        [tiny_module.serve_float.get_concrete_function()], tiny_module
    )
    converter.optimizations = [tf.lite.Optimize.DEFAULT]
    converter.representative_dataset = representative_dataset
    converter.target_spec.supported_ops = [tf.lite.OpsSet.TFLITE_BUILTINS_INT8]
    converter.inference_input_type = tf.int8
    converter.inference_output_type = tf.int8

    path = tmp_path_factory.mktemp("tflite_int8") / "encoder_quant.tflite"
    path.write_bytes(converter.convert())
    return path


def test_tflite_quantized_io(quantized_tflite_path):
    encoder = TFLiteEncoder(quantized_tflite_path)
    assert encoder.interpreter.get_input_details()[0]["dtype"] == np.int8

    latents = encoder.encode(np.array([[1, 2, 3], [9, 0, 5]], dtype=np.int64))

    assert latents.dtype == np.float32
    np.testing.assert_allclose(latents, [[1, 2, 3, 0], [9, 0, 5, 0]], atol=0.25)
