"""
TensorFlow encoder backends.

Two artifact formats are supported:

1. SavedModel directory
   - Loaded with `tf.saved_model.load`.
   - Inference goes through a named signature (default `serving_default`)
     whose keyword input is the feature matrix (default `dense_input`).

2. TFLite flatbuffer
   - Loaded with `tf.lite.Interpreter`.
   - The input tensor is resized to the batch shape so the whole batch runs
     in one `invoke()`.
   - Quantized (int8/uint8) models get their inputs quantized and outputs
     dequantized using the tensor's (scale, zero_point).
"""

import logging
import threading
from pathlib import Path

import numpy as np
import tensorflow as tf

from .errors import AssetError, ModelTopologyError

logger = logging.getLogger(__name__)


# === TFLite quantization helpers ===
def quantize_input(input_data, input_detail):
    """Quantize input to int8/uint8 if the tensor carries quantization params."""
    scale, zero_point = input_detail["quantization"]
    if scale == 0:  # no quantization
        return input_data.astype(input_detail["dtype"])
    return np.round(input_data / scale + zero_point).astype(input_detail["dtype"])


def dequantize_output(output_data, output_detail):
    """Dequantize int8/uint8 output back to float32 if required."""
    scale, zero_point = output_detail["quantization"]
    if scale == 0:
        return output_data.astype(np.float32)
    return (output_data.astype(np.float32) - zero_point) * scale


def _static_width(shape):
    if len(shape) == 2 and shape[1] is not None and int(shape[1]) > 0:
        return int(shape[1])
    return None


class TFLiteEncoder:
    def __init__(self, model_path, num_threads=None):
        model_path = Path(model_path)
        if not model_path.is_file():
            raise AssetError(f"TFLite model not found: {model_path}")

        try:
            self.interpreter = tf.lite.Interpreter(model_path=str(model_path), num_threads=num_threads)
            self.interpreter.allocate_tensors()
        except (ValueError, RuntimeError) as e:
            raise AssetError(f"Failed to load TFLite model {model_path}: {e}") from e

        input_details = self.interpreter.get_input_details()
        output_details = self.interpreter.get_output_details()
        if not input_details:
            raise ModelTopologyError(f"{model_path}: model has no input tensor")
        if not output_details:
            raise ModelTopologyError(f"{model_path}: model has no output tensor")

        self._input_index = input_details[0]["index"]
        self._output_index = output_details[0]["index"]
        self._batch_shape = None
        self._lock = threading.Lock()

        signature = input_details[0].get("shape_signature", input_details[0]["shape"])
        self.input_width = _static_width(signature)

        logger.info("Loaded TFLite encoder %s (input %s, output %s)",
                    model_path, input_details[0]["shape"], output_details[0]["shape"])

    def _resize(self, shape):
        if shape == self._batch_shape:
            return
        self.interpreter.resize_tensor_input(self._input_index, list(shape))
        self.interpreter.allocate_tensors()
        self._batch_shape = shape

    def encode(self, features):
        with self._lock:
            self._resize(features.shape)

            input_detail = self.interpreter.get_input_details()[0]
            output_detail = self.interpreter.get_output_details()[0]

            if input_detail["dtype"] in (np.int8, np.uint8):
                sample = quantize_input(features.astype(np.float32), input_detail)
            else:
                sample = features.astype(input_detail["dtype"])

            self.interpreter.set_tensor(self._input_index, sample)
            self.interpreter.invoke()

            raw_output = self.interpreter.get_tensor(self._output_index)
            return dequantize_output(raw_output, output_detail)


class SavedModelEncoder:
    def __init__(self, model_dir, signature="serving_default", input_name="dense_input",
                 output_name=None, tags=("serve",)):
        model_dir = Path(model_dir)
        if not model_dir.is_dir():
            raise AssetError(f"SavedModel directory not found: {model_dir}")

        try:
            self.model = tf.saved_model.load(str(model_dir), tags=list(tags))
        except (OSError, ValueError, RuntimeError) as e:
            raise AssetError(f"Failed to load SavedModel {model_dir}: {e}") from e

        if signature not in self.model.signatures:
            raise ModelTopologyError(
                f"{model_dir}: signature '{signature}' not found "
                f"(available: {sorted(self.model.signatures.keys())})"
            )
        self.fn = self.model.signatures[signature]

        _, input_specs = self.fn.structured_input_signature
        if input_name is None and len(input_specs) == 1:
            input_name = next(iter(input_specs))
        if input_name not in input_specs:
            raise ModelTopologyError(
                f"{model_dir}: signature '{signature}' has no input '{input_name}' "
                f"(available: {sorted(input_specs)})"
            )
        self.input_name = input_name
        self.input_spec = input_specs[input_name]

        outputs = self.fn.structured_outputs
        if not outputs:
            raise ModelTopologyError(f"{model_dir}: signature '{signature}' has no outputs")
        if output_name is None:
            output_name = sorted(outputs)[0]
        if output_name not in outputs:
            raise ModelTopologyError(
                f"{model_dir}: signature '{signature}' has no output '{output_name}' "
                f"(available: {sorted(outputs)})"
            )
        self.output_name = output_name

        spec_shape = self.input_spec.shape
        self.input_width = _static_width(spec_shape.as_list() if spec_shape.rank is not None else [])

        logger.info("Loaded SavedModel encoder %s [%s: %s -> %s]",
                    model_dir, signature, input_name, output_name)

    def encode(self, features):
        tensor = tf.constant(features, dtype=self.input_spec.dtype)
        result = self.fn(**{self.input_name: tensor})
        return result[self.output_name].numpy()


def load_encoder(path, **kwargs):
    """Pick the backend from the artifact: a `.tflite` file or a SavedModel directory."""
    path = Path(path)
    if path.is_file() and path.suffix == ".tflite":
        return TFLiteEncoder(path, num_threads=kwargs.get("num_threads"))
    if path.is_dir():
        return SavedModelEncoder(
            path,
            signature=kwargs.get("signature", "serving_default"),
            input_name=kwargs.get("input_name", "dense_input"),
            output_name=kwargs.get("output_name"),
        )
    raise AssetError(f"Encoder model not found or unsupported: {path}")
