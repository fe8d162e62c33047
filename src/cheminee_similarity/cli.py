"""
Rank a file of feature rows against the cluster centroids.

Usage:
  cheminee-similarity --config settings.toml --input features.csv --top-n 10

The input holds one comma-separated integer feature row per line. Each output
line is a JSON object:

  {"row": 0, "clusters": [17, 3, ...], "error": null}

Rows that could not be ranked have an empty "clusters" list and the reason in
"error".
"""

import argparse
import json
import logging
import sys
from contextlib import ExitStack

import tqdm

from .config import load_settings
from .errors import SimilarityError
from .model import build_similarity_model

logger = logging.getLogger(__name__)


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_feature_line(line):
    """Split one input line into ints. Malformed values are passed through as strings."""
    values = []
    for value in line.split(","):
        value = value.strip()
        try:
            values.append(int(value))
        except ValueError:
            values.append(value)
    return values


def read_feature_rows(file):
    for line in file:
        line = line.strip()
        if line:
            yield parse_feature_line(line)


def chunked(rows, size):
    chunk = []
    for row in rows:
        chunk.append(row)
        if len(chunk) == size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def run(model, rows, out, batch_size, top_n=None, progress=True):
    """Rank `rows` in chunks of `batch_size` and write JSON lines to `out`."""
    row_id = 0
    for chunk in tqdm.tqdm(chunked(rows, batch_size), unit="batch", disable=not progress):
        for result in model.transform_detailed(chunk, top_n=top_n):
            record = {
                "row": row_id,
                "clusters": result.ranking,
                "error": None if result.ok else str(result.error),
            }
            out.write(json.dumps(record) + "\n")
            row_id += 1
    return row_id


def build_parser():
    parser = argparse.ArgumentParser(prog="cheminee-similarity", description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--config", help="TOML settings file")
    parser.add_argument("--input", required=True, help="CSV file of integer feature rows ('-' for stdin)")
    parser.add_argument("--output", default="-", help="JSON lines output file ('-' for stdout)")
    parser.add_argument("--encoder", help="Encoder SavedModel directory or .tflite file")
    parser.add_argument("--centroids", help="Centroid CSV, .npy or pickled KMeans model")
    parser.add_argument("--top-n", type=int, help="Keep only the N nearest clusters")
    parser.add_argument("--batch-size", type=int, help="Rows per encoder call")
    parser.add_argument("--workers", type=int, help="Threads used for ranking")
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
        overrides = {
            "encoder_path": args.encoder,
            "centroids_path": args.centroids,
            "top_n": args.top_n,
            "batch_size": args.batch_size,
            "workers": args.workers,
        }
        settings = settings.replace(**{k: v for k, v in overrides.items() if v is not None})
        configure_logging(settings.log_level)

        model = build_similarity_model(settings.require_assets())
    except SimilarityError as e:
        logger.error("Startup failed: %s", e)
        return 1

    logger.info("Ranking against %d clusters (latent dim %d)", model.num_clusters, model.latent_dim)

    try:
        with ExitStack() as stack:
            infile = sys.stdin if args.input == "-" else stack.enter_context(open(args.input, "r"))
            outfile = sys.stdout if args.output == "-" else stack.enter_context(open(args.output, "w"))
            count = run(model, read_feature_rows(infile), outfile, settings.batch_size,
                        top_n=settings.top_n, progress=not args.no_progress)
    except (SimilarityError, OSError) as e:
        logger.error("Ranking failed: %s", e)
        return 1

    logger.info("Wrote %d rows", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
