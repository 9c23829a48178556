"""Default settings for training and the command-line entry point."""

import logging

# Hyperparameters used by the text8 demo run.
DEFAULT_CONTEXT_WINDOW_SIZE = 4
DEFAULT_NEGATIVE_SAMPLE_COUNT = 10
DEFAULT_EMBED_DIMENSIONS = 150
DEFAULT_LEARNING_RATE = 0.02

# Embeddings start uniform in [-INIT_SCALE, INIT_SCALE).
INIT_SCALE = 0.1

# Post-processing stops once the matrix mean norm is below this.
POST_PROCESS_TOLERANCE = 1e-6
POST_PROCESS_MAX_SWEEPS = 1000

# Words queried by `run.py` when --similar is not given.
DEFAULT_QUERY_WORDS = ["cat", "dog", "king", "queen", "black", "white", "tree", "house"]
DEFAULT_NEIGHBOURS = 8

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """Configure root logging for command-line runs."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
