import logging
from typing import Optional

import numpy as np

from cbow2vec.config import INIT_SCALE, POST_PROCESS_MAX_SWEEPS, POST_PROCESS_TOLERANCE
from cbow2vec.errors import InvalidConfiguration

# Two V x D float32 matrices held as flat row-major buffers; row i is [i*D, (i+1)*D).
# Updates go through np.subtract.at so repeated ids accumulate.

logger = logging.getLogger(__name__)


class EmbeddingStore:
    """Input (context-side) and output (target-side) embeddings for V words.

    Attributes:
        input (np.ndarray): Flat float32 buffer of length V * D.
        output (np.ndarray): Flat float32 buffer of length V * D.
        vocab_size (int): Number of rows V.
        dim (int): Row length D.
    """

    def __init__(
        self,
        vocab_size: int,
        dim: int,
        rng: Optional[np.random.Generator] = None,
        init_scale: float = INIT_SCALE,
    ):
        """Allocate both buffers with independent uniform samples in [-init_scale, init_scale).

        Args:
            vocab_size: Number of rows V.
            dim: Embedding dimension D.
            rng: Random generator. Defaults to None (new default_rng).
            init_scale: Half-width of the uniform init range. Defaults to 0.1.

        Raises:
            InvalidConfiguration: If dim < 1 or vocab_size < 1.
        """
        if dim < 1:
            raise InvalidConfiguration("embed_dimensions must be at least 1")
        if vocab_size < 1:
            raise InvalidConfiguration("vocabulary must hold at least one word")
        if rng is None:
            rng = np.random.default_rng()
        n = vocab_size * dim
        self.input = rng.uniform(-init_scale, init_scale, size=n).astype(np.float32)
        self.output = rng.uniform(-init_scale, init_scale, size=n).astype(np.float32)
        self.vocab_size = vocab_size
        self.dim = dim

    @classmethod
    def from_buffers(cls, input: np.ndarray, output: np.ndarray, dim: int) -> "EmbeddingStore":
        """Build a store around existing buffers (used when loading a saved model).

        Raises:
            InvalidConfiguration: If dim < 1 or the buffers do not hold whole rows.
        """
        if dim < 1:
            raise InvalidConfiguration("embed_dimensions must be at least 1")
        input = np.ascontiguousarray(input, dtype=np.float32).ravel()
        output = np.ascontiguousarray(output, dtype=np.float32).ravel()
        if input.size != output.size or input.size == 0 or input.size % dim:
            raise InvalidConfiguration(
                f"buffers of {input.size} and {output.size} floats do not hold rows of {dim}"
            )
        store = cls.__new__(cls)
        store.input = input
        store.output = output
        store.vocab_size = input.size // dim
        store.dim = dim
        return store

    @property
    def input_rows(self) -> np.ndarray:
        """(V, D) view of the input buffer."""
        return self.input.reshape(self.vocab_size, self.dim)

    @property
    def output_rows(self) -> np.ndarray:
        """(V, D) view of the output buffer."""
        return self.output.reshape(self.vocab_size, self.dim)

    def input_row(self, idx: int) -> np.ndarray:
        return self.input[idx * self.dim : (idx + 1) * self.dim]

    def output_row(self, idx: int) -> np.ndarray:
        return self.output[idx * self.dim : (idx + 1) * self.dim]

    def update_input(self, ids: np.ndarray, grads: np.ndarray, scale: float) -> None:
        """input[ids[j]] -= scale * grads[j] for every j; repeated ids each apply."""
        np.subtract.at(self.input_rows, ids, (scale * grads).astype(np.float32, copy=False))

    def update_output(self, ids: np.ndarray, grads: np.ndarray, scale: float) -> None:
        """output[ids[j]] -= scale * grads[j] for every j; repeated ids each apply."""
        np.subtract.at(self.output_rows, ids, (scale * grads).astype(np.float32, copy=False))

    def post_process(self) -> None:
        """Centre each matrix on the origin and scale every row to unit length."""
        for name, buf in (("input", self.input), ("output", self.output)):
            rows = buf.reshape(self.vocab_size, self.dim)
            rows[...] = _center_and_normalize(rows, name)

    def copy(self) -> "EmbeddingStore":
        return EmbeddingStore.from_buffers(self.input.copy(), self.output.copy(), self.dim)


def _center_and_normalize(rows: np.ndarray, name: str = "") -> np.ndarray:
    """Mean pass then centre+normalize pass, repeated until the mean is ~0.

    Normalizing moves the mean again, so one sweep is not enough for small V; for
    large V the first sweep usually lands within tolerance.

    Args:
        rows: (V, D) matrix.
        name: Matrix name for log messages.

    Returns:
        float32 (V, D) matrix with unit rows and mean within tolerance of 0.
    """
    X = rows.astype(np.float64)
    for sweep in range(1, POST_PROCESS_MAX_SWEEPS + 1):
        mean = X.mean(axis=0)
        X -= mean
        norm = np.linalg.norm(X, axis=1, keepdims=True)
        X /= np.where(norm > 0, norm, 1.0)
        residual = float(np.linalg.norm(X.mean(axis=0)))
        if residual < POST_PROCESS_TOLERANCE:
            logger.debug("post_process %s: converged after %d sweeps", name, sweep)
            break
    else:
        logger.warning(
            "post_process %s: mean still %.3g from origin after %d sweeps",
            name,
            residual,
            POST_PROCESS_MAX_SWEEPS,
        )
    return X.astype(np.float32)
