from abc import ABC, abstractmethod
from typing import List, Tuple

import numpy as np

from cbow2vec.errors import InvalidConfiguration
from cbow2vec.store import EmbeddingStore

# CBOW loss strategies: forward projection, loss and gradients in pure NumPy.
# The projection is the mean of the context's input rows; a strategy scores it against
# output rows and returns sparse partials that the Trainer applies (W -= lr * grad).


def _sigmoid(x: np.ndarray) -> np.ndarray:
    """Numerically stable sigmoid; clips input to avoid overflow in exp.

    Args:
        x: Input array (any shape).

    Returns:
        Sigmoid of x, same shape; values in (0, 1).
    """
    x = np.clip(x, -500.0, 500.0)
    return 1.0 / (1.0 + np.exp(-x))


def _log_sigmoid(x: np.ndarray) -> np.ndarray:
    """Log of sigmoid: -softplus(-x), computed in a numerically stable way.

    Args:
        x: Input array (any shape).

    Returns:
        log(sigmoid(x)), same shape as x.
    """
    x = np.clip(x, -500.0, 500.0)
    return -np.maximum(-x, 0) - np.log(1.0 + np.exp(-np.abs(x)))


def projection(store: EmbeddingStore, context: np.ndarray) -> np.ndarray:
    """Mean of the input rows of the context ids (length D, float32)."""
    return store.input_rows[context].mean(axis=0, dtype=np.float32)


def softmax_probabilities(store: EmbeddingStore, context: np.ndarray) -> np.ndarray:
    """Softmax over output_rows @ projection(context); shape (V,)."""
    logits = store.output_rows @ projection(store, context)
    e = np.exp(logits - logits.max())
    return e / e.sum()


class LossPartials:
    """Sparse gradients for one example or an accumulated batch.

    Input partials are kept per context slot and output partials per touched row, so a
    word that appears twice receives two updates. Pieces are stored as lists and only
    concatenated when applied.

    Attributes:
        loss (float): Summed loss of the examples folded in.
        count (int): Number of examples folded in.
    """

    def __init__(self, dim: int):
        self.dim = dim
        self.loss = 0.0
        self.count = 0
        self._input: List[Tuple[np.ndarray, np.ndarray]] = []
        self._output: List[Tuple[np.ndarray, np.ndarray]] = []

    def add_input(self, ids: np.ndarray, grads: np.ndarray) -> None:
        self._input.append((np.asarray(ids, dtype=np.int64), grads))

    def add_output(self, ids: np.ndarray, grads: np.ndarray) -> None:
        self._output.append((np.asarray(ids, dtype=np.int64), grads))

    def __iadd__(self, other: "LossPartials") -> "LossPartials":
        self._input.extend(other._input)
        self._output.extend(other._output)
        self.loss += other.loss
        self.count += other.count
        return self

    @property
    def empty(self) -> bool:
        return not self._input and not self._output

    def input_gradients(self) -> Tuple[np.ndarray, np.ndarray]:
        return _stack(self._input, self.dim)

    def output_gradients(self) -> Tuple[np.ndarray, np.ndarray]:
        return _stack(self._output, self.dim)

    def dense(self, vocab_size: int) -> Tuple[np.ndarray, np.ndarray]:
        """Scatter into full (V, D) gradient matrices (for inspection and tests)."""
        d_in = np.zeros((vocab_size, self.dim), dtype=np.float64)
        d_out = np.zeros((vocab_size, self.dim), dtype=np.float64)
        ids, grads = self.input_gradients()
        np.add.at(d_in, ids, grads)
        ids, grads = self.output_gradients()
        np.add.at(d_out, ids, grads)
        return d_in, d_out

    def apply(self, store: EmbeddingStore, scale: float) -> None:
        """Subtract scale * gradient from every touched row of store."""
        ids, grads = self.input_gradients()
        if len(ids):
            store.update_input(ids, grads, scale)
        ids, grads = self.output_gradients()
        if len(ids):
            store.update_output(ids, grads, scale)


def _stack(pieces: List[Tuple[np.ndarray, np.ndarray]], dim: int) -> Tuple[np.ndarray, np.ndarray]:
    if not pieces:
        return np.empty(0, dtype=np.int64), np.empty((0, dim), dtype=np.float32)
    ids = np.concatenate([p[0] for p in pieces])
    grads = np.concatenate([np.broadcast_to(g, (len(i), dim)) for i, g in pieces])
    return ids, grads


class CBOWLoss(ABC):
    """Loss/update strategy for one (context, target) example."""

    name = "abstract"

    @abstractmethod
    def compute(
        self,
        store: EmbeddingStore,
        context: np.ndarray,
        target: int,
        rng: np.random.Generator,
    ) -> LossPartials:
        """Return the loss and gradients of one example (context must be non-empty)."""

    def _context_partials(
        self, partials: LossPartials, context: np.ndarray, d_proj: np.ndarray
    ) -> None:
        # d proj / d input[c] = 1 / |context| for every slot
        ctx_grad = d_proj / len(context)
        partials.add_input(context, np.broadcast_to(ctx_grad, (len(context), len(ctx_grad))))


class NegativeSamplingLoss(CBOWLoss):
    """Logistic loss of the target against K uniformly drawn negatives.

    Loss is -log(sigmoid(proj . u_t)) - sum_n log(sigmoid(-proj . u_n)), where u are output
    rows. Draws that hit the target are dropped, not redrawn, so an example can use fewer
    than K negatives.

    Attributes:
        negative_sample_count (int): Number of draws K per example.
    """

    name = "negative_sampling"

    def __init__(self, negative_sample_count: int):
        if negative_sample_count < 1:
            raise InvalidConfiguration("negative_sample_count must be at least 1")
        self.negative_sample_count = negative_sample_count

    def sample_negatives(self, target: int, vocab_size: int, rng: np.random.Generator) -> np.ndarray:
        """Draw K ids uniformly from [0, vocab_size) and drop those equal to target."""
        draws = np.asarray(rng.integers(0, vocab_size, size=self.negative_sample_count))
        return draws[draws != target]

    def compute(self, store, context, target, rng):
        negatives = self.sample_negatives(target, store.vocab_size, rng)
        return self.gradients(store, context, target, negatives)

    def gradients(
        self,
        store: EmbeddingStore,
        context: np.ndarray,
        target: int,
        negatives: np.ndarray,
    ) -> LossPartials:
        """Loss and partials for fixed negatives.

        Args:
            store: Current embeddings.
            context: Context ids, shape (C,), C >= 1.
            target: Target id.
            negatives: Negative ids, shape (M,), M <= K; repeats allowed.

        Returns:
            LossPartials with C input slots and 1 + M output rows.
        """
        proj = projection(store, context)
        u_t = store.output_row(target)
        score = float(np.dot(proj, u_t))
        # d/dx [-log(sigmoid(x))] = sigmoid(x) - 1
        g_pos = float(_sigmoid(score)) - 1.0

        partials = LossPartials(store.dim)
        partials.count = 1
        partials.add_output(np.array([target]), (g_pos * proj)[np.newaxis, :])
        d_proj = g_pos * u_t
        loss = -float(_log_sigmoid(score))

        if len(negatives):
            u_neg = store.output_rows[negatives]  # (M, D)
            neg_scores = u_neg @ proj  # (M,)
            # d/dx [-log(sigmoid(-x))] = sigmoid(x)
            g_neg = _sigmoid(neg_scores.astype(np.float64)).astype(np.float32)
            partials.add_output(negatives, g_neg[:, np.newaxis] * proj[np.newaxis, :])
            d_proj = d_proj + g_neg @ u_neg
            loss -= float(_log_sigmoid(-neg_scores.astype(np.float64)).sum())

        self._context_partials(partials, context, d_proj)
        partials.loss = loss
        return partials

    def loss(
        self,
        store: EmbeddingStore,
        context: np.ndarray,
        target: int,
        negatives: np.ndarray,
    ) -> float:
        """Loss value only, for fixed negatives."""
        proj = projection(store, context).astype(np.float64)
        score = proj @ store.output_row(target)
        neg_scores = store.output_rows[negatives].astype(np.float64) @ proj
        return float(-_log_sigmoid(score) - _log_sigmoid(-neg_scores).sum())


class SoftmaxLoss(CBOWLoss):
    """Full-softmax categorical cross-entropy over the whole vocabulary.

    Cost per example is O(V * D); every output row is touched.
    """

    name = "softmax"

    def compute(self, store, context, target, rng=None):
        proj = projection(store, context)
        p = softmax_probabilities(store, context)
        # d CE / d logits = p - onehot(target)
        d_logits = p.astype(np.float32)
        d_logits[target] -= 1.0

        partials = LossPartials(store.dim)
        partials.count = 1
        partials.add_output(np.arange(store.vocab_size), np.outer(d_logits, proj))
        self._context_partials(partials, context, store.output_rows.T @ d_logits)
        partials.loss = cross_entropy(p, target)
        return partials

    def loss(self, store: EmbeddingStore, context: np.ndarray, target: int) -> float:
        return cross_entropy(softmax_probabilities(store, context), target)


def cross_entropy(p: np.ndarray, target: int, eps: float = 1e-8) -> float:
    return -float(np.log(np.clip(p[target], eps, 1.0 - eps)))


LOSSES = {
    NegativeSamplingLoss.name: NegativeSamplingLoss,
    SoftmaxLoss.name: SoftmaxLoss,
}


def make_loss(name: str, negative_sample_count: int) -> CBOWLoss:
    """Build a strategy by name ("negative_sampling" or "softmax")."""
    if name == NegativeSamplingLoss.name:
        return NegativeSamplingLoss(negative_sample_count)
    if name == SoftmaxLoss.name:
        return SoftmaxLoss()
    raise InvalidConfiguration(f"unknown loss {name!r}; expected one of {sorted(LOSSES)}")
