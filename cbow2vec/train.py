import logging
from typing import Optional

import numpy as np
from tqdm import tqdm

from cbow2vec.data import Corpus
from cbow2vec.errors import InvalidArgument
from cbow2vec.model import CBOWLoss, LossPartials
from cbow2vec.store import EmbeddingStore

# Training: single-example SGD over a shuffled epoch, or random interior mini-batches
# whose gradients are summed against the pre-batch weights and applied once.

logger = logging.getLogger(__name__)


class Trainer:
    """Applies a CBOW loss strategy to an EmbeddingStore over a Corpus.

    Attributes:
        store (EmbeddingStore): Embeddings mutated in place.
        corpus (Corpus): Id sequence and window size.
        loss (CBOWLoss): Strategy producing per-example partials.
        rng (np.random.Generator): Drives shuffling, batch sampling and negatives.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        corpus: Corpus,
        loss: CBOWLoss,
        rng: Optional[np.random.Generator] = None,
    ):
        self.store = store
        self.corpus = corpus
        self.loss = loss
        self.rng = rng if rng is not None else np.random.default_rng()

    def partials(self, context: np.ndarray, target: int) -> Optional[LossPartials]:
        """Loss and gradients of one example, or None when the context is empty."""
        if len(context) == 0:
            return None
        return self.loss.compute(self.store, context, int(target), self.rng)

    def step(self, context: np.ndarray, target: int, learning_rate: float) -> Optional[float]:
        """Single-example update; returns the example loss (None if skipped)."""
        partials = self.partials(context, target)
        if partials is None:
            return None
        partials.apply(self.store, learning_rate)
        return partials.loss

    def train_stochastic_epoch(self, learning_rate: float, progress: bool = False) -> float:
        """One pass over every corpus position in shuffled order.

        Args:
            learning_rate: SGD step size.
            progress: Show a tqdm progress bar. Defaults to False.

        Returns:
            Mean example loss over the epoch (nan if no example was trained).
        """
        word_ids = self.corpus.word_ids
        total, count = 0.0, 0
        positions = self.corpus.shuffled_positions(self.rng)
        for pos in tqdm(positions, desc="Training", disable=not progress):
            loss = self.step(self.corpus.context_window(pos), word_ids[pos], learning_rate)
            if loss is not None:
                total += loss
                count += 1
        return total / count if count else float("nan")

    def train_random_batch(self, batch_size: int, learning_rate: float) -> float:
        """Accumulate batch_size interior examples, then apply lr / batch_size once.

        Args:
            batch_size: Number of positions drawn (with replacement) from [W, N - W).
            learning_rate: Step size before division by batch_size.

        Returns:
            Mean example loss over the batch.

        Raises:
            InvalidArgument: If batch_size < 1.
        """
        if batch_size < 1:
            raise InvalidArgument("batch_size must be at least 1")
        word_ids = self.corpus.word_ids
        batch = LossPartials(self.store.dim)
        for pos in self.corpus.random_interior_positions(batch_size, self.rng):
            partials = self.partials(self.corpus.context_window(pos), word_ids[pos])
            if partials is not None:
                batch += partials
        batch.apply(self.store, learning_rate / batch_size)
        return batch.loss / batch.count if batch.count else float("nan")


def train(
    model,
    *,
    num_epochs: int = 1,
    lr: float = 0.02,
    lr_min_ratio: float = 0.0001,
    use_lr_decay: bool = False,
    batch_size: Optional[int] = None,
    post_process: bool = False,
    progress: bool = False,
) -> list:
    """Run several epochs on a Word2Vec model; optional linear LR decay per epoch.

    With batch_size set, an epoch is N // batch_size random batches instead of one
    shuffled single-example pass.

    Args:
        model: Word2Vec instance (modified in place).
        num_epochs: Number of epochs. Defaults to 1.
        lr: Initial learning rate. Defaults to 0.02.
        lr_min_ratio: Floor of the decayed LR as a fraction of lr. Defaults to 0.0001.
        use_lr_decay: Decay linearly from lr towards lr * lr_min_ratio. Defaults to False.
        batch_size: Random-batch size; None for stochastic epochs. Defaults to None.
        post_process: Centre and normalize embeddings after the last epoch. Defaults to False.
        progress: Show tqdm progress for stochastic epochs. Defaults to False.

    Returns:
        List of dicts with keys "epoch", "loss", "lr".
    """
    if num_epochs < 0:
        raise InvalidArgument("num_epochs must not be negative")
    if batch_size is not None and batch_size < 1:
        raise InvalidArgument("batch_size must be at least 1")
    history = []
    mode = "stochastic" if batch_size is None else f"random batches of {batch_size}"
    logger.info("Training: %d epochs, %s", num_epochs, mode)
    for epoch in range(num_epochs):
        if use_lr_decay:
            lr_current = lr * max(lr_min_ratio, 1.0 - epoch / num_epochs)
        else:
            lr_current = lr
        if batch_size is None:
            loss = model.train_stochastic_epoch(lr_current, progress=progress)
        else:
            steps = max(1, model.corpus.n_tokens // batch_size)
            losses = [model.train_random_batch(batch_size, lr_current) for _ in range(steps)]
            loss = float(np.mean(losses))
        history.append({"epoch": epoch + 1, "loss": float(loss), "lr": lr_current})
        logger.info("Epoch %d/%d loss %.4f lr %.6f", epoch + 1, num_epochs, loss, lr_current)
    if post_process:
        model.post_process()
    return history
