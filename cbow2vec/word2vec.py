import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from cbow2vec import eval as search
from cbow2vec.codec import ModelState, load_model, save_model
from cbow2vec.data import Corpus, Vocabulary, build_vocab
from cbow2vec.errors import InvalidArgument, InvalidConfiguration
from cbow2vec.model import CBOWLoss, NegativeSamplingLoss, cross_entropy, softmax_probabilities
from cbow2vec.store import EmbeddingStore
from cbow2vec.train import Trainer

# Public model: CBOW word embeddings trained with negative sampling, neighbour queries,
# and binary save/load. Not thread-safe; callers serialize access to one instance.

logger = logging.getLogger(__name__)


class Word2Vec:
    """CBOW embedding model built once from a token list.

    Vocabulary, corpus and hyperparameters are fixed at construction (or replaced
    wholesale by a successful load); only the embeddings change during training.

    Attributes:
        vocab (Vocabulary): Word <-> id table.
        corpus (Corpus): Tokens rewritten as ids.
        context_window_size (int): Half-window radius W.
        negative_sample_count (int): Negative draws K per example.
        embed_dimensions (int): Embedding length D.
        store (EmbeddingStore): Input and output embeddings.
        rng (np.random.Generator): Model-wide generator (init, shuffles, negatives).
    """

    def __init__(
        self,
        tokens: Sequence[str],
        context_window_size: int,
        negative_sample_count: int,
        embed_dimensions: int,
        loss: Optional[CBOWLoss] = None,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """Index the corpus and randomly initialise both embedding matrices.

        Args:
            tokens: Word tokens; at least 1 + 2 * context_window_size of them.
            context_window_size: Half-window radius W >= 1.
            negative_sample_count: Negative samples K >= 1.
            embed_dimensions: Embedding length D >= 1.
            loss: Update strategy. Defaults to None (NegativeSamplingLoss(K)).
            seed: Seed for a new generator; None draws from OS entropy. Defaults to None.
            rng: Generator to use instead of seeding one. Defaults to None.

        Raises:
            InvalidConfiguration: If W, K or D is below 1.
            InvalidCorpus: If the corpus cannot hold one full window.
        """
        if context_window_size < 1:
            raise InvalidConfiguration("context_window_size must be at least 1")
        if negative_sample_count < 1:
            raise InvalidConfiguration("negative_sample_count must be at least 1")
        if embed_dimensions < 1:
            raise InvalidConfiguration("embed_dimensions must be at least 1")
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.negative_sample_count = negative_sample_count
        self.loss = loss if loss is not None else NegativeSamplingLoss(negative_sample_count)
        vocab, corpus = build_vocab(tokens, context_window_size)
        store = EmbeddingStore(len(vocab), embed_dimensions, self.rng)
        self._install(vocab, corpus, store)

    def _install(self, vocab: Vocabulary, corpus: Corpus, store: EmbeddingStore) -> None:
        self.vocab = vocab
        self.corpus = corpus
        self.context_window_size = corpus.window_size
        self.embed_dimensions = store.dim
        self.store = store
        self.trainer = Trainer(store, corpus, self.loss, self.rng)

    @property
    def vocab_size(self) -> int:
        return len(self.vocab)

    @property
    def input_embeddings(self) -> np.ndarray:
        """(V, D) view of the input (context-side) matrix."""
        return self.store.input_rows

    @property
    def output_embeddings(self) -> np.ndarray:
        """(V, D) view of the output (target-side) matrix."""
        return self.store.output_rows

    # Training

    def train_stochastic_epoch(self, learning_rate: float, progress: bool = False) -> float:
        """Shuffled single-example pass over every position; returns the mean loss."""
        return self.trainer.train_stochastic_epoch(learning_rate, progress=progress)

    def train_random_batch(self, batch_size: int, learning_rate: float) -> float:
        """One accumulated update from batch_size random interior positions."""
        return self.trainer.train_random_batch(batch_size, learning_rate)

    def post_process(self) -> None:
        """Centre both matrices on the origin and normalize every row to unit length."""
        logger.info("Post processing %d x %d embeddings", self.vocab_size, self.embed_dimensions)
        self.store.post_process()

    # Queries

    def get_embedding(self, word: str) -> np.ndarray:
        """Copy of word's output embedding (length D)."""
        idx = self.vocab.index(word, "get_embedding")
        return self.store.output_row(idx).copy()

    def find_similar_to_word(self, word: str, n: int) -> List[str]:
        return search.find_similar_to_word(self.vocab, self.store, word, n)

    def find_similar_to_embedding(self, embedding, n: int) -> List[str]:
        return search.find_similar_to_embedding(self.vocab, self.store, embedding, n)

    def analogy(self, a: str, b: str, c: str, n: int = 1) -> List[str]:
        return search.analogy(self.vocab, self.store, a, b, c, n)

    def predict_next_words(self, context_words: Sequence[str], n: int) -> List[str]:
        """Most probable target words for a context under the full softmax.

        Args:
            context_words: Known words; at least one.
            n: Number of words wanted; capped at V - 1.

        Raises:
            WordNotInVocabulary: If a context word is unknown.
            InvalidArgument: If n < 1 or the context is empty.
        """
        context = self._context_ids(context_words, "predict_next_words")
        if n < 1:
            raise InvalidArgument("predict_next_words: n must be at least 1")
        n = min(n, self.vocab_size - 1)
        p = softmax_probabilities(self.store, context)
        return [self.vocab.word(i) for i in search.top_k(p, n)]

    def calculate_loss(self, context_words: Sequence[str], expected_word: str) -> float:
        """Full-softmax cross-entropy of expected_word given the context."""
        context = self._context_ids(context_words, "calculate_loss")
        target = self.vocab.index(expected_word, "calculate_loss")
        return cross_entropy(softmax_probabilities(self.store, context), target)

    def _context_ids(self, context_words: Sequence[str], caller: str) -> np.ndarray:
        if len(context_words) == 0:
            raise InvalidArgument(f"{caller}: context must hold at least one word")
        return self.vocab.indices(context_words, caller)

    # Persistence

    def state(self) -> ModelState:
        return ModelState(
            corpus=self.corpus.word_ids,
            word_to_id=self.vocab.word_to_id,
            id_to_word=self.vocab.id_to_word,
            context_window_size=self.context_window_size,
            embed_dimensions=self.embed_dimensions,
            input=self.store.input,
            output=self.store.output,
        )

    def save(self, path: Union[str, Path]) -> bool:
        """Write the model to path (parents created); False if anything failed."""
        return save_model(path, self.state())

    def load(self, path: Union[str, Path]) -> bool:
        """Replace this model with the one stored at path.

        The file is decoded and validated into a scratch state first; on any failure the
        current model is left untouched and False is returned. The negative sample count
        and loss strategy are not stored in the file and are kept.
        """
        state = load_model(path)
        if state is None:
            return False
        try:
            vocab = Vocabulary(state.word_to_id, state.id_to_word)
            corpus = Corpus(state.corpus, state.context_window_size)
            store = EmbeddingStore.from_buffers(state.input, state.output, state.embed_dimensions)
        except InvalidConfiguration as e:
            logger.warning("Loading model from %s failed: %s", path, e)
            return False
        self._install(vocab, corpus, store)
        return True

    def __repr__(self) -> str:
        return (
            f"Word2Vec(vocab_size={self.vocab_size}, corpus={self.corpus.n_tokens}, "
            f"window={self.context_window_size}, negatives={self.negative_sample_count}, "
            f"dims={self.embed_dimensions}, loss={self.loss.name})"
        )
