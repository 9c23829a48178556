import logging
from typing import Dict, Iterable, List, Sequence, Tuple

import numpy as np

from cbow2vec.errors import InvalidConfiguration, InvalidCorpus, WordNotInVocabulary

# Vocabulary (ids in order of first appearance) and the corpus rewritten as ids.
# Context windows are symmetric and clipped at the corpus ends.

logger = logging.getLogger(__name__)


class Vocabulary:
    """Bidirectional word <-> id table.

    Attributes:
        word_to_id (Dict[str, int]): Mapping from word to its dense id.
        id_to_word (List[str]): Words by id; exact inverse of word_to_id.
    """

    def __init__(self, word_to_id: Dict[str, int], id_to_word: List[str]):
        self.word_to_id = word_to_id
        self.id_to_word = id_to_word

    def __len__(self) -> int:
        return len(self.id_to_word)

    def __contains__(self, word: object) -> bool:
        return word in self.word_to_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vocabulary):
            return NotImplemented
        return self.word_to_id == other.word_to_id and self.id_to_word == other.id_to_word

    def index(self, word: str, caller: str = "") -> int:
        """Return the id of word.

        Raises:
            WordNotInVocabulary: If word was not in the construction corpus.
        """
        try:
            return self.word_to_id[word]
        except KeyError:
            raise WordNotInVocabulary(word, caller) from None

    def indices(self, words: Iterable[str], caller: str = "") -> np.ndarray:
        return np.array([self.index(w, caller) for w in words], dtype=np.int64)

    def word(self, idx: int) -> str:
        return self.id_to_word[idx]

    def is_consistent(self) -> bool:
        """True when the map and the list are exact inverses with ids dense in [0, V)."""
        if len(self.word_to_id) != len(self.id_to_word):
            return False
        return all(self.word_to_id.get(w) == i for i, w in enumerate(self.id_to_word))


class Corpus:
    """Token sequence rewritten as vocabulary ids, plus context-window helpers.

    Attributes:
        word_ids (np.ndarray): Read-only 1D int64 array of ids, length n_tokens.
        window_size (int): Half-window radius W.
        n_tokens (int): Corpus length N.
    """

    def __init__(self, word_ids: Sequence[int], window_size: int):
        """Wrap an id sequence; the array is frozen after construction.

        Args:
            word_ids: Vocabulary ids for the whole corpus.
            window_size: Half-window radius; must be at least 1.

        Raises:
            InvalidConfiguration: If window_size < 1.
            InvalidCorpus: If there is no room for one full window (N < 1 + 2W).
        """
        if window_size < 1:
            raise InvalidConfiguration("context_window_size must be at least 1")
        ids = np.array(word_ids, dtype=np.int64)
        if ids.ndim != 1 or len(ids) < 1 + 2 * window_size:
            raise InvalidCorpus(
                f"corpus of {ids.size} tokens is shorter than one full window "
                f"(need at least {1 + 2 * window_size})"
            )
        ids.setflags(write=False)
        self.word_ids = ids
        self.window_size = window_size
        self.n_tokens = len(ids)

    def __len__(self) -> int:
        return self.n_tokens

    def context_window(self, position: int) -> np.ndarray:
        """Ids at offsets -W..-1 and +1..+W around position, clipped at the ends.

        Args:
            position: Target position in [0, n_tokens).

        Returns:
            1D int64 array of up to 2W ids (fewer near the corpus edges).
        """
        W = self.window_size
        left = self.word_ids[max(0, position - W) : position]
        right = self.word_ids[position + 1 : position + 1 + W]
        return np.concatenate((left, right))

    def interior_range(self) -> Tuple[int, int]:
        """Half-open range [W, N - W) of positions whose window is full-sized."""
        return self.window_size, self.n_tokens - self.window_size

    def shuffled_positions(self, rng: np.random.Generator) -> np.ndarray:
        """Random permutation of every corpus position."""
        return rng.permutation(self.n_tokens)

    def random_interior_positions(self, count: int, rng: np.random.Generator) -> np.ndarray:
        """Draw count interior positions uniformly (with replacement)."""
        low, high = self.interior_range()
        return rng.integers(low, high, size=count)


def build_vocab(tokens: Sequence[str], window_size: int) -> Tuple[Vocabulary, Corpus]:
    """Assign ids to words in order of first appearance and rewrite tokens as ids.

    Args:
        tokens: Word tokens, in corpus order.
        window_size: Half-window radius W; the corpus must hold 1 + 2W tokens.

    Returns:
        Tuple (vocabulary, corpus).

    Raises:
        InvalidConfiguration: If window_size < 1.
        InvalidCorpus: If len(tokens) < 1 + 2 * window_size.
    """
    if window_size < 1:
        raise InvalidConfiguration("context_window_size must be at least 1")
    if len(tokens) < 1 + 2 * window_size:
        raise InvalidCorpus(
            f"corpus of {len(tokens)} tokens is shorter than one full window "
            f"(need at least {1 + 2 * window_size})"
        )
    word_to_id: Dict[str, int] = {}
    id_to_word: List[str] = []
    word_ids = np.empty(len(tokens), dtype=np.int64)
    for pos, word in enumerate(tokens):
        idx = word_to_id.get(word)
        if idx is None:
            idx = len(id_to_word)
            word_to_id[word] = idx
            id_to_word.append(word)
        word_ids[pos] = idx
    logger.info("Vocab size %d, corpus tokens %d", len(id_to_word), len(tokens))
    return Vocabulary(word_to_id, id_to_word), Corpus(word_ids, window_size)
