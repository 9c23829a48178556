import heapq
from typing import Iterable, List, Optional

import numpy as np

from cbow2vec.data import Vocabulary
from cbow2vec.errors import DimensionMismatch, InvalidArgument
from cbow2vec.store import EmbeddingStore

# Nearest neighbours over output embeddings: word queries use a raw dot product (cosine
# once post_process has run), vector queries divide by the candidate's norm only.
# Ranking keeps a bounded heap of n entries; equal scores go to the lower id.


def top_k(scores: np.ndarray, n: int, exclude: Iterable[int] = ()) -> List[int]:
    """Ids of the n highest scores in descending order, ties to the lower id.

    Args:
        scores: 1D array of scores indexed by id.
        n: Number of ids wanted (fewer if not enough candidates).
        exclude: Ids never returned. Defaults to ().

    Returns:
        List of at most n ids.
    """
    skip = set(int(i) for i in exclude)
    values = scores.tolist()
    candidates = (i for i in range(len(values)) if i not in skip)
    return heapq.nsmallest(n, candidates, key=lambda i: (-values[i], i))


def _check_count(n: int, caller: str) -> None:
    if n < 1:
        raise InvalidArgument(f"{caller}: n must be at least 1")


def find_similar_to_word(vocab: Vocabulary, store: EmbeddingStore, word: str, n: int) -> List[str]:
    """Top min(n, V - 1) words by dot product with word's output embedding (word excluded).

    Raises:
        WordNotInVocabulary: If word is unknown.
        InvalidArgument: If n < 1.
    """
    idx = vocab.index(word, "find_similar_to_word")
    _check_count(n, "find_similar_to_word")
    scores = store.output_rows @ store.output_row(idx)
    return [vocab.word(i) for i in top_k(scores, n, exclude=(idx,))]


def embedding_scores(store: EmbeddingStore, vector) -> np.ndarray:
    """vector . output[i] / |output[i]| for every row i (query norm not divided out).

    Raises:
        DimensionMismatch: If len(vector) != D.
    """
    vec = np.asarray(vector, dtype=np.float32)
    if vec.ndim != 1 or vec.shape[0] != store.dim:
        raise DimensionMismatch(f"expected a vector of {store.dim} floats, got shape {vec.shape}")
    rows = store.output_rows
    norm = np.linalg.norm(rows, axis=1)
    return (rows @ vec) / np.where(norm > 0, norm, 1.0)


def find_similar_to_embedding(
    vocab: Vocabulary,
    store: EmbeddingStore,
    vector,
    n: int,
    exclude: Optional[Iterable[int]] = None,
) -> List[str]:
    """Top min(n, V) words for an arbitrary vector of length D.

    Args:
        vocab: Vocabulary for id -> word.
        store: Embeddings searched (output rows).
        vector: Query of length D.
        n: Number of words wanted; at least 1.
        exclude: Ids to leave out. Defaults to None.

    Returns:
        Words ordered by descending score.

    Raises:
        DimensionMismatch: If len(vector) != D.
        InvalidArgument: If n < 1.
    """
    scores = embedding_scores(store, vector)
    _check_count(n, "find_similar_to_embedding")
    return [vocab.word(i) for i in top_k(scores, n, exclude=exclude or ())]


def analogy(
    vocab: Vocabulary, store: EmbeddingStore, a: str, b: str, c: str, n: int = 1
) -> List[str]:
    """Solve "b is to a as c is to ?" via emb(a) - emb(b) + emb(c), excluding a, b, c.

    For ("king", "man", "woman") the expected answer is "queen".

    Raises:
        WordNotInVocabulary: If any of a, b, c is unknown.
        InvalidArgument: If n < 1.
    """
    ia, ib, ic = (vocab.index(w, "analogy") for w in (a, b, c))
    vec = store.output_row(ia) - store.output_row(ib) + store.output_row(ic)
    return find_similar_to_embedding(vocab, store, vec, n, exclude={ia, ib, ic})
