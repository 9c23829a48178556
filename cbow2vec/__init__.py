from cbow2vec.data import Corpus, Vocabulary, build_vocab
from cbow2vec.errors import (
    DimensionMismatch,
    InvalidArgument,
    InvalidConfiguration,
    InvalidCorpus,
    QueryError,
    Word2VecError,
    WordNotInVocabulary,
)
from cbow2vec.model import CBOWLoss, NegativeSamplingLoss, SoftmaxLoss
from cbow2vec.store import EmbeddingStore
from cbow2vec.train import Trainer, train
from cbow2vec.word2vec import Word2Vec

# CBOW word embeddings with negative sampling in pure NumPy: training, neighbour
# queries and a binary model format.

__all__ = [
    "Word2Vec",
    "Vocabulary",
    "Corpus",
    "build_vocab",
    "EmbeddingStore",
    "CBOWLoss",
    "NegativeSamplingLoss",
    "SoftmaxLoss",
    "Trainer",
    "train",
    "Word2VecError",
    "InvalidConfiguration",
    "InvalidCorpus",
    "QueryError",
    "WordNotInVocabulary",
    "InvalidArgument",
    "DimensionMismatch",
]
