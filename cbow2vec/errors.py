"""Exceptions raised by the embedding engine.

Configuration errors are fatal to the construction that raised them. Query errors
(unknown word, bad result count, wrong vector length) are recoverable: the caller can
skip the query and keep using the model.
"""


class Word2VecError(Exception):
    """Base exception for the package."""


class InvalidConfiguration(Word2VecError, ValueError):
    """Hyperparameter below its minimum (window size, negative samples, dimensions)."""


class InvalidCorpus(InvalidConfiguration):
    """Token sequence too short to hold one full context window."""


class QueryError(Word2VecError):
    """Base exception for caller-triggerable query errors."""


class WordNotInVocabulary(QueryError, KeyError):
    """Word-keyed operation on a word the model has never seen."""

    def __init__(self, word: str, caller: str = ""):
        self.word = word
        self.caller = caller
        super().__init__(word)

    def __str__(self) -> str:
        prefix = f"{self.caller}: " if self.caller else ""
        return f'{prefix}word "{self.word}" is not in vocab'


class InvalidArgument(QueryError, ValueError):
    """Requested result or batch count below 1."""


class DimensionMismatch(QueryError, ValueError):
    """Caller-supplied vector length differs from the embedding dimension."""
