import re
from pathlib import Path
from typing import List, Union

# Turn raw text into the token list a Word2Vec model is built from. Cleaning lowercases,
# folds curly apostrophes, strips possessive 's and stray quotes, and drops punctuation.

_POSSESSIVE = re.compile(r"\b([a-z]+)'s\b")
_STRAY_APOSTROPHE = re.compile(r"(^|[^a-z])'|'(?![a-z])")
_NON_WORD = re.compile(r"[^a-z0-9'\s]+")
_WHITESPACE = re.compile(r"\s+")


def clean_text(text: str) -> str:
    """Normalize raw text to lowercase words separated by single spaces.

    Args:
        text: Raw input string.

    Returns:
        Cleaned string; keeps letters, digits and in-word apostrophes ("don't").
    """
    text = text.lower().replace("’", "'")
    text = _POSSESSIVE.sub(r"\1", text)
    text = _STRAY_APOSTROPHE.sub(r"\1 ", text)
    text = _NON_WORD.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def tokenize(text: str) -> List[str]:
    """Split already-clean text on whitespace."""
    return text.split()


def tokens_from_text(text: str, clean: bool = True) -> List[str]:
    """Tokens of text, cleaned first unless clean is False."""
    return tokenize(clean_text(text) if clean else text)


def tokens_from_file(path: Union[str, Path], clean: bool = True) -> List[str]:
    """Read a corpus file (e.g. text8) as one blob and tokenize it.

    Args:
        path: Path to the text file.
        clean: Apply clean_text before splitting. Defaults to True.

    Returns:
        List of token strings.
    """
    with open(path, encoding="utf-8", errors="replace") as f:
        text = f.read()
    return tokens_from_text(text, clean=clean)
