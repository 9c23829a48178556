import io
import logging
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

# Binary model file. Little-endian, no header or version; fields in this order:
#   corpus      u64 n, n x u32
#   word->id    u64 n, n x (u64 len, utf-8 bytes, u32 id)
#   id->word    u64 n, n x (u64 len, utf-8 bytes)
#   window      u64
#   dims        u64
#   input       u64 ndim, ndim x u64 shape, u64 count, count x f32
#   output      same as input

logger = logging.getLogger(__name__)

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")


class CodecError(ValueError):
    """Malformed or inconsistent model file."""


@dataclass
class ModelState:
    """Everything a model file holds; a scratch copy during load."""

    corpus: np.ndarray
    word_to_id: Dict[str, int]
    id_to_word: List[str]
    context_window_size: int
    embed_dimensions: int
    input: np.ndarray
    output: np.ndarray

    @property
    def vocab_size(self) -> int:
        return len(self.id_to_word)

    def validate(self) -> None:
        """Raise CodecError unless the fields describe one coherent model."""
        V, D, W = self.vocab_size, self.embed_dimensions, self.context_window_size
        if W < 1 or D < 1 or V < 1:
            raise CodecError(f"bad hyperparameters: window={W} dims={D} vocab={V}")
        if len(self.word_to_id) != V or any(
            self.word_to_id.get(w) != i for i, w in enumerate(self.id_to_word)
        ):
            raise CodecError("word->id map is not the inverse of the id->word list")
        if len(self.corpus) < 1 + 2 * W:
            raise CodecError(f"corpus of {len(self.corpus)} ids is shorter than one window")
        if self.corpus.min() < 0 or self.corpus.max() >= V:
            raise CodecError("corpus id out of vocabulary range")
        for name, matrix in (("input", self.input), ("output", self.output)):
            if matrix.size != V * D:
                raise CodecError(f"{name} matrix holds {matrix.size} floats, expected {V * D}")


def _write_u64(buf: io.BytesIO, value: int) -> None:
    buf.write(_U64.pack(value))


def _write_str(buf: io.BytesIO, s: str) -> None:
    data = s.encode("utf-8")
    _write_u64(buf, len(data))
    buf.write(data)


def _write_matrix(buf: io.BytesIO, matrix: np.ndarray, shape) -> None:
    _write_u64(buf, len(shape))
    for dim in shape:
        _write_u64(buf, dim)
    data = np.ascontiguousarray(matrix, dtype="<f4").ravel()
    _write_u64(buf, data.size)
    buf.write(data.tobytes())


def encode_model(state: ModelState) -> bytes:
    """Serialize state in the fixed field order."""
    buf = io.BytesIO()
    corpus = np.asarray(state.corpus)
    _write_u64(buf, corpus.size)
    buf.write(corpus.astype("<u4").tobytes())
    _write_u64(buf, len(state.word_to_id))
    for word, idx in state.word_to_id.items():
        _write_str(buf, word)
        buf.write(_U32.pack(idx))
    _write_u64(buf, len(state.id_to_word))
    for word in state.id_to_word:
        _write_str(buf, word)
    _write_u64(buf, state.context_window_size)
    _write_u64(buf, state.embed_dimensions)
    shape = (state.vocab_size, state.embed_dimensions)
    _write_matrix(buf, state.input, shape)
    _write_matrix(buf, state.output, shape)
    return buf.getvalue()


class _Reader:
    """Cursor over a bytes blob; every read checks the remaining length."""

    def __init__(self, data: bytes):
        self.data = memoryview(data)
        self.pos = 0

    def take(self, n: int) -> memoryview:
        if n < 0 or self.pos + n > len(self.data):
            raise CodecError(f"truncated file: need {n} bytes at offset {self.pos}")
        chunk = self.data[self.pos : self.pos + n]
        self.pos += n
        return chunk

    def u32(self) -> int:
        return _U32.unpack(self.take(_U32.size))[0]

    def u64(self) -> int:
        return _U64.unpack(self.take(_U64.size))[0]

    def string(self) -> str:
        return bytes(self.take(self.u64())).decode("utf-8")

    def array(self, dtype: str, count: int) -> np.ndarray:
        itemsize = np.dtype(dtype).itemsize
        if count > (len(self.data) - self.pos) // itemsize:
            raise CodecError(f"truncated file: {count} items of {dtype} at offset {self.pos}")
        return np.frombuffer(self.take(count * itemsize), dtype=dtype).copy()

    def matrix(self) -> np.ndarray:
        ndim = self.u64()
        if ndim > 8:
            raise CodecError(f"implausible tensor rank {ndim}")
        shape = tuple(self.u64() for _ in range(ndim))
        count = self.u64()
        if int(np.prod(shape, dtype=np.uint64)) != count:
            raise CodecError(f"tensor shape {shape} does not match {count} values")
        return self.array("<f4", count).astype(np.float32).reshape(shape)

    def done(self) -> None:
        if self.pos != len(self.data):
            raise CodecError(f"{len(self.data) - self.pos} trailing bytes")


def decode_model(data: bytes) -> ModelState:
    """Parse and validate a blob produced by encode_model.

    Raises:
        CodecError: If the blob is truncated, has trailing bytes or is inconsistent.
        UnicodeDecodeError: If a word is not valid utf-8 (a ValueError).
    """
    r = _Reader(data)
    corpus = r.array("<u4", r.u64()).astype(np.int64)
    word_to_id = {}
    for _ in range(r.u64()):
        word = r.string()
        word_to_id[word] = r.u32()
    n_words = r.u64()
    id_to_word = [r.string() for _ in range(n_words)]
    window = r.u64()
    dims = r.u64()
    input_matrix = r.matrix()
    output_matrix = r.matrix()
    r.done()
    for name, matrix in (("input", input_matrix), ("output", output_matrix)):
        if matrix.shape != (len(id_to_word), dims):
            raise CodecError(f"{name} matrix shape {matrix.shape} != ({len(id_to_word)}, {dims})")
    state = ModelState(
        corpus=corpus,
        word_to_id=word_to_id,
        id_to_word=id_to_word,
        context_window_size=window,
        embed_dimensions=dims,
        input=input_matrix.ravel(),
        output=output_matrix.ravel(),
    )
    state.validate()
    return state


def save_model(path: Union[str, Path], state: ModelState) -> bool:
    """Write state to path, creating parent directories; False on any failure."""
    try:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encode_model(state))
    except (OSError, ValueError, struct.error) as e:
        logger.warning("Saving model to %s failed: %s", path, e)
        return False
    logger.info("Saved model to %s", path)
    return True


def load_model(path: Union[str, Path]) -> Optional[ModelState]:
    """Read and validate a model file; None on any failure."""
    try:
        state = decode_model(Path(path).read_bytes())
    except (OSError, ValueError, struct.error) as e:
        logger.warning("Loading model from %s failed: %s", path, e)
        return None
    logger.info("Loaded model from %s", path)
    return state
