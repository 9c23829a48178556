import numpy as np
import pytest

from cbow2vec import run
from cbow2vec.corpus_utils import clean_text, tokens_from_file, tokens_from_text
from cbow2vec.data import Corpus, build_vocab
from cbow2vec.errors import InvalidArgument, InvalidConfiguration, InvalidCorpus
from cbow2vec.model import LossPartials, NegativeSamplingLoss, SoftmaxLoss, _log_sigmoid, _sigmoid
from cbow2vec.store import EmbeddingStore
from cbow2vec.train import Trainer, train
from cbow2vec.word2vec import Word2Vec

# Unit tests: vocabulary, store, gradients vs finite differences, scheduling, post-processing.

ABC_TOKENS = ["a", "b", "c", "a", "b", "c", "a", "b", "c", "a"]

SENTENCES = (
    "the cat sat on the mat the dog sat on the log "
    "the cat ran to the dog the dog ran to the cat "
) * 3


class _FixedDraws:
    """Stands in for np.random.Generator.integers with a preset result."""

    def __init__(self, draws):
        self.draws = np.asarray(draws, dtype=np.int64)

    def integers(self, low, high, size=None):
        return self.draws


def test_sigmoid_stability():
    x = np.array([-1000, 0, 1000])
    y = _sigmoid(x)
    assert np.all(y >= 0) and np.all(y <= 1)
    assert y[0] < 1e-100
    assert np.isclose(y[1], 0.5)
    assert y[2] >= 1.0 - 1e-10


def test_log_sigmoid_stability():
    x = np.array([-1000.0, 0.0, 500.0])
    log_sig = _log_sigmoid(x)
    assert np.all(np.isfinite(log_sig))
    assert np.isclose(log_sig[0], -500.0)
    assert np.isclose(log_sig[1], np.log(0.5))
    assert np.isclose(log_sig[2], 0.0)


def test_abc_corpus_builds_and_trains():
    model = Word2Vec(ABC_TOKENS, 1, 2, 4, seed=0)
    assert model.vocab.word_to_id == {"a": 0, "b": 1, "c": 2}
    assert model.vocab.id_to_word == ["a", "b", "c"]
    assert model.vocab_size == 3
    np.testing.assert_array_equal(model.corpus.word_ids, [0, 1, 2, 0, 1, 2, 0, 1, 2, 0])
    assert model.input_embeddings.shape == (3, 4)
    assert model.output_embeddings.shape == (3, 4)

    model.train_stochastic_epoch(0.05)
    assert model.vocab.word_to_id == {"a": 0, "b": 1, "c": 2}
    np.testing.assert_array_equal(model.corpus.word_ids, [0, 1, 2, 0, 1, 2, 0, 1, 2, 0])


def test_short_corpus_raises():
    with pytest.raises(InvalidCorpus):
        Word2Vec(["a", "b", "c", "d"], 2, 2, 4)
    # exactly one full window is enough
    Word2Vec(["a", "b", "c", "d", "e"], 2, 2, 4)
    assert issubclass(InvalidCorpus, InvalidConfiguration)


@pytest.mark.parametrize("window,negatives,dims", [(0, 2, 4), (1, 0, 4), (1, 2, 0), (-1, 2, 4)])
def test_invalid_hyperparameters_raise(window, negatives, dims):
    with pytest.raises(InvalidConfiguration):
        Word2Vec(ABC_TOKENS, window, negatives, dims)


def test_vocab_ids_dense_and_inverse():
    rng = np.random.default_rng(3)
    tokens = [f"w{i}" for i in rng.integers(0, 40, size=300)]
    vocab, corpus = build_vocab(tokens, 3)
    assert len(vocab) <= corpus.n_tokens
    assert corpus.word_ids.min() >= 0 and corpus.word_ids.max() < len(vocab)
    assert vocab.is_consistent()
    assert [vocab.word(i) for i in corpus.word_ids] == tokens
    # first appearance order
    assert vocab.id_to_word[0] == tokens[0]


def test_corpus_is_read_only():
    _, corpus = build_vocab(ABC_TOKENS, 1)
    with pytest.raises(ValueError):
        corpus.word_ids[0] = 2


def test_context_window_clipped_at_edges():
    corpus = Corpus(np.arange(10), 2)
    np.testing.assert_array_equal(corpus.context_window(0), [1, 2])
    np.testing.assert_array_equal(corpus.context_window(1), [0, 2, 3])
    np.testing.assert_array_equal(corpus.context_window(5), [3, 4, 6, 7])
    np.testing.assert_array_equal(corpus.context_window(9), [7, 8])


def test_random_interior_positions_have_full_windows():
    corpus = Corpus(np.arange(12) % 4, 3)
    positions = corpus.random_interior_positions(500, np.random.default_rng(0))
    assert positions.min() >= 3 and positions.max() < 9
    assert all(len(corpus.context_window(p)) == 6 for p in positions)


def test_store_init_range_and_row_views():
    store = EmbeddingStore(5, 3, np.random.default_rng(1))
    for buf in (store.input, store.output):
        assert buf.dtype == np.float32
        assert buf.shape == (15,)
        assert np.all(np.abs(buf) <= 0.1 + 1e-6)
    assert not np.array_equal(store.input, store.output)
    row = store.input_row(2)
    np.testing.assert_array_equal(row, store.input[6:9])
    assert np.shares_memory(row, store.input)
    assert np.shares_memory(store.output_rows, store.output)


def test_store_rejects_zero_dimensions():
    with pytest.raises(InvalidConfiguration):
        EmbeddingStore(3, 0)


def test_store_update_accumulates_repeated_ids():
    store = EmbeddingStore.from_buffers(np.zeros(6), np.zeros(6), 2)
    store.update_input(np.array([1, 1]), np.ones((2, 2), dtype=np.float32), 0.5)
    store.update_output(np.array([0, 2]), np.full((2, 2), 2.0, dtype=np.float32), 0.25)
    np.testing.assert_array_equal(store.input_rows, [[0, 0], [-1, -1], [0, 0]])
    np.testing.assert_array_equal(store.output_rows, [[-0.5, -0.5], [0, 0], [-0.5, -0.5]])


def test_negatives_equal_to_target_are_dropped_not_redrawn():
    loss = NegativeSamplingLoss(4)
    negatives = loss.sample_negatives(2, 5, _FixedDraws([2, 1, 2, 3]))
    np.testing.assert_array_equal(negatives, [1, 3])
    draws = loss.sample_negatives(0, 10, np.random.default_rng(0))
    assert len(draws) <= 4 and np.all(draws != 0)


def _finite_difference(loss_fn, matrix, i, j, eps=1e-2):
    old = matrix[i, j]
    matrix[i, j] = old + eps
    plus = loss_fn()
    matrix[i, j] = old - eps
    minus = loss_fn()
    matrix[i, j] = old
    return (plus - minus) / (2 * eps)


def test_negative_sampling_gradient_matches_finite_difference():
    """Analytic partials of the sampled loss agree with central differences."""
    store = EmbeddingStore(6, 4, np.random.default_rng(0), init_scale=0.5)
    loss = NegativeSamplingLoss(3)
    context = np.array([0, 1, 1])  # word 1 fills two slots
    target = 2
    negatives = np.array([3, 4, 3])  # word 3 drawn twice
    partials = loss.gradients(store, context, target, negatives)
    d_in, d_out = partials.dense(store.vocab_size)
    assert np.isclose(partials.loss, loss.loss(store, context, target, negatives), atol=1e-5)

    def f():
        return loss.loss(store, context, target, negatives)

    for matrix, grad, i, j in [
        (store.input_rows, d_in, 0, 0),
        (store.input_rows, d_in, 1, 3),
        (store.output_rows, d_out, 2, 1),
        (store.output_rows, d_out, 3, 2),
        (store.output_rows, d_out, 4, 0),
    ]:
        fd = _finite_difference(f, matrix, i, j)
        assert np.isclose(grad[i, j], fd, atol=1e-3), f"grad {grad[i, j]:.6f} vs fd {fd:.6f}"
    # untouched rows get no gradient
    assert np.all(d_in[5] == 0) and np.all(d_out[5] == 0)


def test_softmax_gradient_matches_finite_difference():
    store = EmbeddingStore(5, 3, np.random.default_rng(1), init_scale=0.5)
    loss = SoftmaxLoss()
    context = np.array([0, 4])
    target = 1
    d_in, d_out = loss.compute(store, context, target).dense(store.vocab_size)

    def f():
        return loss.loss(store, context, target)

    for matrix, grad, i, j in [
        (store.input_rows, d_in, 0, 1),
        (store.input_rows, d_in, 4, 2),
        (store.output_rows, d_out, 1, 0),
        (store.output_rows, d_out, 3, 2),
    ]:
        fd = _finite_difference(f, matrix, i, j)
        assert np.isclose(grad[i, j], fd, atol=1e-3), f"grad {grad[i, j]:.6f} vs fd {fd:.6f}"


def test_step_skips_empty_context():
    vocab, corpus = build_vocab(ABC_TOKENS, 1)
    store = EmbeddingStore(len(vocab), 4, np.random.default_rng(0))
    before = store.copy()
    trainer = Trainer(store, corpus, NegativeSamplingLoss(2), np.random.default_rng(0))
    assert trainer.step(np.array([], dtype=np.int64), 0, 0.1) is None
    np.testing.assert_array_equal(store.input, before.input)
    np.testing.assert_array_equal(store.output, before.output)


def test_step_subtracts_scaled_partials():
    vocab, corpus = build_vocab(ABC_TOKENS, 1)
    store = EmbeddingStore(len(vocab), 4, np.random.default_rng(0))
    before = store.copy()
    loss = NegativeSamplingLoss(3)
    context, target, lr = np.array([0, 2]), 1, 0.5
    expected = loss.gradients(before, context, target, np.array([0, 2]))
    d_in, d_out = expected.dense(store.vocab_size)

    trainer = Trainer(store, corpus, loss, _FixedDraws([0, 1, 2]))
    trainer.step(context, target, lr)
    np.testing.assert_allclose(store.input_rows, before.input_rows - lr * d_in, atol=1e-6)
    np.testing.assert_allclose(store.output_rows, before.output_rows - lr * d_out, atol=1e-6)


def test_same_seed_same_embeddings():
    tokens = SENTENCES.split()
    m1 = Word2Vec(tokens, 2, 3, 8, seed=7)
    m2 = Word2Vec(tokens, 2, 3, 8, seed=7)
    m1.train_stochastic_epoch(0.05)
    m2.train_stochastic_epoch(0.05)
    m1.train_random_batch(4, 0.05)
    m2.train_random_batch(4, 0.05)
    np.testing.assert_array_equal(m1.store.input, m2.store.input)
    np.testing.assert_array_equal(m1.store.output, m2.store.output)


def test_train_random_batch_updates_and_validates():
    model = Word2Vec(SENTENCES.split(), 2, 3, 8, seed=1)
    before = model.store.copy()
    loss = model.train_random_batch(8, 0.1)
    assert np.isfinite(loss)
    assert not np.array_equal(model.store.output, before.output)
    with pytest.raises(InvalidArgument):
        model.train_random_batch(0, 0.1)


def test_train_random_batch_applies_summed_gradients_once():
    """Batch gradients use the pre-batch weights and are applied once at lr / batch_size."""
    model = Word2Vec(SENTENCES.split(), 2, 3, 8, seed=3)
    trainer = model.trainer
    rng_state = model.rng.bit_generator.state
    before = model.store.copy()
    lr, batch_size = 0.2, 6
    model.train_random_batch(batch_size, lr)
    after = model.store.copy()

    # replay the same draws against the pre-batch weights
    model.rng.bit_generator.state = rng_state
    model.store.input[:] = before.input
    model.store.output[:] = before.output
    batch = LossPartials(model.store.dim)
    for pos in model.corpus.random_interior_positions(batch_size, model.rng):
        partials = trainer.partials(model.corpus.context_window(pos), model.corpus.word_ids[pos])
        if partials is not None:
            batch += partials
    assert batch.count == batch_size
    d_in, d_out = batch.dense(model.vocab_size)
    scale = lr / batch_size
    np.testing.assert_allclose(after.input_rows, before.input_rows - scale * d_in, atol=1e-6)
    np.testing.assert_allclose(after.output_rows, before.output_rows - scale * d_out, atol=1e-6)


def test_training_decreases_loss():
    """Full-softmax loss over the corpus drops after negative-sampling epochs."""
    tokens = SENTENCES.split()
    model = Word2Vec(tokens, 2, 3, 16, seed=42)
    corpus = model.corpus

    def corpus_loss():
        total = 0.0
        for pos in range(corpus.n_tokens):
            ctx = [model.vocab.word(i) for i in corpus.context_window(pos)]
            total += model.calculate_loss(ctx, tokens[pos])
        return total / corpus.n_tokens

    loss0 = corpus_loss()
    history = train(model, num_epochs=60, lr=0.1)
    loss1 = corpus_loss()
    assert len(history) == 60
    assert loss1 < loss0, f"Loss should decrease: {loss0} -> {loss1}"


def test_train_driver_batches_decay_and_post_process():
    model = Word2Vec(SENTENCES.split(), 2, 3, 8, seed=5)
    history = train(
        model, num_epochs=3, lr=0.1, use_lr_decay=True, batch_size=4, post_process=True
    )
    assert [h["epoch"] for h in history] == [1, 2, 3]
    assert history[0]["lr"] > history[1]["lr"] > history[2]["lr"] > 0
    norms = np.linalg.norm(model.output_embeddings, axis=1)
    np.testing.assert_allclose(norms, 1.0, atol=1e-5)
    with pytest.raises(InvalidArgument):
        train(model, num_epochs=1, batch_size=0)


def test_softmax_strategy_trains():
    model = Word2Vec(SENTENCES.split(), 2, 3, 8, loss=SoftmaxLoss(), seed=2)
    loss = model.train_stochastic_epoch(0.05)
    assert np.isfinite(loss)
    assert model.loss.name == "softmax"


def test_post_process_centres_and_normalizes():
    tokens = [f"w{i}" for i in np.random.default_rng(0).integers(0, 30, size=200)]
    model = Word2Vec(tokens, 2, 4, 8, seed=0)
    model.train_stochastic_epoch(0.05)
    model.post_process()
    for rows in (model.input_embeddings, model.output_embeddings):
        np.testing.assert_allclose(np.linalg.norm(rows, axis=1), 1.0, atol=1e-5)
        assert np.linalg.norm(rows.mean(axis=0)) < 1e-4
    first = model.store.copy()
    model.post_process()
    np.testing.assert_allclose(model.store.input, first.input, atol=1e-5)
    np.testing.assert_allclose(model.store.output, first.output, atol=1e-5)


def test_predict_next_words_and_loss():
    model = Word2Vec(ABC_TOKENS, 1, 2, 4, seed=0)
    words = model.predict_next_words(["a", "c"], 10)
    assert len(words) == 2
    assert set(words) <= {"a", "b", "c"}
    loss = model.calculate_loss(["a", "c"], "b")
    assert np.isfinite(loss) and loss > 0
    with pytest.raises(InvalidArgument):
        model.predict_next_words([], 1)
    with pytest.raises(InvalidArgument):
        model.predict_next_words(["a"], 0)


def test_clean_text_and_tokens(tmp_path):
    text = "The dog's bone, 'quoted' Don’t stop!"
    assert clean_text(text) == "the dog bone quoted don't stop"
    assert tokens_from_text("  a  b\nc ") == ["a", "b", "c"]
    path = tmp_path / "corpus.txt"
    path.write_text("Cat, dog.\nCat!", encoding="utf-8")
    assert tokens_from_file(path) == ["cat", "dog", "cat"]
    assert tokens_from_file(path, clean=False) == ["Cat,", "dog.", "Cat!"]


def test_run_trains_saves_and_queries(tmp_path, capsys):
    path = tmp_path / "out" / "model.bin"
    argv = ["--text", SENTENCES, "--window", "2", "--negatives", "3", "--dim", "8"]
    argv += ["--epochs", "2", "--seed", "0", "--postprocess", "--save", str(path)]
    argv += ["--similar", "cat", "zebra", "--analogy", "cat", "dog", "log"]
    assert run.main(argv) == 0
    out = capsys.readouterr().out
    assert "Successfully saved" in out
    assert "zebra failed" in out
    assert path.exists()
    assert run.main(argv[:8] + ["--epochs", "0", "--load", str(path), "--similar", "dog"]) == 0
    assert run.main(["--text", "too short", "--window", "4"]) == 2


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
