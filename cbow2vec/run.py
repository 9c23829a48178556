import argparse
import sys

from cbow2vec.config import (
    DEFAULT_CONTEXT_WINDOW_SIZE,
    DEFAULT_EMBED_DIMENSIONS,
    DEFAULT_LEARNING_RATE,
    DEFAULT_NEGATIVE_SAMPLE_COUNT,
    DEFAULT_NEIGHBOURS,
    DEFAULT_QUERY_WORDS,
    setup_logging,
)
from cbow2vec.corpus_utils import tokens_from_file, tokens_from_text
from cbow2vec.errors import InvalidConfiguration, QueryError
from cbow2vec.model import LOSSES, make_loss
from cbow2vec.train import train
from cbow2vec.word2vec import Word2Vec

# Entry point: build a model from a corpus, optionally load/train/post-process/save it,
# then print neighbours. Usage: python -m cbow2vec.run --file text8 --epochs 1 --save m.bin

DEMO_TEXT = """
the king and the queen live in the castle with the prince
the man and the woman live in the house with the dog
the cat sat under the tree near the house
the dog ran under the tree near the castle
a black cat and a white dog played near the tree
the king is a man and the queen is a woman
""" * 20


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Train CBOW word embeddings")
    ap.add_argument("--text", type=str, default=None, help="Train on this string")
    ap.add_argument("--file", type=str, default=None, help="Train on file (one big text)")
    ap.add_argument("--no-clean", action="store_true", help="Split the corpus on whitespace only")
    ap.add_argument("--window", type=int, default=DEFAULT_CONTEXT_WINDOW_SIZE)
    ap.add_argument("--negatives", type=int, default=DEFAULT_NEGATIVE_SAMPLE_COUNT)
    ap.add_argument("--dim", type=int, default=DEFAULT_EMBED_DIMENSIONS)
    ap.add_argument("--loss", choices=sorted(LOSSES), default="negative_sampling")
    ap.add_argument("--epochs", type=int, default=1)
    ap.add_argument("--lr", type=float, default=DEFAULT_LEARNING_RATE)
    ap.add_argument("--lr-decay", action="store_true", help="Linear LR decay over epochs")
    ap.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Train with random interior batches instead of shuffled stochastic epochs",
    )
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--load", type=str, default=None, help="Load a saved model before training")
    ap.add_argument("--save", type=str, default=None, help="Save the model after training")
    ap.add_argument("--postprocess", action="store_true", help="Centre and normalize at the end")
    ap.add_argument("--progress", action="store_true", help="Show a progress bar per epoch")
    ap.add_argument("--similar", nargs="*", default=None, help="Words to query")
    ap.add_argument("-n", type=int, default=DEFAULT_NEIGHBOURS, help="Neighbours per query")
    ap.add_argument(
        "--analogy",
        nargs=3,
        metavar=("A", "B", "C"),
        default=None,
        help="Print words nearest to A - B + C (e.g. king man woman)",
    )
    return ap.parse_args(argv)


def main(argv=None) -> int:
    """Train (or load) a model and print nearest neighbours; returns the exit code."""
    args = parse_args(argv)
    setup_logging()

    if args.file:
        tokens = tokens_from_file(args.file, clean=not args.no_clean)
    else:
        tokens = tokens_from_text(args.text or DEMO_TEXT, clean=not args.no_clean)
    print(f"Corpus size: {len(tokens)}")

    try:
        model = Word2Vec(
            tokens,
            args.window,
            args.negatives,
            args.dim,
            loss=make_loss(args.loss, args.negatives),
            seed=args.seed,
        )
    except InvalidConfiguration as e:
        print(f"Cannot build model: {e}", file=sys.stderr)
        return 2
    print(model)

    if args.load:
        if not model.load(args.load):
            print(f"An error occurred loading {args.load}", file=sys.stderr)
            return 1
        print(f"Successfully loaded {args.load}")

    if args.epochs > 0:
        train(
            model,
            num_epochs=args.epochs,
            lr=args.lr,
            use_lr_decay=args.lr_decay,
            batch_size=args.batch_size,
            progress=args.progress,
        )
    if args.postprocess:
        model.post_process()

    if args.save:
        if not model.save(args.save):
            print(f"An error occurred saving {args.save}", file=sys.stderr)
            return 1
        print(f"Successfully saved {args.save}")

    words = args.similar if args.similar is not None else DEFAULT_QUERY_WORDS
    print("Similar embeddings")
    for word in words:
        try:
            print(f"  {word}: {' '.join(model.find_similar_to_word(word, args.n))}")
        except QueryError as e:
            print(f"  {word} failed: {e}")

    if args.analogy:
        a, b, c = args.analogy
        try:
            print(f"Similar to ({a} - {b} + {c}): {' '.join(model.analogy(a, b, c, args.n))}")
        except QueryError as e:
            print(f"Analogy failed: {e}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
