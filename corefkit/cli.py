"""
corefkit command-line interface: train and evaluate coreference models.
"""

import argparse
import sys
from typing import List, Optional

from corefkit.pipeline.progress import get_progress_reporter, progress_
from corefkit.pipeline.corefs.bundle import load_bundle, save_bundle
from corefkit.pipeline.corefs.config import TrainingConfig
from corefkit.pipeline.corefs.corefs import (
    EndToEndCoreferenceResolver,
    PipelinedCoreferenceResolver,
    bundle_resolver_config,
)
from corefkit.pipeline.corefs.datas import (
    create_mention_pair_examples,
    create_span_examples,
    load_conll2012_directory,
)
from corefkit.pipeline.corefs.errors import ConfigurationError, ModelLoadError
from corefkit.pipeline.corefs.evaluation import score_coref_predictions
from corefkit.pipeline.corefs.mentions import GoldMentionDetector
from corefkit.pipeline.corefs.vocabulary import Vocabulary


def _add_training_arguments(parser: argparse.ArgumentParser, e2e: bool):
    defaults = TrainingConfig.end_to_end() if e2e else TrainingConfig.pipelined()
    parser.add_argument(
        "--corpus", required=True, help="CoNLL-2012 training file or directory"
    )
    parser.add_argument(
        "--dev", required=True, help="CoNLL-2012 validation file or directory"
    )
    parser.add_argument("--output", required=True, help="output bundle directory")
    parser.add_argument("--epochs", type=int, default=defaults.epochs)
    parser.add_argument("--batch-size", type=int, default=defaults.batch_size)
    parser.add_argument("--learning-rate", type=float, default=defaults.learning_rate)
    parser.add_argument("--hidden-size", type=int, default=defaults.hidden_size)
    parser.add_argument("--embedding-dim", type=int, default=defaults.embedding_dim)
    parser.add_argument("--dropout", type=float, default=defaults.dropout)
    parser.add_argument("--patience", type=int, default=defaults.patience)
    parser.add_argument("--clip-norm", type=float, default=defaults.clip_norm)
    parser.add_argument("--seed", type=int, default=defaults.seed)
    parser.add_argument(
        "--min-count",
        type=int,
        default=2,
        help="minimum number of occurences of a token to be in the vocabulary",
    )
    if e2e:
        parser.add_argument(
            "--max-span-width", type=int, default=defaults.max_span_width
        )
        parser.add_argument("--top-k-spans", type=int, default=defaults.top_k_spans)
        parser.add_argument(
            "--span-loss-weight", type=float, default=defaults.span_loss_weight
        )
        parser.add_argument(
            "--coref-loss-weight", type=float, default=defaults.coref_loss_weight
        )
    else:
        parser.add_argument(
            "--context-window", type=int, default=defaults.context_window
        )
        parser.add_argument(
            "--max-distance",
            type=int,
            default=3,
            help="maximum sentence distance of training mention pairs",
        )


def _training_config(args: argparse.Namespace, e2e: bool) -> TrainingConfig:
    kwargs = {
        "epochs": args.epochs,
        "batch_size": args.batch_size,
        "learning_rate": args.learning_rate,
        "hidden_size": args.hidden_size,
        "embedding_dim": args.embedding_dim,
        "dropout": args.dropout,
        "patience": args.patience,
        "clip_norm": args.clip_norm,
        "seed": args.seed,
    }
    if e2e:
        kwargs.update(
            {
                "max_span_width": args.max_span_width,
                "top_k_spans": args.top_k_spans,
                "span_loss_weight": args.span_loss_weight,
                "coref_loss_weight": args.coref_loss_weight,
            }
        )
        return TrainingConfig.end_to_end(**kwargs)
    kwargs["context_window"] = args.context_window
    return TrainingConfig.pipelined(**kwargs)


def run_train(args: argparse.Namespace) -> int:
    """Train a model and save it as a bundle."""
    from corefkit.pipeline.corefs.trainer import train_pipelined_model, train_span_model

    e2e = args.command == "train-e2e"
    config = _training_config(args, e2e)

    print(f"loading training documents from {args.corpus}...")
    train_documents = load_conll2012_directory(args.corpus)
    print(f"loading validation documents from {args.dev}...")
    dev_documents = load_conll2012_directory(args.dev)
    if len(train_documents) == 0:
        print(f"[error] no documents found in {args.corpus}", file=sys.stderr)
        return 1

    vocabulary = Vocabulary.build(
        (d.tokens for d in train_documents + dev_documents), min_count=args.min_count
    )
    print(f"vocabulary size: {len(vocabulary)}")

    progress_reporter = get_progress_reporter("tqdm")
    if e2e:
        train_examples = create_span_examples(
            train_documents, max_span_width=config.max_span_width, seed=config.seed
        )
        dev_examples = create_span_examples(
            dev_documents, max_span_width=config.max_span_width, seed=config.seed
        )
        bundle, history = train_span_model(
            train_examples,
            dev_examples,
            vocabulary,
            config,
            progress_reporter=progress_reporter,
        )
    else:
        train_examples = create_mention_pair_examples(
            train_documents, max_distance=args.max_distance, seed=config.seed
        )
        dev_examples = create_mention_pair_examples(
            dev_documents, max_distance=args.max_distance, seed=config.seed
        )
        bundle, history = train_pipelined_model(
            train_examples,
            dev_examples,
            vocabulary,
            config,
            progress_reporter=progress_reporter,
        )

    save_bundle(bundle, args.output)
    print(
        f"trained for {history.epochs} epochs. best epoch: {history.best_epoch} "
        + f"(dev loss: {min(history.dev_loss):.4f})"
    )
    print(f"model saved to {args.output}")
    return 0


def run_evaluate(args: argparse.Namespace) -> int:
    """Evaluate a bundle on a corpus."""
    try:
        bundle = load_bundle(args.model)
    except ModelLoadError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1

    if bundle.kind == "pipelined":
        resolver = PipelinedCoreferenceResolver(
            bundle,
            GoldMentionDetector(),
            bundle_resolver_config(bundle, min_score=args.min_score),  # type: ignore
        )
    else:
        resolver = EndToEndCoreferenceResolver(
            bundle,
            bundle_resolver_config(  # type: ignore
                bundle, min_span_score=args.min_span_score, min_coref_score=args.min_score
            ),
        )

    documents = load_conll2012_directory(args.corpus)
    predictions = [
        resolver.resolve(document).coref_chains
        for document in progress_(get_progress_reporter("tqdm"), documents)
    ]
    scores = score_coref_predictions([d.coref_chains for d in documents], predictions)

    for metric in ("muc", "b3", "ceaf"):
        print(
            f"{metric:>5}: P={scores[f'{metric}_p']:.2%} R={scores[f'{metric}_r']:.2%} "
            + f"F1={scores[f'{metric}_f1']:.2%}"
        )
    print(f"CoNLL F1: {scores['conll_f1']:.2%}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="corefkit", description="Neural coreference resolution"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    _add_training_arguments(
        subparsers.add_parser("train-pipelined", help="Train a mention-pair model"),
        e2e=False,
    )
    _add_training_arguments(
        subparsers.add_parser("train-e2e", help="Train an end-to-end model"), e2e=True
    )

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Evaluate a model on a CoNLL-2012 corpus"
    )
    evaluate_parser.add_argument("--model", required=True, help="bundle directory")
    evaluate_parser.add_argument(
        "--corpus", required=True, help="CoNLL-2012 file or directory"
    )
    evaluate_parser.add_argument(
        "--min-score",
        type=float,
        default=0.5,
        help="minimum coreference score to merge mentions",
    )
    evaluate_parser.add_argument(
        "--min-span-score",
        type=float,
        default=0.5,
        help="minimum mention score of a span (end-to-end models only)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        if args.command in ("train-pipelined", "train-e2e"):
            return run_train(args)
        if args.command == "evaluate":
            return run_evaluate(args)
    except ConfigurationError as e:
        print(f"[error] invalid configuration: {e}", file=sys.stderr)
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
