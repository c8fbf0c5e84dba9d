#!/usr/bin/env python3
"""
Command-line entry point for the technical answer evaluator.

Examples:
  tech-eval status
  tech-eval questions --role backend
  tech-eval evaluate --question-id 1 --answer "Arrays give O(1) access by index"
  tech-eval batch --input answers.json --output-dir data/evaluation
  tech-eval select --job-description "Python developer with SQL experience"
  tech-eval cache cleanup --max-age-days 30
"""

import sys
import json
import argparse
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional

from tech_eval.calculators import calculate_aggregate_metrics
from tech_eval.config import Config, setup_logging, validate_config
from tech_eval.context import AppContext, build_cache, build_context
from tech_eval.embedding_cache import EmbeddingCache
from tech_eval.errors import TechEvalError
from tech_eval.output import OutputManager
from tech_eval.settings import PRESETS, get_config


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="tech-eval",
        description="Score candidate answers to technical interview questions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    parser.add_argument("--preset", choices=sorted(PRESETS), default="default",
                        help="Scoring preset (default: default)")
    parser.add_argument("--question-bank", type=str, default=None,
                        help=f"Question bank JSON (default: {Config.QUESTION_BANK_PATH})")
    parser.add_argument("--cache-dir", type=str, default=None,
                        help=f"Embedding cache directory (default: {Config.CACHE_DIR})")
    parser.add_argument("--rebuild-cache", action="store_true",
                        help="Discard cached embeddings before starting")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Initialize and show component status")

    questions = subparsers.add_parser("questions", help="List questions")
    questions.add_argument("--role", type=str, default=None, help="Filter by role (substring match)")

    evaluate = subparsers.add_parser("evaluate", help="Evaluate one answer")
    evaluate.add_argument("--question-id", required=True, help="Question ID")
    evaluate.add_argument("--answer", required=True, help="Candidate answer text")

    batch = subparsers.add_parser("batch", help="Evaluate answers from a JSON file")
    batch.add_argument("--input", required=True,
                       help='JSON list of {"question_id": ..., "answer": ...} objects')
    batch.add_argument("--output-dir", default=Config.OUTPUT_DIR,
                       help=f"Directory for result files (default: {Config.OUTPUT_DIR})")

    select = subparsers.add_parser("select", help="Pick questions for a job description")
    source = select.add_mutually_exclusive_group(required=True)
    source.add_argument("--job-description", type=str, help="Job description text")
    source.add_argument("--job-description-file", type=str, help="File containing the job description")
    select.add_argument("--count", type=int, default=2, help="Number of questions (default: 2)")

    cache = subparsers.add_parser("cache", help="Inspect or maintain the embedding cache")
    cache.add_argument("action", choices=["stats", "clear", "cleanup"])
    cache.add_argument("--max-age-days", type=float, default=None,
                       help="For cleanup: remove entries older than this many days")

    return parser.parse_args(argv)


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def coerce_question_id(raw: str):
    """Numeric ids on the command line address integer question ids."""
    return int(raw) if raw.strip().isdigit() else raw


def run_cache_command(args, cache: EmbeddingCache) -> int:
    """Cache maintenance; needs no embedding provider."""
    if args.action == "stats":
        print_json(cache.get_stats().to_dict())
    elif args.action == "clear":
        cache.clear_cache()
        print("✅ Cache cleared")
    else:
        if not args.max_age_days:
            print("❌ cleanup requires --max-age-days", file=sys.stderr)
            return 2
        removed = cache.cleanup(timedelta(days=args.max_age_days))
        print(f"🧹 Removed {removed} cache entries")
    return 0


def run_command(args, context: AppContext) -> int:
    evaluator = context.evaluator
    evaluator.initialize()

    if args.command == "status":
        print_json({"evaluator": evaluator.get_status(), "embedding_service": context.service.get_status()})

    elif args.command == "questions":
        questions = evaluator.get_questions_by_role(args.role) if args.role else evaluator.get_all_questions()
        print_json(questions)

    elif args.command == "evaluate":
        result = evaluator.evaluate_answer(coerce_question_id(args.question_id), args.answer)
        print_json(result.to_dict())

    elif args.command == "batch":
        with open(args.input, "r", encoding="utf-8") as f:
            items = json.load(f)
        results = evaluator.evaluate_batch(items)
        metrics = calculate_aggregate_metrics(results)

        output = OutputManager(args.output_dir)
        output.save_results(results)
        output.save_aggregate_metrics(metrics)
        output.generate_summary_report(metrics)
        output.print_summary(metrics)

    elif args.command == "select":
        if args.job_description_file:
            job_description = Path(args.job_description_file).read_text(encoding="utf-8")
        else:
            job_description = args.job_description
        print_json(evaluator.select_questions(job_description, args.count))

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)
    setup_logging("DEBUG" if args.debug else None)

    cache = None
    context = None
    try:
        if args.command == "cache":
            cache = build_cache(cache_dir=args.cache_dir, rebuild_cache=args.rebuild_cache)
            return run_cache_command(args, cache)

        validate_config()
        context = build_context(
            evaluation_config=get_config(args.preset),
            question_source=args.question_bank,
            cache_dir=args.cache_dir,
            rebuild_cache=args.rebuild_cache,
        )
        return run_command(args, context)

    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        return 0

    except (TechEvalError, ValueError, OSError) as e:
        print(f"❌ {type(e).__name__}: {e}", file=sys.stderr)
        if args.debug:
            import traceback
            traceback.print_exc()
        return 1

    finally:
        if context is not None:
            context.close()
        if cache is not None:
            cache.close()


if __name__ == "__main__":
    sys.exit(main())
