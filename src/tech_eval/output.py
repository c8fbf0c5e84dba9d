"""
Output and reporting utilities for batch evaluation runs.
"""

import json
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from tech_eval.models import EvaluationResult


def _fmt(value: Optional[float], digits: int = 3) -> str:
    return f"{value:.{digits}f}" if value is not None else "N/A"


class OutputManager:
    """Manages output files and reporting for batch evaluations."""

    def __init__(self, output_dir: str, timestamp: Optional[str] = None):
        """Initialize with output directory.

        Args:
            output_dir: Directory receiving the run's files (created if missing)
            timestamp: Suffix shared by the run's files; defaults to the current time
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.timestamp = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S")

        self.results_file = self.output_dir / f"evaluation_results_{self.timestamp}.jsonl"
        self.metrics_file = self.output_dir / f"aggregated_metrics_{self.timestamp}.json"
        self.summary_file = self.output_dir / f"eval_{self.timestamp}.md"

    def save_individual_result(self, result: EvaluationResult) -> None:
        """Append one result as a JSON line."""
        with open(self.results_file, "a", encoding="utf-8") as f:
            f.write(json.dumps(result.to_dict()) + "\n")

    def save_results(self, results: Iterable[EvaluationResult]) -> None:
        for result in results:
            self.save_individual_result(result)

    def save_aggregate_metrics(self, metrics: Dict[str, Any]) -> None:
        """Save aggregated metrics to JSON file."""
        with open(self.metrics_file, "w", encoding="utf-8") as f:
            json.dump(metrics, f, indent=2)

    def generate_summary_report(self, aggregate_metrics: Dict[str, Any]) -> None:
        """Generate a human-readable Markdown summary."""
        with open(self.summary_file, "w", encoding="utf-8") as f:
            f.write("# Technical Answer Evaluation Summary\n\n")
            f.write(f"**Evaluation Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n\n")

            f.write("## Overall Metrics\n\n")
            f.write(f"- **Total Answers:** {aggregate_metrics.get('total_questions', 0)}\n")
            f.write(f"- **Correct Answers:** {aggregate_metrics.get('correct_answers', 0)}\n")
            f.write(f"- **Failed Evaluations:** {aggregate_metrics.get('failed_evaluations', 0)}\n\n")

            f.write("### Scores\n")
            f.write(f"- **Combined Score:** {_fmt(aggregate_metrics.get('average_combined_score'))}\n")
            f.write(f"- **Display Score:** {_fmt(aggregate_metrics.get('average_display_score'), 1)}\n")
            f.write(f"- **Semantic Similarity:** {_fmt(aggregate_metrics.get('average_similarity'))}\n")
            f.write(f"- **Keyword Coverage:** {_fmt(aggregate_metrics.get('average_keyword_coverage'))}\n\n")

            by_band = aggregate_metrics.get("by_band", {})
            if by_band:
                f.write("## Results by Band\n\n")
                for band, count in by_band.items():
                    f.write(f"- **{band.title()}:** {count}\n")
                f.write("\n")

            f.write("## Files Generated\n\n")
            f.write(f"- **Detailed Results:** `{self.results_file.name}`\n")
            f.write(f"- **Aggregate Metrics:** `{self.metrics_file.name}`\n")
            f.write(f"- **Summary Report:** `{self.summary_file.name}`\n")

    def print_summary(self, aggregate_metrics: Dict[str, Any]) -> None:
        """Print evaluation summary to console."""
        print("\n" + "=" * 60)
        print("EVALUATION SUMMARY")
        print("=" * 60)
        print(f"Total Answers: {aggregate_metrics.get('total_questions', 0)}")
        print(f"Correct Answers: {aggregate_metrics.get('correct_answers', 0)}")
        print(f"Failed Evaluations: {aggregate_metrics.get('failed_evaluations', 0)}")
        print(f"Average Score: {_fmt(aggregate_metrics.get('average_display_score'), 1)}")
        print(f"Semantic Similarity: {_fmt(aggregate_metrics.get('average_similarity'))}")
        print(f"Keyword Coverage: {_fmt(aggregate_metrics.get('average_keyword_coverage'))}")
        for band, count in aggregate_metrics.get("by_band", {}).items():
            print(f"  {band}: {count}")
        print("=" * 60)
        print(f"Results saved to: {self.output_dir}")
        print("=" * 60)
