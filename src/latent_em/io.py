# Author: Emrullah Erce Dutkan
"""
Input/Output utilities for EM experiments.

This module provides functions for:
- Saving per-iteration traces and run summaries as CSV
- Saving and loading configurations as JSON
- Creating a plain-text summary report
"""

from typing import List, Dict, Any
import os
import csv
import json

from .config import SUMMARY_FILE, TRACE_FILE, CONFIG_FILE
from .experiment import RunSummary, summaries_to_dict


def ensure_dir(path: str) -> None:
    """Create directory if it doesn't exist."""
    os.makedirs(path, exist_ok=True)


def save_results_csv(
    results: List[RunSummary],
    path: str
) -> None:
    """
    Save run summaries to CSV.

    Args:
        results: List of RunSummary.
        path: Output CSV path.
    """
    ensure_dir(os.path.dirname(path) or ".")

    rows = summaries_to_dict(results)
    if not rows:
        return

    fieldnames = list(rows[0].keys())

    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


def save_trace_csv(
    results: List[RunSummary],
    path: str
) -> None:
    """
    Save per-iteration traces to CSV.

    Creates a long-format CSV with columns: iteration, method, metric, value

    Args:
        results: List of RunSummary with history.
        path: Output CSV path.
    """
    ensure_dir(os.path.dirname(path) or ".")

    rows = []
    for r in results:
        if not r.history:
            continue

        iterations = r.history.get("iteration", [])
        for metric, values in r.history.items():
            if metric == "iteration":
                continue
            for it, val in zip(iterations, values):
                rows.append({
                    "iteration": it,
                    "method": r.method,
                    "metric": metric,
                    "value": val
                })

    if not rows:
        return

    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=["iteration", "method", "metric", "value"])
        writer.writeheader()
        writer.writerows(rows)


def load_results_csv(path: str) -> List[Dict[str, Any]]:
    """
    Load run summaries from CSV.

    Args:
        path: Input CSV path.

    Returns:
        List of result dictionaries (all values as strings).
    """
    with open(path, "r") as f:
        reader = csv.DictReader(f)
        return list(reader)


def save_config(config: Dict[str, Any], path: str) -> None:
    """
    Save configuration to JSON.

    Args:
        config: Configuration dictionary.
        path: Output JSON path.
    """
    ensure_dir(os.path.dirname(path) or ".")

    with open(path, "w") as f:
        json.dump(config, f, indent=2, default=str)


def load_config(path: str) -> Dict[str, Any]:
    """
    Load configuration from JSON.

    Args:
        path: Input JSON path.

    Returns:
        Configuration dictionary.
    """
    with open(path, "r") as f:
        return json.load(f)


def create_summary_report(
    results: List[RunSummary],
    config: Dict[str, Any],
    output_dir: str
) -> str:
    """
    Create a summary report as text.

    Args:
        results: Run summaries.
        config: Configuration used.
        output_dir: Directory where results are saved.

    Returns:
        Summary text.
    """
    em = config.get("em", {})
    if config.get("model") == "mixture":
        mixture = config.get("mixture", {})
        k = mixture.get("n_clusters", "N/A")
        per_cluster = mixture.get("n_per_cluster", "N/A")
        samples = f"{k} clusters x {per_cluster} samples"
    else:
        samples = config.get("n", "N/A")

    lines = [
        "EM Estimation Report",
        "=" * 40,
        "",
        "Configuration:",
        f"  Model: {config.get('model', 'N/A')}",
        f"  Samples (n): {samples}",
        f"  Dimensionality (d): {config.get('d', 'N/A')}",
        f"  Tolerance: {em.get('tolerance', 'N/A')}",
        f"  Max iterations: {em.get('max_iterations', 'N/A')}",
        f"  Seed: {config.get('seed', 'N/A')}",
        "",
        "Results:",
        "-" * 40
    ]

    for r in results:
        lines.append(f"\nMethod: {r.method}")
        lines.append(f"  Converged: {r.converged} after {r.n_iter} iterations")
        lines.append(f"  Final objective: {r.final_objective:.6f}")
        lines.append(f"  Recovery error: {r.recovery_error:.6f}")
        if r.label_accuracy is not None:
            lines.append(f"  Label accuracy: {r.label_accuracy:.4f}")
        if r.reconstruction_error is not None:
            lines.append(f"  Relative reconstruction error: {r.reconstruction_error:.3e}")
        if r.imputation_rmse is not None:
            lines.append(f"  Imputation RMSE: {r.imputation_rmse:.6f}")
        if r.noise_variance is not None:
            lines.append(f"  Noise variance: {r.noise_variance:.6g}")
        lines.append(f"  Runtime: {r.runtime_seconds:.3f}s")

    lines.extend([
        "",
        "-" * 40,
        f"Output files in: {output_dir}",
        f"  - {SUMMARY_FILE}: Final metrics",
        f"  - {TRACE_FILE}: Objective per iteration",
        f"  - {CONFIG_FILE}: Configuration used"
    ])

    return "\n".join(lines)
