#!/usr/bin/env python3
from __future__ import annotations

import json
from pathlib import Path
from datetime import datetime
from typing import List, Optional

import pandas as pd

from src.apace.schema import load_model
from src.apace.simulate import run_replications
from src.config import Config
from src.utils.logging_utils import get_logger

logger = get_logger(__name__)


def find_models(models_dir: Path) -> List[Path]:
    """Find all YAML model files in the models directory."""
    if not models_dir.exists():
        raise FileNotFoundError(f"Models directory not found: {models_dir}")
    return sorted(models_dir.glob("*.yaml"))


def run_suite(
    models_dir: Path = Config.MODELS_DIR,
    output_base: Path = Config.RUNS_DIR,
    replications: Optional[int] = None,
) -> pd.DataFrame:
    """
    Run every model in the models directory and return a summary DataFrame.

    Args:
        models_dir: Directory containing model YAML files
        output_base: Base directory for outputs
        replications: Override of each model's replication count

    Returns:
        DataFrame with one row per model and all metrics as columns
    """
    model_files = find_models(models_dir)

    if not model_files:
        raise ValueError(f"No model files found in {models_dir}")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suite_dir = output_base / f"suite_{timestamp}"
    suite_dir.mkdir(parents=True, exist_ok=True)

    summary_rows = []

    for model_path in model_files:
        try:
            cfg = load_model(str(model_path))
            df, metrics = run_replications(cfg, n=replications)

            model_dir = suite_dir / cfg.name
            model_dir.mkdir(parents=True, exist_ok=True)
            df.to_csv(model_dir / "replications.csv", index=False)
            with open(model_dir / "metrics.json", "w", encoding="utf-8") as f:
                json.dump(metrics, f, indent=2, sort_keys=True)

            summary_rows.append({"model": cfg.name, "model_file": model_path.name, **metrics})

        except (ValueError, RuntimeError, FileNotFoundError) as e:
            # Log error but continue with other models
            logger.error(f"Error running {model_path.name}: {e}")
            summary_rows.append({"model": model_path.stem, "model_file": model_path.name, "error": str(e)})

    summary_df = pd.DataFrame(summary_rows)

    summary_path = suite_dir / "summary.csv"
    summary_df.to_csv(summary_path, index=False)

    print(f"Suite run complete: {len(summary_df)} models")
    print(f"Summary: {summary_path}")
    print(f"Outputs: {suite_dir}")

    return summary_df


def main() -> int:
    """Main entrypoint for batch model runner."""
    import argparse

    parser = argparse.ArgumentParser(description="Run all models in models/ directory")
    parser.add_argument("--models-dir", type=str, default=str(Config.MODELS_DIR),
                        help="Directory containing model YAML files")
    parser.add_argument("--output-dir", type=str, default=str(Config.RUNS_DIR),
                        help="Base output directory")
    parser.add_argument("--replications", type=int, default=None,
                        help="Replications per model (default: from each model file)")
    args = parser.parse_args()

    summary_df = run_suite(Path(args.models_dir), Path(args.output_dir), args.replications)

    print("\n=== Summary ===")
    print(summary_df.to_string(index=False))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
