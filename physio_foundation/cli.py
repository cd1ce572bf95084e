from __future__ import annotations

import argparse
import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from .config import AnalysisConfig
from .errors import PhysioFoundationError
from .metrics.summary import rolling_statistics
from .models.athlete_profile import load_athlete_profile
from .pipeline import analyze_activity
from .io.fit_loader import load_fit_records
from .processing.conditioning import condition_samples
from .storage.export import (
    export_summary_json,
    export_table,
    regimes_to_frame,
    transitions_to_frame,
    windows_to_frame,
)

logger = logging.getLogger(__name__)


def _iter_fit_files_many(inputs: List[str]) -> List[str]:
    files: List[str] = []
    for inp in inputs:
        p = Path(inp)
        if p.is_file():
            files.append(str(p))
        elif p.is_dir():
            files.extend([str(fp) for fp in p.rglob("*.fit") if fp.is_file() and not fp.name.startswith(".")])
    # Deduplicate and sort
    return sorted(list(dict.fromkeys(files)))


def _load_config(config_path: Optional[str], profile_path: Optional[str]) -> AnalysisConfig:
    if config_path:
        with open(config_path, "r") as f:
            config = AnalysisConfig.from_dict(json.load(f))
    else:
        config = AnalysisConfig()
    if profile_path:
        load_athlete_profile(Path(profile_path)).apply_to(config)
    config.validate()
    return config


def _fmt(value: Optional[float], unit: str = "") -> str:
    return "n/a" if value is None else f"{value:.0f}{unit}"


def process_file(file_path: str, output_dir: str, config: AnalysisConfig, table_format: str = "csv") -> bool:
    """Analyze one FIT file and write its exports. Returns False when the file was skipped."""
    stem = Path(file_path).stem
    conditioned = condition_samples(load_fit_records(file_path), config)
    if not conditioned.samples:
        print(f"Skipped {stem}: no usable power/heart rate records")
        return False

    summary = analyze_activity(conditioned.samples, config, warnings=conditioned.warnings)
    out = Path(output_dir)
    export_table(windows_to_frame(summary.stable_windows), out / f"{stem}_windows.{table_format}")
    export_table(regimes_to_frame(summary.regimes), out / f"{stem}_regimes.{table_format}")
    export_table(transitions_to_frame(summary.transitions), out / f"{stem}_transitions.{table_format}")
    export_table(
        rolling_statistics(conditioned.samples, config.summary.rolling_window),
        out / f"{stem}_rolling.{table_format}",
    )
    export_summary_json(summary, out / f"{stem}_summary.json")

    print(
        f"Processed {stem}: {summary.duration / 60:.1f} min, NP={_fmt(summary.normalized_power, 'W')}, "
        f"TSS={_fmt(summary.workload_metrics.training_stress_score)}, "
        f"{len(summary.stable_windows)} stable windows, {len(summary.regimes)} regimes, "
        f"{len(summary.warnings)} warnings"
    )
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Physio Foundation CLI: power/heart-rate relationship analysis of FIT activities"
    )
    parser.add_argument("--input", nargs="+", required=True, help="One or more input FIT files or directories")
    parser.add_argument("--output", required=True, help="Output directory for exports")
    parser.add_argument("--config", help="JSON file with settings sections, e.g. {\"segmentation\": {...}}")
    parser.add_argument("--profile", help="Athlete profile JSON (ftp_watts, max_hr_bpm, weight_kg)")
    parser.add_argument("--format", choices=["csv", "parquet", "xlsx"], default="csv", help="Table export format")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = _load_config(args.config, args.profile)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}")
        return 2

    files = _iter_fit_files_many(args.input)
    if not files:
        print("No .fit files found.")
        return 1

    os.makedirs(args.output, exist_ok=True)
    failures = 0
    for file_path in files:
        try:
            process_file(file_path, args.output, config, args.format)
        except PhysioFoundationError as e:
            failures += 1
            logger.error("Failed to analyze %s: %s", file_path, e)
            print(f"Failed {Path(file_path).stem}: {e}")
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
