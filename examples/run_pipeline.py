#!/usr/bin/env python3
"""
Example script running a two-step lead qualification pipeline.

Loads leads from a CSV, drops small companies, asks an LLM whether each
remaining lead fits the target profile, tags the misses and exports the
result plus a per-step metrics report.

Usage:
    python examples/run_pipeline.py leads.csv [output.csv]
"""

import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from leadflow import (
    FunctionService,
    JsonFileStorage,
    PipelineConfig,
    RunCallbacks,
    RunStatus,
    create_orchestrator,
    export_csv,
    load_csv,
)
from leadflow.steps import create_default_registry
from leadflow.utils.logger import setup_logging

# Load environment variables
load_dotenv()


def normalize_headcount(row, config):
    """Turn "1,200" / "" headcounts into integers (0 when unknown)."""
    raw = str(row.get("headcount") or "").replace(",", "").strip()
    return {"headcount": int(float(raw)) if raw else 0}


def main():
    """Run the pipeline over a CSV of leads."""
    if len(sys.argv) < 2:
        print(__doc__)
        return 1

    input_path = Path(sys.argv[1])
    output_path = Path(sys.argv[2]) if len(sys.argv) > 2 else input_path.with_name(
        f"{input_path.stem}_qualified.csv"
    )

    config = PipelineConfig.from_env()
    setup_logging(level=config.log_level, log_dir=config.log_dir, include_timestamp=False)

    if not os.getenv("OPENAI_API_KEY"):
        print("Warning: OPENAI_API_KEY not set; the promptAnalysis step will fail.")

    registry = create_default_registry()
    registry.register(
        "normalizeHeadcount",
        FunctionService(normalize_headcount, fields=["headcount"]),
        display_name="Normalize headcount",
    )

    orchestrator = create_orchestrator(
        registry,
        storage=JsonFileStorage(".leadflow_state"),
        callbacks=RunCallbacks(progress_callback=lambda pct, msg: print(f"[{pct:3d}%] {msg}")),
        config=config,
    )

    saved = orchestrator.get_state()
    if saved.total_steps and saved.status in (RunStatus.IDLE, RunStatus.ERROR) and not saved.processing_complete:
        print("Resuming saved run...")
    else:
        orchestrator.initialize(load_csv(input_path), [
            {
                "id": "normalizeHeadcount",
                "filter": {
                    "rules": [{"field": "headcount", "operator": "lessThan", "value": "50"}],
                    "tagPrefix": "small",
                },
            },
            {
                "id": "promptAnalysis",
                "config": {
                    "prompt": (
                        "Is <company> (<industry>, <headcount> employees) a B2B software "
                        "company? Answer yes or no."
                    ),
                },
                "filter": {
                    "rules": [{"field": "promptAnalysis", "operator": "contains", "value": "yes",
                               "action": "pass"}],
                    "tagPrefix": "not_b2b",
                },
            },
        ])

    state = orchestrator.run_sync()
    summary = orchestrator.get_complete_analytics()

    export_csv(state.processed_rows, output_path)
    summary.to_dataframe().to_csv(output_path.with_name(f"{output_path.stem}_metrics.csv"), index=False)

    print(f"\nStatus: {state.status.value}")
    if state.error:
        print(f"Error in {state.error.step_id}: {state.error.message} (re-run to retry)")
    print(f"Leads: {summary.original_count} in, {summary.final_count} qualified "
          f"({summary.pass_rate:.0%}), {summary.total_tokens} tokens")
    print(f"Results written to {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
