"""Benchmark reminder-outcome models on a store snapshot or a simulated history."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from nudge_engine.insights import benchmark_models, build_training_table, collect_reminder_outcomes
from nudge_engine.simulation import simulate_reminder_history
from nudge_engine.store import RuntimeStore


async def _load_store(snapshot: Path | None, n_items: int, seed: int) -> RuntimeStore:
    if snapshot is None:
        return await simulate_reminder_history(n_items=n_items, seed=seed)
    store = RuntimeStore()
    if not await store.load(snapshot):
        raise FileNotFoundError(f"Snapshot not found: {snapshot}")
    return store


async def _build_report(args: argparse.Namespace) -> dict:
    store = await _load_store(args.snapshot, args.items, args.seed)
    outcomes = await collect_reminder_outcomes(store)
    X, y, feature_names = build_training_table(outcomes)
    report = benchmark_models(X, y, seed=args.seed)
    report["feature_names"] = feature_names
    report["n_instances"] = int(len(y))
    report["completion_rate"] = float(y.mean()) if len(y) else 0.0
    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Run nudge-engine reminder outcome benchmark")
    parser.add_argument("--snapshot", type=Path, help="Store snapshot JSON; simulated when omitted")
    parser.add_argument("--items", type=int, default=60, help="Simulated item count")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    report = asyncio.run(_build_report(args))
    print(json.dumps(report, indent=2))

    outputs_dir = Path("outputs")
    outputs_dir.mkdir(parents=True, exist_ok=True)
    out_path = outputs_dir / "benchmark_report.json"
    out_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    print(f"Saved benchmark report to {out_path}")


if __name__ == "__main__":
    main()
