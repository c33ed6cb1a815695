"""Run the nudge engine loop until interrupted."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from dotenv import load_dotenv

from nudge_engine.delivery import LogChannel, PushDispatcher
from nudge_engine.exceptions import NudgeEngineError
from nudge_engine.metrics import DeliveryMetrics
from nudge_engine.orchestrator import Orchestrator
from nudge_engine.resilience import PolicyRegistry
from nudge_engine.schema import PushSubscription
from nudge_engine.settings import AppConfig, load_app_config
from nudge_engine.store import RuntimeStore
from nudge_engine.telemetry import setup_logging

LOGGER = logging.getLogger("nudge_engine.cli")


async def run(config: AppConfig, snapshot: Optional[Path], duration: Optional[float]) -> None:
    tz = config.tzinfo()

    def clock() -> datetime:
        return datetime.now(tz)

    store = RuntimeStore(
        config.store,
        clock=clock,
        delivery_metrics=DeliveryMetrics(max_recent_failures=config.delivery.max_recent_failures),
    )
    if snapshot is not None:
        await store.load(snapshot)
    if not await store.get_subscriptions():
        await store.add_subscription(PushSubscription(endpoint="log://console"))

    channel = LogChannel()
    policies = PolicyRegistry(config.resilience)
    dispatcher = PushDispatcher(store, channel, policies.get(channel.name), config.delivery, clock=clock)
    orchestrator = Orchestrator(store, config, dispatcher=dispatcher, clock=clock)

    await orchestrator.start()
    try:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
    finally:
        cancelled = await orchestrator.stop()
        LOGGER.info("Stopped %d timers; delivery summary: %s", cancelled, store.delivery_metrics.summary())
        if snapshot is not None:
            await store.save(snapshot)


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Run the nudge engine")
    parser.add_argument("--config", type=Path, help="Path to a JSON configuration file.")
    parser.add_argument("--snapshot", type=Path, help="Store snapshot to load on start and save on exit.")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds.")
    args = parser.parse_args(argv)

    try:
        config = load_app_config(args.config)
    except NudgeEngineError as exc:
        logging.basicConfig(level=logging.ERROR)
        LOGGER.error("Startup failed: %s", exc)
        return 1

    setup_logging(config.telemetry.log_level)
    snapshot = args.snapshot or (Path(config.store.snapshot_path) if config.store.snapshot_path else None)
    try:
        asyncio.run(run(config, snapshot, args.duration))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")
    except NudgeEngineError as exc:
        LOGGER.error("Engine failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
