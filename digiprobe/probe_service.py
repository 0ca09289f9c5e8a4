"""Entry point: configure a test session and run it to completion."""
import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from digiprobe.database import Database
from digiprobe.geolocation import locator_from_config
from digiprobe.models import Config, Statistics, TestConfiguration, TestMode
from digiprobe.network_info import NetworkInfoMonitor
from digiprobe.orchestrator import TestOrchestrator
from digiprobe.probes import HttpTransport, Probes
from digiprobe.quality import format_mos, format_ping, format_speed
from digiprobe.recorder import SessionRecorder
from digiprobe.wakelock import InhibitWakeLock

logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s — %(message)s",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="digiprobe-run",
        description="Run a static or drive network quality test.",
    )
    parser.add_argument("--operator", required=True, help="Operator label, e.g. 'Telkomsel'")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in TestMode],
        default=TestMode.STATIC.value,
        help="static: 5 runs at one location; drive: runs until interrupted",
    )
    parser.add_argument("--activity", default="", help="Activity, e.g. 'Coverage Survey'")
    parser.add_argument("--remark", default="")
    parser.add_argument("--poi", default="", help="Point of interest (required for static tests)")
    parser.add_argument("--config", help="YAML configuration file (defaults to environment variables)")
    return parser.parse_args(argv)


def build_orchestrator(
    config: Config,
    mode: TestMode,
    recorder: SessionRecorder,
) -> TestOrchestrator:
    transport = HttpTransport(timeout=config.probes.timeout_seconds)
    return TestOrchestrator(
        mode=mode,
        probes=Probes(config.probes, transport=transport),
        on_sample=recorder.on_sample,
        on_complete=recorder.on_complete,
        locator=locator_from_config(config.geolocation),
        wake_lock=InhibitWakeLock(),
        config=config.orchestrator,
    )


async def run_session(config: Config, test_config: TestConfiguration) -> SessionRecorder:
    db = Database(config.database.path)
    db.cleanup_old_data(config.database.retention_days)

    monitor = NetworkInfoMonitor(HttpTransport(timeout=config.probes.timeout_seconds))
    info = await monitor.refresh()
    if info.error:
        logger.warning("%s — continuing without ISP details", info.error)

    recorder = SessionRecorder(db)
    recorder.open(test_config, info)

    orchestrator = build_orchestrator(config, test_config.test_mode, recorder)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.stop)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers not supported on this platform")

    async with orchestrator:
        await orchestrator.start()

    stats = Statistics.from_results(db.get_results(recorder.session_id))
    if stats is not None:
        logger.info(
            "Session averages: ↓%s  ↑%s  ping=%s  MOS=%s over %d runs",
            format_speed(stats.avg_download_mbps),
            format_speed(stats.avg_upload_mbps),
            format_ping(stats.avg_ping_ms),
            format_mos(stats.avg_video_mos),
            stats.total_samples,
        )
    return recorder


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    config = Config.load(args.config) if args.config else Config.from_env()

    setup_logging(config.logging.level)

    errors = config.validate()
    for err in errors:
        logger.error("Config validation error: %s", err)

    test_config = TestConfiguration(
        operator_label=args.operator,
        test_mode=TestMode(args.mode),
        activity=args.activity,
        remark=args.remark,
        poi_name=args.poi,
    )
    problems = test_config.validate()
    if problems:
        for problem in problems:
            logger.error("Invalid test configuration: %s", problem)
        return 2

    logger.info("=" * 60)
    logger.info("DigiProbe %s test", test_config.test_mode.value)
    logger.info("=" * 60)
    logger.info("  Operator:      %s", test_config.operator_label)
    logger.info("  Activity:      %s", test_config.activity or "-")
    logger.info("  POI:           %s", test_config.poi_name or "-")
    logger.info("  Database Path: %s", config.database.path)
    logger.info("=" * 60)

    recorder = asyncio.run(run_session(config, test_config))
    logger.info(
        "Session %s finished: %d results stored, %d markers",
        recorder.session_id,
        len(recorder.result_ids),
        len(recorder.markers),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
