"""Command line entry point: ``python -m consensus_trader``."""
import argparse
import logging
import signal
import sys

from consensus_trader.core.config import load_config, ConfigError
from consensus_trader.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Loggers too chatty at INFO for a trading console
QUIET_LOGGERS = ("aiohttp", "asyncio")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m consensus_trader",
        description="Run strategy consensus cycles and paper-execute signals across accounts",
    )
    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="YAML file with accounts, strategies and symbols (default: config/default.yaml)",
    )
    parser.add_argument(
        "-l", "--log-level",
        default="INFO",
        choices=LOG_LEVELS,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Evaluate every symbol once, save state and exit",
    )
    return parser


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(args)


def setup_logging(level: str) -> None:
    """Send records to stdout at ``level``."""
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def install_signal_handlers(orchestrator: Orchestrator) -> None:
    """Stop the tickers on SIGINT/SIGTERM so start() can return."""
    def on_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, stopping tickers")
        orchestrator.stop()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)


def log_account_summary(orchestrator: Orchestrator) -> None:
    for account in orchestrator.account_store.all():
        pnl = account.balance - account.initial_balance
        logger.info(
            f"Account {account.id} ({account.status.value}): "
            f"balance {account.balance:,.2f}, P&L {pnl:+,.2f}"
        )


def main(args: list[str] | None = None) -> int:
    """Run the trader.

    Returns:
        Exit code: 0 on a clean stop, 1 on configuration or runtime errors
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.log_level)
    logger.info(f"Consensus Trader starting with {parsed_args.config}")

    try:
        config = load_config(parsed_args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    orchestrator = None
    try:
        orchestrator = Orchestrator(config)
        install_signal_handlers(orchestrator)
        orchestrator.start(once=parsed_args.once)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        if orchestrator is not None:
            orchestrator.stop()
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        if orchestrator is not None:
            orchestrator.stop()
        return 1

    log_account_summary(orchestrator)
    return 0


if __name__ == "__main__":
    sys.exit(main())
