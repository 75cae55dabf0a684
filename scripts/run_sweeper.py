"""Run the hold expiry sweeper as its own process."""
import logging
import signal

from src.bootstrap import build_services
from src.infrastructure.config import Settings

logger = logging.getLogger("run_sweeper")


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    services = build_services(Settings.from_env())
    services.create_schema()
    sweeper = services.sweeper

    def _handle_signal(signum, _frame) -> None:
        logger.info("Received signal %s, stopping sweeper", signum)
        sweeper.request_stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        sweeper.run_forever()
    finally:
        services.engine.dispose()


if __name__ == "__main__":
    main()
