from __future__ import annotations

import logging
import signal
import threading

from erp_outbox.core.config import settings
from erp_outbox.core.logging import configure_logging
from erp_outbox.tasks.outbox_tasks import build_dispatcher

log = logging.getLogger("worker")


def main() -> int:
    """Long-running dispatcher process; SIGINT/SIGTERM stop it after the current cycle."""

    configure_logging(settings.LOG_LEVEL)
    stop = threading.Event()

    def _stop(signum, _frame) -> None:
        log.info("Received signal %s; stopping after current cycle", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    build_dispatcher().run_forever(stop)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
