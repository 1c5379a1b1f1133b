"""
playbook_sweep.py
─────────────────
Wires the step executor to the real store and outreach transport and runs
one sweep over due playbook steps.

Schedule: every 15 minutes (cron). Sweeps may overlap; step claims keep
them from executing the same step twice.

Usage:
  python -m retention.services.playbook_sweep
  OR via the API: POST /v1/playbooks/execute
"""
from __future__ import annotations

from typing import Optional

import structlog

from retention.core.config import Settings, get_settings
from retention.models.database import get_store
from retention.outreach.dispatcher import OutreachDispatcher
from retention.outreach.transport import HttpTransport
from retention.playbooks.executor import StepExecutor
from retention.schemas.enrollment import SweepResult
from retention.store.ports import RetentionStore

logger = structlog.get_logger(__name__)


def run_sweep(
    batch_size: Optional[int] = None,
    settings: Optional[Settings] = None,
    store: Optional[RetentionStore] = None,
) -> SweepResult:
    settings = settings or get_settings()
    store = store or get_store()
    if batch_size is None:
        batch_size = settings.step_batch_size
    logger.info("playbook_sweep_started", batch_size=batch_size)
    transport = HttpTransport(settings)
    try:
        dispatcher = OutreachDispatcher(
            transport,
            store,
            fallthrough_on_failure=settings.outreach_fallthrough_on_failure,
            default_priority=settings.default_channel_priority,
        )
        executor = StepExecutor(store, dispatcher, skip_inactive_enrollments=settings.skip_inactive_enrollments)
        return executor.run_due_steps(batch_size)
    finally:
        transport.close()


if __name__ == "__main__":
    import sys

    from retention.core.logging import configure_logging

    configure_logging()
    try:
        result = run_sweep()
        print(f"✓ Sweep finished: {result.executed} executed, {result.skipped} skipped, "
              f"{len(result.errors)} errors")
    except Exception as e:
        print(f"✗ Sweep failed: {e}", file=sys.stderr)
        sys.exit(1)
