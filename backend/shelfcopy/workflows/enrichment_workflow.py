"""BatchEnrichmentWorkflow: one instance per accepted batch.

Workflow ID = ``batch-{batch_id}``. Pre-flight work (expansion, credit
check) is done before the workflow starts; the workflow only fans units out
to the ``process_unit`` activity with bounded concurrency.

Units record their own failures on their history record, so an activity
only fails when the worker or a store is lost mid-unit. Those attempts are
retried and resume from the unit's last charged stage.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from shelfcopy.activities.process_item import UnitActivities
    from shelfcopy.models.contracts import (
        BatchSummary,
        BatchWorkflowInput,
        ProcessingUnit,
        UnitOutcome,
    )


_UNIT_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=2),
    backoff_coefficient=2.0,
    maximum_attempts=3,
)


@workflow.defn
class BatchEnrichmentWorkflow:
    def __init__(self) -> None:
        self._outcomes: dict[str, UnitOutcome | None] = {}

    @workflow.run
    async def run(self, batch: BatchWorkflowInput) -> BatchSummary:
        semaphore = asyncio.Semaphore(max(1, batch.max_concurrent_items))

        async def run_unit(unit: ProcessingUnit) -> UnitOutcome | None:
            async with semaphore:
                try:
                    outcome = await workflow.execute_activity_method(
                        UnitActivities.process_unit,
                        batch.unit_input(unit),
                        start_to_close_timeout=timedelta(seconds=batch.unit_timeout_seconds),
                        retry_policy=_UNIT_RETRY,
                    )
                except ActivityError as exc:
                    workflow.logger.error(
                        "process_unit failed for %s in batch %s: %s",
                        unit.item_id,
                        batch.batch_id,
                        exc,
                    )
                    outcome = None
            self._outcomes[unit.item_id] = outcome
            return outcome

        workflow.logger.info("Batch %s started with %d units", batch.batch_id, len(batch.units))
        outcomes = await asyncio.gather(*(run_unit(u) for u in batch.units))
        summary = BatchSummary.from_outcomes(batch.batch_id, list(outcomes))
        workflow.logger.info(
            "Batch %s complete: %d completed, %d errors, %d unrecorded",
            batch.batch_id,
            summary.completed,
            summary.errors,
            summary.unrecorded,
        )
        return summary

    @workflow.query
    def progress(self) -> dict[str, int]:
        """Units finished so far, by outcome."""
        done = [o for o in self._outcomes.values() if o is not None]
        return {
            "finished": len(self._outcomes),
            "completed": sum(1 for o in done if o.status == "completed"),
            "errors": sum(1 for o in done if o.status == "error"),
        }
