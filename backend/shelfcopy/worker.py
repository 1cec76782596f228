"""Temporal worker: registers the batch workflow and the unit activity.

Runs as its own service next to the API. Run locally with:
    python -m shelfcopy.worker

Requires a running Temporal server and USE_DATABASE=true so that the
worker and the API see the same ledger and history.
"""

from __future__ import annotations

import asyncio
import sys

import structlog
from temporalio.client import Client
from temporalio.contrib.pydantic import pydantic_data_converter
from temporalio.worker import Worker

from shelfcopy.config import settings
from shelfcopy.dependencies import build_container
from shelfcopy.logging import configure_logging
from shelfcopy.workflows.enrichment_workflow import BatchEnrichmentWorkflow

logger = structlog.get_logger()

WORKFLOWS = [BatchEnrichmentWorkflow]


async def create_temporal_client() -> Client:
    """Create a Temporal client using settings.

    Supports both local Temporal (plain TCP) and Temporal Cloud (TLS + API key).
    """
    if settings.temporal_api_key:
        return await Client.connect(
            target_host=settings.temporal_address,
            namespace=settings.temporal_namespace,
            tls=True,
            api_key=settings.temporal_api_key,
            data_converter=pydantic_data_converter,
        )
    return await Client.connect(
        target_host=settings.temporal_address,
        namespace=settings.temporal_namespace,
        data_converter=pydantic_data_converter,
    )


async def run_worker() -> None:
    """Connect to Temporal and run the worker until interrupted."""
    logger.info(
        "worker_connecting",
        address=settings.temporal_address,
        namespace=settings.temporal_namespace,
        task_queue=settings.temporal_task_queue,
    )

    try:
        client = await create_temporal_client()
    except Exception:
        logger.exception(
            "worker_connection_failed",
            address=settings.temporal_address,
            namespace=settings.temporal_namespace,
        )
        raise

    # The worker only executes units; it never starts workflows itself
    container = build_container(settings)
    activities = [container.service.units.process_unit]

    worker = Worker(
        client,
        task_queue=settings.temporal_task_queue,
        workflows=WORKFLOWS,
        activities=activities,
    )

    if not settings.use_database:
        logger.warning(
            "worker_using_memory_stores",
            environment=settings.environment,
            hint="Set USE_DATABASE=true so the API sees unit results",
        )

    logger.info(
        "worker_started",
        task_queue=settings.temporal_task_queue,
        workflow_count=len(WORKFLOWS),
        activity_count=len(activities),
        generation_provider=container.provider.name,
    )

    try:
        await worker.run()
    finally:
        await container.aclose()
    logger.info("worker_stopped")


def main() -> None:
    """Entrypoint for `python -m shelfcopy.worker`."""
    configure_logging(process="worker")
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("worker_fatal_error")
        sys.exit(1)


if __name__ == "__main__":
    main()
