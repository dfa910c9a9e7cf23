"""ARQ job enqueueing utilities.

WHAT:
    Async helpers to enqueue attribution jobs to the ARQ worker.

WHY:
    Re-scoring a batch of conversions (e.g. after a late touch import) can be
    handed to the worker instead of blocking an API request.

USAGE:
    from touchcredit.workers.arq_enqueue import enqueue_score_conversion

    await enqueue_score_conversion(42, models=["linear"])
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from arq import create_pool
from arq.connections import ArqRedis

from touchcredit.workers.arq_worker import get_redis_settings

logger = logging.getLogger(__name__)

# Global pool reference
_arq_pool: Optional[ArqRedis] = None


async def get_arq_pool() -> ArqRedis:
    """Get or create ARQ Redis pool."""
    global _arq_pool
    if _arq_pool is None:
        logger.info("[ARQ-ENQUEUE] Creating new Redis pool...")
        _arq_pool = await create_pool(get_redis_settings())
    return _arq_pool


async def reset_arq_pool() -> None:
    """Close and forget the pool (tests, reconnection)."""
    global _arq_pool
    if _arq_pool is not None:
        await _arq_pool.close()
        _arq_pool = None
        logger.info("[ARQ-ENQUEUE] Redis pool reset")


async def enqueue_score_conversion(
    conversion_id: int,
    models: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Enqueue a re-score of one conversion.

    The job id is derived from the conversion so repeated requests while a
    job is queued collapse into one.

    Returns:
        Dict with job_id and status
    """
    pool = await get_arq_pool()

    job = await pool.enqueue_job(
        "score_conversion_job",
        conversion_id,
        models,
        _job_id=f"score-conversion-{conversion_id}",
    )

    if job:
        logger.info("[ARQ] Enqueued score job %s for conversion %s", job.job_id, conversion_id)
        return {"job_id": job.job_id, "status": "enqueued"}

    logger.warning("[ARQ] Score job already queued for conversion %s", conversion_id)
    return {"job_id": None, "status": "skipped_or_duplicate"}


async def enqueue_attribution_batch(limit: Optional[int] = None) -> Dict[str, Any]:
    """Run the batch sweep now instead of waiting for the next cron tick."""
    pool = await get_arq_pool()
    job = await pool.enqueue_job("scheduled_attribution_batch", limit)

    if job:
        logger.info("[ARQ] Enqueued attribution batch %s", job.job_id)
        return {"job_id": job.job_id, "status": "enqueued"}
    return {"job_id": None, "status": "skipped_or_duplicate"}
