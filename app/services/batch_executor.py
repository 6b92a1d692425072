"""
Sends a bulk assignment to the execution backend in fixed-size batches.

Batches run strictly one after another so that the progress written to the
status store never goes backwards. The first failing batch aborts the job;
batches already applied by the backend stay applied (no compensation).
"""
import math
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from app.schemas.assignment import BulkAssignmentJob, JobAssignmentItem
from app.services.errors import BatchExecutionError
from app.utils.locale import normalize_to_backend
from app.utils.logger import logger
from app.utils.metrics import inc, observe

DEFAULT_BATCH_SIZE = 500

VariationResolver = Callable[[str, List[str]], Awaitable[List[Dict[str, Any]]]]


def expand_assignments(items: Iterable[JobAssignmentItem]) -> List[Dict[str, Any]]:
    """
    Flatten {catType, slugs[]} items into one {catType, slug} unit per slug.
    The backend only accepts single-slug entries; legacy items that already
    carry a `slug` pass through. Any other shape is skipped.
    """
    units: List[Dict[str, Any]] = []
    for item in items:
        if isinstance(item.slugs, list):
            units.extend({"catType": item.cat_type, "slug": slug} for slug in item.slugs)
        elif isinstance(item.slug, str) and item.slug:
            units.append({"catType": item.cat_type, "slug": item.slug})
    return units


def chunk(units: List[Dict[str, Any]], size: int) -> List[List[Dict[str, Any]]]:
    return [units[i:i + size] for i in range(0, len(units), size)]


def progress_percent(processed: int, total: int) -> int:
    """Whole percent, exact halves rounded up."""
    if total <= 0:
        return 100
    return math.floor(processed * 100 / total + 0.5)


class BatchExecutor:
    def __init__(
        self,
        client,
        status_store=None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        variation_resolver: Optional[VariationResolver] = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self._client = client
        self._status_store = status_store
        self.batch_size = batch_size
        self._resolve_variations = variation_resolver

    async def _snippet_variations(self, job: BulkAssignmentJob) -> Optional[List[Dict[str, Any]]]:
        """Variations for the selected types, falling back to the ones sent with the job."""
        if not job.snippet_variation_types or self._resolve_variations is None:
            return job.snippet_variations
        try:
            return await self._resolve_variations(job.snippet_id, job.snippet_variation_types)
        except Exception as exc:
            logger.error(
                "batch.variations_fallback",
                extra={"assignment_id": job.assignment_id, "error": str(exc)[:200]},
            )
            return job.snippet_variations

    async def _report_progress(self, assignment_id: str, processed: int, total: int, percent: int) -> None:
        """Best-effort: a failed write is logged and the job carries on."""
        if self._status_store is None:
            return
        try:
            await self._status_store.set_progress(assignment_id, processed, total, percent=percent)
        except Exception as exc:
            inc("assignment.progress.error")
            logger.error(
                "batch.progress_failed",
                extra={"assignment_id": assignment_id, "error": str(exc)[:200]},
            )

    async def execute(self, job: BulkAssignmentJob) -> Dict[str, Any]:
        snippet_variations = await self._snippet_variations(job)

        units = expand_assignments(job.assignments)
        # Preview count (when provided) is the progress denominator
        total_categories = job.total_categories_count or len(units)
        batches = chunk(units, self.batch_size)
        locale = normalize_to_backend(job.locale)

        total_units_sent = 0
        total_categories_processed = 0
        all_results: List[Any] = []

        for index, batch in enumerate(batches):
            batch_number = index + 1
            started = time.monotonic()
            try:
                response = await self._client.execute_batch({
                    "snippetId": job.snippet_id,
                    "assignments": batch,
                    "categoryTypes": job.category_types,
                    "snippetVariationTypes": job.snippet_variation_types,
                    "locale": locale,
                    "snippetVariations": snippet_variations,
                    "useNativeLogic": True,
                })
                if not response or not response.get("success"):
                    raise RuntimeError(f"execution backend reported failure for batch {batch_number}")
                batch_results = response.get("results")
                processed = len(batch)
                if isinstance(batch_results, dict) and batch_results.get("processed"):
                    processed = int(batch_results["processed"])
            except Exception as exc:
                inc("assignment.batch.error")
                logger.error(
                    "batch.failed",
                    extra={
                        "assignment_id": job.assignment_id,
                        "batch": batch_number,
                        "batches": len(batches),
                        "error": str(exc)[:500],
                    },
                )
                raise BatchExecutionError(batch_number, len(batches), str(exc)) from exc

            observe("assignment.batch.duration_ms", (time.monotonic() - started) * 1000)
            inc("assignment.batch.success")

            total_units_sent += len(batch)
            total_categories_processed += processed

            if isinstance(batch_results, list):
                all_results.extend(batch_results)
            elif batch_results:
                all_results.append(batch_results)

            # May exceed 100 when the preview count was stale
            percent = progress_percent(total_categories_processed, total_categories)
            await self._report_progress(job.assignment_id, total_categories_processed, total_categories, percent)

            logger.info(
                "batch.completed",
                extra={
                    "assignment_id": job.assignment_id,
                    "batch": batch_number,
                    "batches": len(batches),
                    "processed": total_categories_processed,
                    "total": total_categories,
                    "percent": percent,
                    "count": total_units_sent,
                },
            )

        logger.info(
            "batch.all_completed",
            extra={
                "assignment_id": job.assignment_id,
                "batches": len(batches),
                "processed": total_categories_processed,
                "total": total_categories,
            },
        )

        return {
            "success": True,
            "results": all_results,
            "totalProcessed": total_categories_processed,
            "totalCategories": total_categories,
            "batchesProcessed": len(batches),
        }
