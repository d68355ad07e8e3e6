"""
Batch Loyalty Service - bulk point awards and scheduled point expiry

Operations are split into fixed-size chunks; each chunk runs concurrently on
a thread pool sized to the chunk, chunks run one after another.

Author: TM3
Date: 2026-02-16
"""
import time
import logging
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from concurrent.futures import ThreadPoolExecutor

from marketplace.core.database import get_cursor
from marketplace.core.exceptions import ApiError
from marketplace.core.logging import get_request_logger
from marketplace.domain.loyalty import BatchOperation, PointsType
from marketplace.services.loyalty_service import LoyaltyService

logger = logging.getLogger(__name__)

OPERATION_CHUNK_SIZE = 50
EXPIRY_CHUNK_SIZE = 20
DEFAULT_EXPIRY_DAYS = 365
DEFAULT_EXPIRY_BATCH_SIZE = 100


# ============================================================================
# Result Models
# ============================================================================

@dataclass
class OperationResult:
    user_id: str
    success: bool
    points: int
    new_balance: Optional[int] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    success: bool
    processed: int
    succeeded: int
    failed: int
    duration_seconds: float
    results: List[OperationResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _run_chunks(items: List[Any], chunk_size: int, worker) -> List[OperationResult]:
    results: List[OperationResult] = []
    for chunk in chunked(items, chunk_size):
        with ThreadPoolExecutor(max_workers=len(chunk)) as pool:
            results.extend(pool.map(worker, chunk))
    return results


def _summarize(results: List[OperationResult], started: float) -> BatchResult:
    succeeded = sum(1 for r in results if r.success)
    return BatchResult(
        success=succeeded == len(results),
        processed=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        duration_seconds=round(time.time() - started, 3),
        results=results,
    )


# ============================================================================
# Batch Loyalty Service
# ============================================================================

class BatchLoyaltyService:

    @staticmethod
    def process_batch_loyalty_points(operations: List[BatchOperation],
                                     request_id: Optional[str] = None) -> BatchResult:
        """
        Credit points for many users

        A failing operation is reported in its result entry and does not stop
        the rest of the batch.
        """
        log = get_request_logger(__name__, request_id)
        started = time.time()

        def apply(op: BatchOperation) -> OperationResult:
            try:
                result = LoyaltyService.add_loyalty_points(
                    op.user_id, op.points, op.description, op.reference_id, op.type, request_id=request_id)
                return OperationResult(op.user_id, True, op.points, new_balance=result["new_balance"])
            except ApiError as e:
                return OperationResult(op.user_id, False, op.points, error=e.message)
            except Exception as e:
                log.error(f"Batch operation for {op.user_id} failed: {e}")
                return OperationResult(op.user_id, False, op.points, error=str(e))

        results = _run_chunks(operations, OPERATION_CHUNK_SIZE, apply)
        summary = _summarize(results, started)
        log.info(f"Batch loyalty: {summary.succeeded}/{summary.processed} succeeded in {summary.duration_seconds}s")
        return summary

    @staticmethod
    def bulk_award_loyalty_points(user_ids: List[str], points: int, description: str,
                                  points_type: PointsType = PointsType.MANUAL,
                                  request_id: Optional[str] = None) -> BatchResult:
        operations = [
            BatchOperation(user_id=user_id, points=points, description=description, type=points_type)
            for user_id in user_ids
        ]
        return BatchLoyaltyService.process_batch_loyalty_points(operations, request_id=request_id)

    @staticmethod
    def find_expirable_points(expiry_days: int, limit: int, offset: int = 0) -> List[Dict]:
        """
        Users holding points older than expiry_days

        Spending consumes the oldest points first, so the expirable amount is
        what was earned before the cutoff minus everything debited so far,
        capped at the current balance.
        """
        with get_cursor() as cursor:
            cursor.execute("""
                SELECT user_id, loyalty_points, earned_before_cutoff, total_debited
                FROM (
                    SELECT u.id AS user_id,
                           u.loyalty_points,
                           COALESCE(SUM(h.points) FILTER (
                               WHERE h.points > 0 AND h.created_at < NOW() - make_interval(days => %s)
                           ), 0) AS earned_before_cutoff,
                           COALESCE(-SUM(h.points) FILTER (WHERE h.points < 0), 0) AS total_debited
                    FROM users u
                    JOIN loyalty_history h ON h.user_id = u.id
                    WHERE u.loyalty_points > 0
                    GROUP BY u.id, u.loyalty_points
                ) balances
                WHERE earned_before_cutoff > total_debited
                ORDER BY user_id
                LIMIT %s OFFSET %s
            """, (expiry_days, limit, offset))
            rows = cursor.fetchall()

        candidates = []
        for row in rows:
            expirable = min(int(row["loyalty_points"]),
                            int(row["earned_before_cutoff"]) - int(row["total_debited"]))
            if expirable > 0:
                candidates.append({"user_id": str(row["user_id"]), "points": expirable})
        return candidates

    @staticmethod
    def process_batch_expired_points(expiry_days: int = DEFAULT_EXPIRY_DAYS,
                                     batch_size: int = DEFAULT_EXPIRY_BATCH_SIZE) -> BatchResult:
        """Expire aged points for all users, batch_size users per query"""
        started = time.time()
        results: List[OperationResult] = []

        def expire(candidate: Dict) -> OperationResult:
            try:
                result = LoyaltyService.expire_points(candidate["user_id"], candidate["points"], expiry_days)
                return OperationResult(candidate["user_id"], True, candidate["points"],
                                       new_balance=result["new_balance"])
            except Exception as e:
                logger.error(f"Failed to expire points for {candidate['user_id']}: {e}")
                return OperationResult(candidate["user_id"], False, candidate["points"], error=str(e))

        # Expired users drop out of the candidate query, so failures are skipped via offset
        offset = 0
        while True:
            candidates = BatchLoyaltyService.find_expirable_points(expiry_days, batch_size, offset)
            if not candidates:
                break
            batch_results = _run_chunks(candidates, EXPIRY_CHUNK_SIZE, expire)
            results.extend(batch_results)
            offset += sum(1 for r in batch_results if not r.success)
            if len(candidates) < batch_size:
                break

        summary = _summarize(results, started)
        total_points = sum(r.points for r in results if r.success)
        logger.info(f"Expired {total_points} points across {summary.succeeded} users")
        return summary
