"""Replays orders whose payment moved but whose confirmation never reached the backend"""

from typing import Dict, List, Optional, Any

from ..order_backend_client import OrderBackendClient, get_order_backend_client
from ..protocol.errors import PersistenceError
from ..utils.logger import get_logger
from .attempt_store import AttemptStatus, PendingAttemptStore, get_attempt_store

logger = get_logger(__name__)


class ReconciliationService:
    """Lists and resubmits retained checkout attempts"""

    def __init__(self, store: Optional[PendingAttemptStore] = None,
                 persister: Optional[OrderBackendClient] = None):
        self.store = store or get_attempt_store()
        self._persister = persister

    @property
    def persister(self) -> OrderBackendClient:
        if self._persister is None:
            self._persister = get_order_backend_client()
        return self._persister

    def list_pending(self) -> List[Dict[str, Any]]:
        """Summaries of every retained attempt"""
        return [attempt.summary() for attempt in self.store.list()]

    async def reconcile(self, auth_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Resubmit every attempt that needs reconciliation

        In-flight and abandoned attempts carry no payment proof and are only reported.

        Args:
            auth_token: Customer bearer token for the order API

        Returns:
            Dict with reconciled, failed and skipped attempt lists
        """
        report: Dict[str, List[Dict[str, Any]]] = {'reconciled': [], 'failed': [], 'skipped': []}

        for attempt in self.store.list():
            if attempt.status != AttemptStatus.NEEDS_RECONCILIATION:
                report['skipped'].append({'attempt_id': attempt.attempt_id, 'status': attempt.status})
                continue

            if not attempt.order_payload.get('paymentDetails'):
                logger.warning(f"[Reconcile] {attempt.attempt_id} has no payment details, skipping")
                report['skipped'].append({'attempt_id': attempt.attempt_id, 'status': attempt.status})
                continue

            try:
                order = await self.persister.create_order(
                    attempt.order_payload, attempt.idempotency_key, auth_token=auth_token
                )
            except PersistenceError as e:
                logger.error(f"[Reconcile] {attempt.attempt_id} still failing: {e.message}")
                self.store.update_status(attempt.attempt_id, AttemptStatus.NEEDS_RECONCILIATION,
                                         error=e.to_dict())
                report['failed'].append({'attempt_id': attempt.attempt_id, 'error': e.message})
                continue

            self.store.delete(attempt.attempt_id)
            logger.info(f"[Reconcile] {attempt.attempt_id} recorded as order {order.get('orderNumber')}")
            report['reconciled'].append({
                'attempt_id': attempt.attempt_id,
                'order_id': order.get('_id'),
                'order_number': order.get('orderNumber')
            })

        return report
