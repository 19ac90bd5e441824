"""Service layer for applying provider events."""

import logging
from datetime import datetime
from typing import Dict

from sqlalchemy.ext.asyncio import AsyncSession

from ..connectors.base import ConnectorBase, WebhookEvent
from ..database import RecordStore
from ..dates import utc_now
from .models import (
    HANDLED_EVENT_TYPES,
    OutcomeStatus,
    ReconciliationOutcome,
    ReplayReport,
)
from .reconciler import EventReconciler

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Verifies, applies and replays provider events, one unit of work per event."""

    def __init__(self, session: AsyncSession, connector: ConnectorBase):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            connector: Provider connector used for verification, intent
                re-fetches and event listing.
        """
        self.session = session
        self.connector = connector
        self.reconciler = EventReconciler(RecordStore(session), connector)

    async def handle_webhook(self, headers: Dict[str, str], body: bytes) -> ReconciliationOutcome:
        """Verify an inbound webhook and apply it.

        Raises:
            AuthenticationError: If the signature does not verify. Nothing has
                been written at that point.
        """
        event = self.connector.parse_webhook(headers, body)
        logger.info(f"Received webhook event {event.id} ({event.type})")
        return await self.apply_event(event)

    async def apply_event(self, event: WebhookEvent, dry_run: bool = False) -> ReconciliationOutcome:
        """Apply one event and commit it.

        Any failure is rolled back and logged rather than raised, so the
        provider always gets an acknowledgement; replay is the recovery path.

        Args:
            event: A verified provider event.
            dry_run: Roll back instead of committing.

        Returns:
            The outcome; ``failed`` carries the error message.
        """
        try:
            outcome = await self.reconciler.apply(event)
            if dry_run:
                await self.session.rollback()
            else:
                await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Error processing event {event.id} ({event.type}): {e}")
            return ReconciliationOutcome(
                event_id=event.id,
                event_type=event.type,
                status=OutcomeStatus.FAILED,
                message=str(e),
            )
        return outcome

    async def replay_events(
        self,
        start_time: datetime,
        end_time: datetime,
        dry_run: bool = False,
    ) -> ReplayReport:
        """Re-apply the provider's events of the handled types within a window.

        Events are applied oldest first, each committed on its own. Listing
        errors from the provider propagate.

        Args:
            start_time: Start of the window.
            end_time: End of the window.
            dry_run: Apply every event but roll each one back.

        Returns:
            ReplayReport with one outcome per event.
        """
        if start_time >= end_time:
            raise ValueError("start_time must be before end_time")

        logger.info(
            f"Replaying {self.connector.name} events from {start_time} to {end_time}"
            f"{' (dry run)' if dry_run else ''}"
        )
        events = self.connector.list_events(start_time, end_time, HANDLED_EVENT_TYPES)

        report = ReplayReport(
            provider=self.connector.name,
            start_time=start_time,
            end_time=end_time,
            dry_run=dry_run,
            total_events=len(events),
        )
        for event in events:
            report.outcomes.append(await self.apply_event(event, dry_run=dry_run))
        report.completed_at = utc_now()

        counts = report.counts()
        logger.info(
            f"Replay completed: {report.total_events} events, "
            + ", ".join(f"{count} {status}" for status, count in counts.items())
        )
        return report
