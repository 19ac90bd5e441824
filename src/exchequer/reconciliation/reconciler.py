"""Maps provider events onto dues, donation and payment-intent records."""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..amounts import to_major_units
from ..connectors.base import ConnectorBase, WebhookEvent, to_plain_dict
from ..database import (
    RecordStore,
    Collection,
    PaymentStatus,
    PaymentType,
    can_transition,
)
from ..dates import today, utc_timestamp
from .models import EventType, OutcomeStatus, ReconciliationOutcome

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> Optional[str]:
    """Id of a reference that may arrive expanded (as an object) or as a bare id."""
    if value is None or isinstance(value, str):
        return value
    return to_plain_dict(value).get("id")


class EventReconciler:
    """Applies verified provider events to the record store.

    Dues records are upserted by member id, so redelivering an event rewrites
    the same fields. Donation records are keyed by the provider intent id and
    only created once. The PaymentIntent mirror only moves forward.

    The reconciler writes through the store's session but never commits;
    the caller owns the unit of work.
    """

    def __init__(self, store: RecordStore, connector: ConnectorBase):
        """Initialize the reconciler.

        Args:
            store: Record store bound to the caller's session.
            connector: Provider connector, used to re-fetch intents for refunds.
        """
        self.store = store
        self.connector = connector
        self._handlers: Dict[str, Callable[[WebhookEvent], Awaitable[ReconciliationOutcome]]] = {
            EventType.PAYMENT_SUCCEEDED.value: self._handle_payment_succeeded,
            EventType.PAYMENT_FAILED.value: self._handle_payment_failed,
            EventType.CHARGE_REFUNDED.value: self._handle_charge_refunded,
        }

    async def apply(self, event: WebhookEvent) -> ReconciliationOutcome:
        """Apply one event; exceptions from the store or provider propagate."""
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(f"Unhandled event type: {event.type}")
            return ReconciliationOutcome(
                event_id=event.id,
                event_type=event.type,
                status=OutcomeStatus.IGNORED,
            )
        return await handler(event)

    def _skipped(self, event: WebhookEvent, reason: str) -> ReconciliationOutcome:
        logger.warning(f"Skipping event {event.id} ({event.type}): {reason}")
        return ReconciliationOutcome(
            event_id=event.id,
            event_type=event.type,
            status=OutcomeStatus.SKIPPED,
            message=reason,
        )

    def _applied(
        self,
        event: WebhookEvent,
        metadata: Dict[str, Any],
        resulting_status: PaymentStatus,
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            event_id=event.id,
            event_type=event.type,
            status=OutcomeStatus.APPLIED,
            member_id=metadata["memberId"],
            organization_id=metadata["organizationId"],
            resulting_status=resulting_status.value,
        )

    @staticmethod
    def _has_owner(metadata: Dict[str, Any]) -> bool:
        return bool(metadata.get("memberId")) and bool(metadata.get("organizationId"))

    async def _advance_intent(
        self,
        metadata: Dict[str, Any],
        intent: Dict[str, Any],
        new_status: PaymentStatus,
    ) -> None:
        """Move the PaymentIntent mirror to ``new_status`` if that is a forward step.

        A missing mirror (the local write after issuance failed, or the intent
        was created outside this service) is backfilled from ``intent``.
        """
        organization_id, member_id = metadata["organizationId"], metadata["memberId"]
        intent_id = intent["id"]
        existing = await self.store.get(organization_id, member_id, Collection.PAYMENT_INTENTS, intent_id)

        if existing is None:
            logger.info(f"Backfilling missing payment intent record {intent_id}")
            await self.store.set(
                organization_id, member_id, Collection.PAYMENT_INTENTS, intent_id,
                {
                    "paymentIntentId": intent_id,
                    "amount": intent.get("amount"),
                    "currency": intent.get("currency"),
                    "status": new_status.value,
                    "providerStatus": intent.get("status"),
                    "description": intent.get("description"),
                    "createdAt": utc_timestamp(intent.get("created")),
                    "memberId": member_id,
                    "memberName": metadata.get("memberName"),
                    "organizationId": organization_id,
                    "paymentType": metadata.get("paymentType"),
                },
                merge=False,
            )
            return

        current = existing.get("status")
        if current == new_status.value or not can_transition(current, new_status.value):
            logger.info(
                f"Payment intent {intent_id} stays {current}; "
                f"not moving back to {new_status.value}"
            )
            return

        await self.store.set(
            organization_id, member_id, Collection.PAYMENT_INTENTS, intent_id,
            {
                "status": new_status.value,
                "providerStatus": intent.get("status"),
                "updatedAt": utc_timestamp(),
            },
        )

    async def _handle_payment_succeeded(self, event: WebhookEvent) -> ReconciliationOutcome:
        intent = event.data_object
        metadata = to_plain_dict(intent.get("metadata"))
        if not self._has_owner(metadata):
            return self._skipped(event, "payment intent has no memberId/organizationId metadata")

        organization_id, member_id = metadata["organizationId"], metadata["memberId"]
        member_name = metadata.get("memberName")
        amount = to_major_units(intent.get("amount") or 0)
        date = today()

        await self.store.set(
            organization_id, member_id, Collection.DUES, member_id,
            {
                "memberName": member_name,
                "amount": amount,
                "status": PaymentStatus.PAID.value,
                "dueDate": date,
                "paidDate": date,
                "paymentIntentId": intent["id"],
                "stripeChargeId": _object_id(intent.get("latest_charge")),
            },
        )

        if metadata.get("paymentType") == PaymentType.DONATION.value:
            created = await self.store.create_if_absent(
                organization_id, member_id, Collection.DONATIONS, intent["id"],
                {
                    "campaignName": intent.get("description"),
                    "donorName": member_name,
                    "amount": amount,
                    "date": date,
                    "paymentIntentId": intent["id"],
                },
            )
            if not created:
                logger.info(f"Donation for {intent['id']} already recorded")

        await self._advance_intent(metadata, intent, PaymentStatus.PAID)
        logger.info(f"Payment succeeded for member {member_name} in organization {organization_id}")
        return self._applied(event, metadata, PaymentStatus.PAID)

    async def _handle_payment_failed(self, event: WebhookEvent) -> ReconciliationOutcome:
        intent = event.data_object
        metadata = to_plain_dict(intent.get("metadata"))
        if not self._has_owner(metadata):
            return self._skipped(event, "payment intent has no memberId/organizationId metadata")

        organization_id, member_id = metadata["organizationId"], metadata["memberId"]
        member_name = metadata.get("memberName")
        last_error = to_plain_dict(intent.get("last_payment_error"))

        await self.store.set(
            organization_id, member_id, Collection.DUES, member_id,
            {
                "memberName": member_name,
                "amount": to_major_units(intent.get("amount") or 0),
                "status": PaymentStatus.FAILED.value,
                "dueDate": today(),
                "paymentIntentId": intent["id"],
                "failureReason": last_error.get("message") or "Payment failed",
            },
        )

        await self._advance_intent(metadata, intent, PaymentStatus.FAILED)
        logger.info(f"Payment failed for member {member_name} in organization {organization_id}")
        return self._applied(event, metadata, PaymentStatus.FAILED)

    async def _handle_charge_refunded(self, event: WebhookEvent) -> ReconciliationOutcome:
        charge = event.data_object
        intent_id = _object_id(charge.get("payment_intent"))
        if not intent_id:
            return self._skipped(event, "charge does not reference a payment intent")

        # Charges do not carry the intent's metadata; fetch the intent for it
        provider_intent = self.connector.retrieve_payment_intent(intent_id)
        metadata = dict(provider_intent.metadata)
        if not self._has_owner(metadata):
            return self._skipped(event, f"payment intent {intent_id} has no memberId/organizationId metadata")

        organization_id, member_id = metadata["organizationId"], metadata["memberId"]
        member_name = metadata.get("memberName")
        refunds = to_plain_dict(charge.get("refunds")).get("data") or []
        refund_id = _object_id(refunds[0]) if refunds else None

        await self.store.set(
            organization_id, member_id, Collection.DUES, member_id,
            {
                "memberName": member_name,
                "amount": to_major_units(charge.get("amount_refunded") or 0),
                "status": PaymentStatus.REFUNDED.value,
                "refundDate": today(),
                "refundId": refund_id,
            },
        )

        intent = {
            "id": provider_intent.id,
            "amount": provider_intent.amount,
            "currency": provider_intent.currency,
            "status": provider_intent.status,
            "description": provider_intent.description,
        }
        await self._advance_intent(metadata, intent, PaymentStatus.REFUNDED)
        logger.info(f"Refund processed for member {member_name} in organization {organization_id}")
        return self._applied(event, metadata, PaymentStatus.REFUNDED)
