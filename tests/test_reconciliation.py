"""Tests for payment-event reconciliation."""

import json
import logging
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import patch

from exchequer.connectors.base import PaymentIntentRequest, WebhookEvent
from exchequer.database import Collection
from exchequer.dates import today
from exchequer.errors import AuthenticationError, StoreError
from exchequer.reconciliation import (
    HANDLED_EVENT_TYPES,
    OutcomeStatus,
    ReconciliationService,
)

from conftest import ORG_ID, MEMBER_ID, make_event, make_intent_payload, signed_request


def as_event(payload):
    return WebhookEvent.from_payload(payload, "simulator")


def issue_intent(simulator, payment_type="dues", amount=15000, description="Spring dues"):
    return simulator.create_payment_intent(PaymentIntentRequest(
        amount=amount,
        currency="usd",
        description=description,
        metadata={
            "memberId": MEMBER_ID,
            "organizationId": ORG_ID,
            "paymentType": payment_type,
            "memberName": "Test",
        },
    ))


@pytest.fixture
def service(db_session, simulator):
    return ReconciliationService(db_session, simulator)


class TestPaymentSucceeded:
    """Tests for payment_intent.succeeded."""

    async def test_marks_dues_paid(self, service, store):
        outcome = await service.apply_event(as_event(make_event("payment_intent.succeeded", make_intent_payload())))

        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.member_id == MEMBER_ID
        assert outcome.resulting_status == "Paid"

        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues == {
            "id": MEMBER_ID,
            "memberName": "Test",
            "amount": 150.0,
            "status": "Paid",
            "dueDate": today(),
            "paidDate": today(),
            "paymentIntentId": "pi_test_123",
            "stripeChargeId": "ch_test_123",
        }

    async def test_merges_into_existing_dues(self, service, store):
        await store.set(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID, {"status": "Pending", "semester": "Spring"})

        await service.apply_event(as_event(make_event("payment_intent.succeeded", make_intent_payload())))

        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["status"] == "Paid"
        assert dues["semester"] == "Spring"

    async def test_redelivery_is_idempotent(self, service, store):
        event = as_event(make_event("payment_intent.succeeded", make_intent_payload(payment_type="donation")))

        await service.apply_event(event)
        first = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        await service.apply_event(event)
        second = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)

        assert first == second
        assert len(await store.list(ORG_ID, MEMBER_ID, Collection.DONATIONS)) == 1

    async def test_records_donation(self, service, store):
        payload = make_intent_payload(payment_type="donation", amount=2500, description="Spring Gala")

        await service.apply_event(as_event(make_event("payment_intent.succeeded", payload)))

        donation = await store.get(ORG_ID, MEMBER_ID, Collection.DONATIONS, "pi_test_123")
        assert donation["campaignName"] == "Spring Gala"
        assert donation["donorName"] == "Test"
        assert donation["amount"] == 25.0
        assert donation["date"] == today()
        assert donation["paymentIntentId"] == "pi_test_123"

    async def test_no_donation_for_dues(self, service, store):
        await service.apply_event(as_event(make_event("payment_intent.succeeded", make_intent_payload())))
        assert await store.list(ORG_ID, MEMBER_ID, Collection.DONATIONS) == []

    async def test_expense_payment_updates_dues(self, service, store):
        await service.apply_event(as_event(make_event(
            "payment_intent.succeeded", make_intent_payload(payment_type="expense"),
        )))
        assert (await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID))["status"] == "Paid"

    async def test_advances_intent_record(self, service, store):
        await store.set(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, "pi_test_123", {
            "paymentIntentId": "pi_test_123",
            "status": "Pending",
            "createdAt": "2024-01-01T00:00:00.000000Z",
        })

        await service.apply_event(as_event(make_event("payment_intent.succeeded", make_intent_payload())))

        record = await store.get(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, "pi_test_123")
        assert record["status"] == "Paid"
        assert record["providerStatus"] == "succeeded"
        assert record["createdAt"] == "2024-01-01T00:00:00.000000Z"

    async def test_backfills_missing_intent_record(self, service, store):
        await service.apply_event(as_event(make_event("payment_intent.succeeded", make_intent_payload())))

        record = await store.get(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, "pi_test_123")
        assert record["status"] == "Paid"
        assert record["amount"] == 15000
        assert record["paymentType"] == "dues"
        assert record["memberName"] == "Test"

    async def test_missing_metadata_skipped(self, service, store, caplog):
        payload = make_intent_payload(metadata={"paymentType": "dues"})

        with caplog.at_level(logging.WARNING):
            outcome = await service.apply_event(as_event(make_event("payment_intent.succeeded", payload)))

        assert outcome.status == OutcomeStatus.SKIPPED
        assert "evt_test_1" in caplog.text
        assert await store.list(ORG_ID, MEMBER_ID, Collection.DUES) == []


class TestPaymentFailed:
    """Tests for payment_intent.payment_failed."""

    async def test_marks_dues_failed(self, service, store):
        payload = make_intent_payload(status="requires_payment_method", last_payment_error={"message": "Insufficient funds"})

        outcome = await service.apply_event(as_event(make_event("payment_intent.payment_failed", payload)))

        assert outcome.resulting_status == "Failed"
        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["status"] == "Failed"
        assert dues["failureReason"] == "Insufficient funds"
        assert dues["amount"] == 150.0
        assert dues["dueDate"] == today()
        assert "paidDate" not in dues

    async def test_generic_failure_reason(self, service, store):
        payload = make_intent_payload(status="requires_payment_method")

        await service.apply_event(as_event(make_event("payment_intent.payment_failed", payload)))

        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["failureReason"] == "Payment failed"

    async def test_paid_intent_record_not_moved_back(self, service, store):
        await store.set(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, "pi_test_123", {"status": "Paid"})

        await service.apply_event(as_event(make_event("payment_intent.payment_failed", make_intent_payload())))

        record = await store.get(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, "pi_test_123")
        assert record["status"] == "Paid"


class TestChargeRefunded:
    """Tests for charge.refunded."""

    async def test_marks_dues_refunded(self, service, store, simulator):
        intent = issue_intent(simulator)
        await service.apply_event(as_event(simulator.complete_payment_intent(intent.id)))
        refund_event = simulator.refund_payment_intent(intent.id)

        outcome = await service.apply_event(as_event(refund_event))

        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.resulting_status == "Refunded"
        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["status"] == "Refunded"
        assert dues["amount"] == 150.0
        assert dues["refundDate"] == today()
        assert dues["refundId"] == refund_event["data"]["object"]["refunds"]["data"][0]["id"]
        assert dues["paidDate"] == today()

        record = await store.get(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, intent.id)
        assert record["status"] == "Refunded"

    async def test_charge_without_refund_list(self, service, store, simulator):
        intent = issue_intent(simulator)
        charge = {"id": "ch_1", "object": "charge", "payment_intent": intent.id, "amount_refunded": 15000}

        await service.apply_event(as_event(make_event("charge.refunded", charge)))

        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["status"] == "Refunded"
        assert dues["refundId"] is None

    async def test_charge_without_intent_skipped(self, service):
        outcome = await service.apply_event(as_event(make_event("charge.refunded", {"id": "ch_1", "payment_intent": None})))
        assert outcome.status == OutcomeStatus.SKIPPED

    async def test_unknown_intent_fails(self, service, store):
        charge = {"id": "ch_1", "payment_intent": "pi_gone", "amount_refunded": 100}

        outcome = await service.apply_event(as_event(make_event("charge.refunded", charge)))

        assert outcome.status == OutcomeStatus.FAILED
        assert "pi_gone" in outcome.message
        assert await store.list(ORG_ID, MEMBER_ID, Collection.DUES) == []


class TestUnhandledEvents:
    async def test_ignored(self, service, store):
        outcome = await service.apply_event(as_event(make_event("customer.created", {"id": "cus_1"})))
        assert outcome.status == OutcomeStatus.IGNORED
        assert await store.list(ORG_ID, MEMBER_ID, Collection.DUES) == []


class TestFailureHandling:
    """Tests for failures while applying an event."""

    async def test_store_failure_logged_and_rolled_back(self, service, store, caplog):
        event = as_event(make_event("payment_intent.succeeded", make_intent_payload(payment_type="donation")))

        with patch.object(
            service.reconciler.store, "create_if_absent", side_effect=StoreError("disk full"),
        ):
            with caplog.at_level(logging.ERROR):
                outcome = await service.apply_event(event)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.message == "disk full"
        assert "evt_test_1" in caplog.text
        assert "payment_intent.succeeded" in caplog.text
        # the dues write made before the failure was rolled back
        assert await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID) is None


class TestHandleWebhook:
    """Tests for verified webhook handling."""

    async def test_applies_signed_event(self, service, store):
        body, headers = signed_request(make_event("payment_intent.succeeded", make_intent_payload()))

        outcome = await service.handle_webhook(headers, body)

        assert outcome.status == OutcomeStatus.APPLIED
        assert (await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID))["status"] == "Paid"

    async def test_bad_signature_changes_nothing(self, service, store):
        body, headers = signed_request(make_event("payment_intent.succeeded", make_intent_payload()), secret="whsec_wrong")

        with pytest.raises(AuthenticationError):
            await service.handle_webhook(headers, body)

        assert await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID) is None

    async def test_unsigned_body_changes_nothing(self, service, store):
        body = json.dumps(make_event("payment_intent.succeeded", make_intent_payload())).encode()

        with pytest.raises(AuthenticationError):
            await service.handle_webhook({"content-type": "application/json"}, body)

        assert await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID) is None


class TestReplayEvents:
    """Tests for replaying the provider's event stream."""

    @staticmethod
    def window():
        now = datetime.now(timezone.utc)
        return now - timedelta(minutes=5), now + timedelta(minutes=5)

    async def test_replays_and_backfills(self, service, store, simulator):
        intent = issue_intent(simulator)
        simulator.complete_payment_intent(intent.id)
        simulator.refund_payment_intent(intent.id)

        report = await service.replay_events(*self.window())

        assert report.total_events == 2
        assert report.counts()["applied"] == 2
        dues = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        assert dues["status"] == "Refunded"
        record = await store.get(ORG_ID, MEMBER_ID, Collection.PAYMENT_INTENTS, intent.id)
        assert record["status"] == "Refunded"
        assert record["amount"] == 15000

    async def test_replay_twice_is_idempotent(self, service, store, simulator):
        intent = issue_intent(simulator, payment_type="donation")
        simulator.complete_payment_intent(intent.id)

        await service.replay_events(*self.window())
        first = await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID)
        await service.replay_events(*self.window())

        assert await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID) == first
        assert len(await store.list(ORG_ID, MEMBER_ID, Collection.DONATIONS)) == 1

    async def test_dry_run_writes_nothing(self, service, store, simulator):
        intent = issue_intent(simulator)
        simulator.complete_payment_intent(intent.id)

        report = await service.replay_events(*self.window(), dry_run=True)

        assert report.dry_run is True
        assert report.counts()["applied"] == 1
        assert await store.get(ORG_ID, MEMBER_ID, Collection.DUES, MEMBER_ID) is None

    async def test_invalid_window(self, service):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValueError):
            await service.replay_events(now, now - timedelta(hours=1))

    async def test_lists_handled_types(self, service, simulator):
        with patch.object(simulator, "list_events", return_value=[]) as mock_list:
            report = await service.replay_events(*self.window())

        assert mock_list.call_args.args[2] == HANDLED_EVENT_TYPES
        assert report.total_events == 0
        assert report.to_summary_dict()["counts"] == {"applied": 0, "ignored": 0, "skipped": 0, "failed": 0}
