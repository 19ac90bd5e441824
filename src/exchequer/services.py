"""Service layer: intent issuance, expenses, reimbursements and read queries."""

import logging
import time
from typing import Optional, Dict, Any, List

from sqlalchemy.ext.asyncio import AsyncSession

from .amounts import to_minor_units
from .config import SUPPORTED_CURRENCY
from .connectors.base import (
    ConnectorBase,
    PaymentIntentRequest,
    ProviderCustomer,
    ProviderPaymentIntent,
    TransferRequest,
)
from .database import (
    RecordStore,
    Collection,
    PaymentStatus,
    ExpenseStatus,
    PaymentType,
)
from .dates import today, utc_timestamp
from .errors import NotFoundError, ProviderError
from .schemas import (
    CreatePaymentIntentBody,
    PaymentIntentCreated,
    SubmitExpenseBody,
    ExpenseSubmitted,
    ReimbursementBody,
    ReimbursementIssued,
)

logger = logging.getLogger(__name__)


def map_provider_status(provider_status: str) -> str:
    """Map a provider intent status onto the local payment status enum.

    Args:
        provider_status: Status from the payment provider.

    Returns:
        PaymentStatus value.
    """
    status_mapping = {
        "requires_payment_method": PaymentStatus.PENDING.value,
        "requires_confirmation": PaymentStatus.PENDING.value,
        "requires_action": PaymentStatus.PENDING.value,
        "requires_capture": PaymentStatus.PENDING.value,
        "processing": PaymentStatus.PENDING.value,
        "succeeded": PaymentStatus.PAID.value,
        "canceled": PaymentStatus.FAILED.value,
    }
    return status_mapping.get(provider_status, PaymentStatus.PENDING.value)


class BaseService:
    """Shared plumbing for services that talk to both the store and the provider."""

    def __init__(self, session: AsyncSession, connector: ConnectorBase):
        """Initialize the service.

        Args:
            session: AsyncSession for record store operations.
            connector: Payment provider connector.
        """
        self.session = session
        self.store = RecordStore(session)
        self.connector = connector

    async def _load_member(self, organization_id: str, member_id: str) -> Dict[str, Any]:
        member = await self.store.get(organization_id, member_id, Collection.MEMBERS, member_id)
        if member is None:
            raise NotFoundError("Member not found")
        return member

    async def _resolve_customer(
        self,
        organization_id: str,
        member_id: str,
        member: Dict[str, Any],
        attach: bool = True,
    ) -> ProviderCustomer:
        """Find the member's provider customer by contact address, creating one if absent.

        With ``attach`` the customer id is recorded on the member record.

        Look-up-then-create is not atomic; concurrent first charges for the
        same member can create duplicate customers at the provider.
        """
        email = member.get("email")
        customer = self.connector.find_customer(email) if email else None
        if customer is None:
            customer = self.connector.create_customer(
                email=email,
                name=member.get("name"),
                metadata={"memberId": member_id, "organizationId": organization_id},
            )
        if attach and not self.connector.demo and member.get("stripeCustomerId") != customer.id:
            await self.store.set(
                organization_id, member_id, Collection.MEMBERS, member_id,
                {"stripeCustomerId": customer.id},
            )
        return customer

    async def _record_payment_intent(
        self,
        organization_id: str,
        member_id: str,
        member_name: Optional[str],
        intent: ProviderPaymentIntent,
        payment_type: PaymentType,
    ) -> Dict[str, Any]:
        """Persist the local mirror of a provider intent, keyed by the intent id."""
        return await self.store.set(
            organization_id, member_id, Collection.PAYMENT_INTENTS, intent.id,
            {
                "paymentIntentId": intent.id,
                "amount": intent.amount,
                "currency": intent.currency,
                "status": map_provider_status(intent.status),
                "providerStatus": intent.status,
                "description": intent.description,
                "createdAt": utc_timestamp(),
                "memberId": member_id,
                "memberName": member_name,
                "organizationId": organization_id,
                "paymentType": payment_type.value,
            },
            merge=False,
        )


class PaymentService(BaseService):
    """Dues payment intents and the read-only payment projections."""

    async def create_payment_intent(
        self,
        request: CreatePaymentIntentBody,
        payment_type: PaymentType = PaymentType.DUES,
    ) -> PaymentIntentCreated:
        """Issue a provider payment intent for a member and mirror it locally.

        The steps (customer resolution, intent creation, local write) are not
        atomic: if the local write fails the provider intent has no mirror
        until its events are replayed.

        Raises:
            NotFoundError: If the member does not exist.
            ProviderError: If the provider rejects a call.
            StoreError: If the record store fails.
        """
        member = await self._load_member(request.organization_id, request.member_id)
        member_name = member.get("name")
        customer = await self._resolve_customer(request.organization_id, request.member_id, member)

        intent = self.connector.create_payment_intent(PaymentIntentRequest(
            amount=request.amount,
            currency=request.currency,
            customer_id=customer.id,
            description=request.description,
            metadata={
                "memberId": request.member_id,
                "organizationId": request.organization_id,
                "paymentType": payment_type.value,
                "memberName": member_name or "",
            },
        ))

        await self._record_payment_intent(
            request.organization_id, request.member_id, member_name, intent, payment_type,
        )
        logger.info(
            f"Created payment intent {intent.id} for member {request.member_id} "
            f"in organization {request.organization_id}"
        )
        return PaymentIntentCreated(client_secret=intent.client_secret, payment_intent_id=intent.id)

    async def get_payment_history(self, organization_id: str, member_id: str) -> List[Dict[str, Any]]:
        """Get a member's payment intent records, newest first.

        Returns:
            List of records; empty when the member has none.
        """
        return await self.store.list(
            organization_id, member_id, Collection.PAYMENT_INTENTS,
            order_by="createdAt", descending=True,
        )

    async def get_dues(self, organization_id: str, member_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(organization_id, member_id, Collection.DUES, member_id)

    async def list_donations(self, organization_id: str, member_id: str) -> List[Dict[str, Any]]:
        return await self.store.list(
            organization_id, member_id, Collection.DONATIONS,
            order_by="date", descending=True,
        )


class ExpenseService(BaseService):
    """Expense submission and reimbursement."""

    @staticmethod
    def _demo_submission(expense_id: str, message: str) -> ExpenseSubmitted:
        stamp = int(time.time() * 1000)
        return ExpenseSubmitted(
            expense_id=expense_id,
            payment_intent_id=f"pi_mock_expense_{stamp}",
            client_secret=f"pi_mock_secret_{stamp}",
            demo=True,
            message=message,
        )

    async def submit_expense(self, request: SubmitExpenseBody) -> ExpenseSubmitted:
        """Record an expense claim and issue a payment intent for it.

        Without a live provider, or when the provider rejects the call, the
        claim is still recorded and a demo response with synthetic ids is
        returned; nothing is charged.
        """
        expense_id = await self.store.add(
            request.organization_id, request.member_id, Collection.EXPENSES,
            {
                "submitterName": request.submitter_name,
                "amount": request.amount,
                "category": request.category,
                "description": request.description,
                "date": today(),
                "status": ExpenseStatus.PENDING.value,
                "receiptUrl": request.receipt_url or "",
                "submittedAt": utc_timestamp(),
                "memberId": request.member_id,
                "organizationId": request.organization_id,
            },
        )
        logger.info(f"Recorded expense {expense_id} for member {request.member_id}")

        member = await self.store.get(
            request.organization_id, request.member_id, Collection.MEMBERS, request.member_id,
        )
        member_found = member is not None
        member = member or {"name": request.submitter_name}
        member_name = member.get("name") or request.submitter_name

        if self.connector.demo:
            logger.info("Running in demo mode - returning mock payment intent for expense")
            return self._demo_submission(
                expense_id, "Expense submitted successfully! (Demo mode - no payment required)",
            )

        try:
            customer = await self._resolve_customer(
                request.organization_id, request.member_id, member, attach=member_found,
            )
            intent = self.connector.create_payment_intent(PaymentIntentRequest(
                amount=to_minor_units(request.amount),
                currency=SUPPORTED_CURRENCY,
                customer_id=customer.id,
                description=f"Expense: {request.description}",
                metadata={
                    "memberId": request.member_id,
                    "organizationId": request.organization_id,
                    "paymentType": PaymentType.EXPENSE.value,
                    "memberName": member_name,
                    "category": request.category,
                    "expenseId": expense_id,
                },
            ))
        except ProviderError as e:
            logger.error(f"Provider error while submitting expense {expense_id}: {e.message}")
            return self._demo_submission(
                expense_id, "Expense submitted successfully! (Demo mode - Stripe error handled)",
            )

        await self._record_payment_intent(
            request.organization_id, request.member_id, member_name, intent, PaymentType.EXPENSE,
        )
        return ExpenseSubmitted(
            expense_id=expense_id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            message="Expense submitted successfully. Payment required to complete submission.",
        )

    async def process_reimbursement(self, request: ReimbursementBody) -> ReimbursementIssued:
        """Transfer a reimbursement to a member and mark the expense reimbursed.

        The transfer and the expense update are not transactional; a failed
        store write leaves a completed transfer against a pending expense.

        Raises:
            NotFoundError: If the member does not exist (no transfer is made).
            ProviderError: If the transfer is rejected.
            StoreError: If the expense update fails.
        """
        member = await self._load_member(request.organization_id, request.member_id)
        customer = await self._resolve_customer(request.organization_id, request.member_id, member)

        transfer = self.connector.create_transfer(TransferRequest(
            amount=to_minor_units(request.amount),
            currency=SUPPORTED_CURRENCY,
            destination=customer.id,
            description=f"Reimbursement: {request.description}",
            metadata={
                "memberId": request.member_id,
                "organizationId": request.organization_id,
                "memberName": member.get("name") or "",
                "expenseType": "reimbursement",
                "expenseId": request.expense_id,
            },
        ))

        await self.store.set(
            request.organization_id, request.member_id, Collection.EXPENSES, request.expense_id,
            {
                "status": ExpenseStatus.REIMBURSED.value,
                "reimbursementDate": today(),
                "transferId": transfer.id,
                "receiptUrl": request.receipt_url or "",
            },
        )
        logger.info(f"Reimbursed expense {request.expense_id} with transfer {transfer.id}")
        return ReimbursementIssued(transfer_id=transfer.id, message="Reimbursement processed successfully")
