"""End-of-day register closings, with variance checks gated by manager approval."""

from __future__ import annotations

import enum
import itertools
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID, uuid4

from retailops.returns import ApprovalStatus, OrderBook, TenderType
from retailops.roles import AuditEntry
from retailops.scope import NotFoundError, ScopeContext, ValidationError

VARIANCE_THRESHOLD_CENTS = 2000
"""A closing whose variance exceeds this many cents needs manager approval."""

VARIANCE_PERMISSION = "register.confirm_variance"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClosingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    VARIANCE_FLAGGED = "variance_flagged"
    MANAGER_CONFIRMED = "manager_confirmed"


def closing_status_from_str(value: str) -> ClosingStatus:
    """Parse a closing status name, raising ValidationError for unknown names."""
    try:
        return ClosingStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid closing status: {value}") from None


@dataclass
class RegisterClosing:
    """A cashier's count of one register at the end of a day."""

    location: str
    cashier_user_id: UUID
    closing_date: date
    expected_cash_cents: int
    actual_cash_cents: int
    expected_card_cents: int
    actual_card_cents: int
    expected_gift_card_cents: int
    actual_gift_card_cents: int
    variance_cents: int
    status: ClosingStatus
    approval_request_id: UUID | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)
    confirmed_at: datetime | None = None

    @property
    def needs_approval(self) -> bool:
        return self.status is ClosingStatus.VARIANCE_FLAGGED


class RegisterBook:
    """Register closings reconciled against the ledger of an order book."""

    def __init__(self, orders: OrderBook | None = None) -> None:
        self.orders = orders if orders is not None else OrderBook()
        self._closings: dict[UUID, RegisterClosing] = {}
        self._sequence: dict[UUID, int] = {}
        self._counter = itertools.count()
        self.audit_log: list[AuditEntry] = []

    def _closing(self, closing_id: UUID) -> RegisterClosing:
        try:
            return self._closings[closing_id]
        except KeyError:
            raise NotFoundError("Register closing not found") from None

    def _expected_by_tender(
        self, cashier_id: UUID, location: str, day: date
    ) -> dict[TenderType, int]:
        start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        order_ids = {
            order.id
            for order in self.orders.orders.values()
            if order.cashier_user_id == cashier_id
            and order.location == location
            and start <= order.created_at < end
        }
        totals = dict.fromkeys(TenderType, 0)
        # Payments count positive; refunds and reversals are stored negative.
        for entry in self.orders.ledger:
            if entry.order_id in order_ids:
                totals[entry.tender_type] += entry.amount_cents
        return totals

    def close_register(
        self,
        ctx: ScopeContext,
        location: str,
        actual_cash_cents: int,
        actual_card_cents: int,
        actual_gift_card_cents: int,
        notes: str | None = None,
        today: date | None = None,
    ) -> RegisterClosing:
        """Record a closing; a variance above the threshold raises an approval request."""
        today = today or _now().date()
        expected = self._expected_by_tender(ctx.user_id, location, today)
        actual_total = actual_cash_cents + actual_card_cents + actual_gift_card_cents
        variance = actual_total - sum(expected.values())

        if abs(variance) > VARIANCE_THRESHOLD_CENTS:
            approval = self.orders.request_approval(
                VARIANCE_PERMISSION,
                ctx.user_id,
                {
                    "type": "register_variance",
                    "location": location,
                    "cashier_user_id": str(ctx.user_id),
                    "closing_date": today.isoformat(),
                    "variance_cents": variance,
                },
            )
            status, approval_id = ClosingStatus.VARIANCE_FLAGGED, approval.id
        else:
            status, approval_id = ClosingStatus.CONFIRMED, None

        closing = RegisterClosing(
            location=location,
            cashier_user_id=ctx.user_id,
            closing_date=today,
            expected_cash_cents=expected[TenderType.CASH],
            actual_cash_cents=actual_cash_cents,
            expected_card_cents=expected[TenderType.CARD],
            actual_card_cents=actual_card_cents,
            expected_gift_card_cents=expected[TenderType.GIFT_CARD],
            actual_gift_card_cents=actual_gift_card_cents,
            variance_cents=variance,
            status=status,
            approval_request_id=approval_id,
            notes=notes,
        )
        self._closings[closing.id] = closing
        self._sequence[closing.id] = next(self._counter)
        return closing

    def list_closings(
        self,
        ctx: ScopeContext,
        location: str | None = None,
        date: date | None = None,
        status: str | None = None,
    ) -> list[RegisterClosing]:
        """Closings visible to the caller, newest first."""
        wanted_status = closing_status_from_str(status) if status is not None else None

        def keep(c: RegisterClosing) -> bool:
            if not ctx.owner_in_scope(c.cashier_user_id):
                return False
            if not ctx.location_in_scope(c.location):
                return False
            if location is not None and c.location != location:
                return False
            if date is not None and c.closing_date != date:
                return False
            if wanted_status is not None and c.status is not wanted_status:
                return False
            return True

        return sorted(
            filter(keep, self._closings.values()),
            key=lambda c: (c.created_at, self._sequence[c.id]),
            reverse=True,
        )

    def get_closing(self, ctx: ScopeContext, closing_id: UUID) -> RegisterClosing:
        closing = self._closing(closing_id)
        ctx.enforce_scope(closing.cashier_user_id, None, closing.location)
        return closing

    def confirm_closing(self, actor_id: UUID, closing_id: UUID) -> RegisterClosing:
        """Confirm a flagged closing once its approval request has been approved."""
        closing = self._closing(closing_id)
        if closing.status is not ClosingStatus.VARIANCE_FLAGGED:
            raise ValidationError("Only variance-flagged closings can be confirmed")
        if closing.approval_request_id is None:
            raise ValidationError("No approval request linked to this closing")
        approval = self.orders.approvals.get(closing.approval_request_id)
        if approval is None:
            raise NotFoundError("Approval request not found")
        if approval.status is not ApprovalStatus.APPROVED:
            raise ValidationError("Approval request must be approved before confirming")

        before = {
            "closing_id": str(closing_id),
            "status": "variance_flagged",
            "variance_cents": closing.variance_cents,
        }
        closing.status = ClosingStatus.MANAGER_CONFIRMED
        closing.confirmed_at = _now()
        after = {"closing_id": str(closing_id), "status": "manager_confirmed"}
        self.audit_log.append(
            AuditEntry(actor_id, "update", "register_closings", closing_id, before, after)
        )
        return closing