"""Orders, returns, exchanges and approval-gated reversals with an append-only ledger."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import UUID, uuid4

from retailops.roles import AuditEntry
from retailops.scope import ConflictError, NotFoundError, ScopeContext, ValidationError

LATE_REVERSAL_AFTER = timedelta(hours=24)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    PAID = "paid"
    CLOSED = "closed"
    RETURN_INITIATED = "return_initiated"
    REVERSAL_PENDING = "reversal_pending"
    REVERSED = "reversed"


class TenderType(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    GIFT_CARD = "gift_card"


class LedgerEntryKind(str, enum.Enum):
    PAYMENT = "payment"
    REFUND = "refund"
    REVERSAL = "reversal"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Order:
    """A sales, return or exchange order rung up by a cashier."""

    order_number: str
    cashier_user_id: UUID
    location: str
    status: OrderStatus = OrderStatus.DRAFT
    department: str | None = None
    customer_reference: str | None = None
    original_order_id: UUID | None = None
    subtotal_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class LineItem:
    """One line of an order; returned lines carry a negative quantity."""

    sku: str
    description: str
    quantity: int
    unit_price_cents: int
    tax_cents: int = 0
    line_total_cents: int | None = None
    order_id: UUID | None = None
    original_line_item_id: UUID | None = None
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.line_total_cents is None:
            self.line_total_cents = self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class LedgerEntry:
    """A money movement against an order; entries are never changed once written."""

    order_id: UUID
    tender_type: TenderType
    entry_kind: LedgerEntryKind
    amount_cents: int
    created_by: UUID
    reference_code: str | None = None
    idempotency_key: UUID = field(default_factory=uuid4)
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)


@dataclass
class ApprovalRequest:
    """A request that a holder of a permission must approve before it takes effect."""

    permission_code: str
    requester_user_id: UUID
    payload: dict[str, Any]
    status: ApprovalStatus = ApprovalStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class ReturnLine:
    """A quantity of an original line item to take back."""

    original_line_item_id: UUID
    quantity: int


@dataclass(frozen=True)
class NewItem:
    """A new item handed out as part of an exchange."""

    sku: str
    description: str
    quantity: int
    unit_price_cents: int
    tax_cents: int = 0


OrderDetail = tuple[Order, list[LineItem], list[LedgerEntry]]


class OrderBook:
    """In-memory store of orders, line items, ledger entries and approvals."""

    def __init__(self) -> None:
        self.orders: dict[UUID, Order] = {}
        self.line_items: dict[UUID, LineItem] = {}
        self.ledger: list[LedgerEntry] = []
        self.approvals: dict[UUID, ApprovalRequest] = {}
        self.audit_log: list[AuditEntry] = []
        self._idempotency: dict[tuple[UUID, str], Any] = {}

    # --- basic records ---

    def _order(self, order_id: UUID) -> Order:
        try:
            return self.orders[order_id]
        except KeyError:
            raise NotFoundError("Order not found") from None

    def _items_of(self, order_id: UUID) -> list[LineItem]:
        return [item for item in self.line_items.values() if item.order_id == order_id]

    def _approval(self, approval_id: UUID) -> ApprovalRequest:
        try:
            return self.approvals[approval_id]
        except KeyError:
            raise NotFoundError("Approval request not found") from None

    def add_order(self, order: Order, line_items: Iterable[LineItem] = ()) -> Order:
        """Record an order together with its line items."""
        if order.id in self.orders:
            raise ConflictError("Order already exists")
        self.orders[order.id] = order
        for item in line_items:
            item.order_id = order.id
            self.line_items[item.id] = item
        return order

    def add_payment(
        self,
        order_id: UUID,
        tender_type: TenderType | str,
        amount_cents: int,
        created_by: UUID,
    ) -> LedgerEntry:
        self._order(order_id)
        entry = LedgerEntry(
            order_id=order_id,
            tender_type=TenderType(tender_type),
            entry_kind=LedgerEntryKind.PAYMENT,
            amount_cents=amount_cents,
            created_by=created_by,
        )
        self.ledger.append(entry)
        return entry

    def ledger_for(self, order_id: UUID) -> list[LedgerEntry]:
        return [e for e in self.ledger if e.order_id == order_id]

    def request_approval(
        self, permission_code: str, requester_id: UUID, payload: dict[str, Any]
    ) -> ApprovalRequest:
        approval = ApprovalRequest(permission_code, requester_id, dict(payload))
        self.approvals[approval.id] = approval
        return approval

    def approve(self, approval_id: UUID) -> ApprovalRequest:
        approval = self._approval(approval_id)
        approval.status = ApprovalStatus.APPROVED
        return approval

    def reject(self, approval_id: UUID) -> ApprovalRequest:
        approval = self._approval(approval_id)
        approval.status = ApprovalStatus.REJECTED
        return approval

    # --- helpers ---

    def _source_for_change(self, ctx: ScopeContext, order_id: UUID, what: str) -> Order:
        source = self._order(order_id)
        ctx.enforce_scope(source.cashier_user_id, source.department, source.location)
        if source.status not in (OrderStatus.PAID, OrderStatus.CLOSED):
            raise ValidationError(f"{what} can only be initiated on Paid or Closed orders")
        return source

    def _original_line(self, source_order_id: UUID, line_id: UUID) -> LineItem:
        try:
            original = self.line_items[line_id]
        except KeyError:
            raise NotFoundError("Line item not found") from None
        if original.order_id != source_order_id:
            raise ValidationError("Line item does not belong to the source order")
        return original

    @staticmethod
    def _returned_line(original: LineItem, quantity: int) -> LineItem:
        return LineItem(
            sku=original.sku,
            description=original.description,
            quantity=-quantity,
            unit_price_cents=original.unit_price_cents,
            tax_cents=original.tax_cents,
            line_total_cents=-(original.unit_price_cents * quantity),
            original_line_item_id=original.id,
        )

    def _derived_count(self, source_order_id: UUID) -> int:
        return sum(1 for o in self.orders.values() if o.original_order_id == source_order_id)

    def _store_derived(
        self, ctx: ScopeContext, source: Order, number: str, status: OrderStatus,
        items: list[LineItem], notes: str | None,
    ) -> Order:
        subtotal = sum(item.line_total_cents for item in items)
        tax = sum(item.tax_cents * item.quantity for item in items)
        order = Order(
            order_number=number,
            cashier_user_id=ctx.user_id,
            location=source.location,
            status=status,
            department=source.department,
            customer_reference=source.customer_reference,
            original_order_id=source.id,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=subtotal + tax,
            notes=notes,
        )
        self.add_order(order, items)
        return order

    # --- returns and exchanges ---

    def initiate_return(
        self,
        ctx: ScopeContext,
        order_id: UUID,
        idempotency_key: UUID,
        lines: Iterable[ReturnLine],
        notes: str | None = None,
    ) -> OrderDetail:
        """Create a return order with negative lines and mark the source as being returned."""
        key = (idempotency_key, "return_order")
        if key in self._idempotency:
            return self._idempotency[key]
        source = self._source_for_change(ctx, order_id, "Returns")

        items = []
        for line in lines:
            if line.quantity <= 0:
                raise ValidationError("Return quantity must be positive")
            original = self._original_line(order_id, line.original_line_item_id)
            if line.quantity > original.quantity:
                raise ValidationError(
                    f"Return quantity {line.quantity} exceeds original quantity "
                    f"{original.quantity} for SKU {original.sku}"
                )
            items.append(self._returned_line(original, line.quantity))

        number = f"{source.order_number}-R{self._derived_count(order_id) + 1}"
        order = self._store_derived(
            ctx, source, number, OrderStatus.RETURN_INITIATED, items, notes
        )
        source.status = OrderStatus.RETURN_INITIATED
        source.updated_at = _now()

        result: OrderDetail = (order, items, [])
        self._idempotency[key] = result
        return result

    def initiate_exchange(
        self,
        ctx: ScopeContext,
        order_id: UUID,
        idempotency_key: UUID,
        return_items: Iterable[ReturnLine],
        new_items: Iterable[NewItem],
        notes: str | None = None,
    ) -> OrderDetail:
        """Create a draft exchange order combining returned and newly issued items."""
        key = (idempotency_key, "exchange_order")
        if key in self._idempotency:
            return self._idempotency[key]
        source = self._source_for_change(ctx, order_id, "Exchanges")

        items = [
            self._returned_line(
                self._original_line(order_id, line.original_line_item_id), line.quantity
            )
            for line in return_items
        ]
        items.extend(
            LineItem(
                sku=new.sku,
                description=new.description,
                quantity=new.quantity,
                unit_price_cents=new.unit_price_cents,
                tax_cents=new.tax_cents,
            )
            for new in new_items
        )

        number = f"{source.order_number}-X{self._derived_count(order_id) + 1}"
        order = self._store_derived(ctx, source, number, OrderStatus.DRAFT, items, notes)

        result: OrderDetail = (order, items, [])
        self._idempotency[key] = result
        return result

    # --- reversals ---

    def initiate_reversal(
        self,
        ctx: ScopeContext,
        order_id: UUID,
        idempotency_key: UUID,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ApprovalRequest:
        """Ask for approval to reverse an order; no money moves until it is executed."""
        key = (idempotency_key, "reversal_request")
        if key in self._idempotency:
            return self._idempotency[key]
        now = now or _now()
        order = self._source_for_change(ctx, order_id, "Reversals")

        is_late = order.created_at < now - LATE_REVERSAL_AFTER
        permission_code = "order.reverse_late" if is_late else "order.reverse"
        approval = self.request_approval(
            permission_code,
            ctx.user_id,
            {
                "type": "order_reversal",
                "order_id": str(order_id),
                "order_number": order.order_number,
                "idempotency_key": str(idempotency_key),
                "is_late_reversal": is_late,
                "note": notes,
                "requested_by": str(ctx.user_id),
            },
        )
        order.status = OrderStatus.REVERSAL_PENDING
        order.notes = notes
        order.updated_at = now

        self._idempotency[key] = approval
        return approval

    def execute_reversal(
        self,
        ctx: ScopeContext,
        order_id: UUID,
        approval_request_id: UUID,
        idempotency_key: UUID,
    ) -> OrderDetail:
        """Write reversing ledger entries once the linked approval has been granted."""
        key = (idempotency_key, "reversal_executed")
        if key in self._idempotency:
            return self._idempotency[key]

        approval = self._approval(approval_request_id)
        if approval.status is not ApprovalStatus.APPROVED:
            raise ValidationError("Reversal cannot execute: approval not yet approved")
        try:
            approved_order = UUID(str(approval.payload.get("order_id")))
        except ValueError:
            approved_order = None
        if approved_order != order_id:
            raise ValidationError("Approval request does not match this order")

        order = self._order(order_id)
        ctx.enforce_scope(order.cashier_user_id, order.department, order.location)
        if order.status is not OrderStatus.REVERSAL_PENDING:
            raise ValidationError(
                "Order must be in ReversalPending status to execute reversal"
            )

        before = {
            "order_id": str(order_id),
            "status": "reversal_pending",
            "total_cents": order.total_cents,
        }
        reversals = [
            LedgerEntry(
                order_id=order_id,
                tender_type=entry.tender_type,
                entry_kind=LedgerEntryKind.REVERSAL,
                amount_cents=-entry.amount_cents,
                created_by=ctx.user_id,
                reference_code=f"REVERSAL-OF-{entry.id}",
            )
            for entry in self.ledger_for(order_id)
            if entry.entry_kind is LedgerEntryKind.PAYMENT
        ]
        self.ledger.extend(reversals)
        order.status = OrderStatus.REVERSED
        order.updated_at = _now()

        after = {"order_id": str(order_id), "status": "reversed", "reversal_count": len(reversals)}
        self.audit_log.append(
            AuditEntry(ctx.user_id, "reversal", "orders", order_id, before, after)
        )

        result: OrderDetail = (order, self._items_of(order_id), reversals)
        self._idempotency[key] = result
        return result