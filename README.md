# retailops

In-memory domain core for a retail operations back office: user accounts,
roles and permission points, teams, participants, returns and reversals,
end-of-day register closings and KPI reports.

Operations on users, teams, participants, orders and register closings take
a `ScopeContext` (from `retailops.scope`) that says who is acting and which
records they may see: everything, one department, one location, or only
records they own. Out-of-scope access raises `ForbiddenError`; bad input
raises `ValidationError`; missing records raise `NotFoundError`; duplicates
raise `ConflictError`. All of them derive from `AppError`, and each carries
an HTTP-style `status` class attribute (400, 403, 404, 409).

## Modules

- `retailops.scope`: `DataScope`, `ScopeContext` (`owner_in_scope`,
  `department_in_scope`, `location_in_scope`, `matches`, `enforce_scope`)
  and the error classes. An unrecognised scope name means unrestricted.
- `retailops.users`: `User` and `UserDirectory` (`create_user`,
  `list_users`, `get_user`). `gov_id_last4` keeps only the last four
  characters of a government ID; the full ID is never stored.
- `retailops.roles`: `RoleRegistry` for `Role`, `PermissionPoint` and
  `RoleBinding` records. Creating, updating and deleting roles appends an
  `AuditEntry` to `audit_log`; deleting a role only deactivates it.
- `retailops.teams`: `TeamStore` for `Team` and `TeamMember` records,
  listed by name and filtered by scope.
- `retailops.participants`: `ParticipantStore` with search and paging
  through `SearchParams` (50 per page by default, at most 200), tags
  normalised by `normalize_tag` (trimmed, lower-cased), and `bulk_tag` /
  `bulk_deactivate`, which change nothing unless every target is in scope.
- `retailops.returns`: `OrderBook` holding `Order`, `LineItem`, an
  append-only ledger of `LedgerEntry` records and `ApprovalRequest`s.
  `initiate_return` and `initiate_exchange` create derived orders numbered
  `<number>-R<n>` and `<number>-X<n>`. Reversals take two steps:
  `initiate_reversal` asks for approval (`order.reverse`, or
  `order.reverse_late` for orders older than 24 hours) and
  `execute_reversal` writes negating ledger entries once the approval is
  granted. Each call is idempotent on its idempotency key.
- `retailops.register`: `RegisterBook` for `RegisterClosing`s reconciled
  against an `OrderBook` ledger. A variance of more than 2000 cents is
  flagged with an approval request and must be confirmed with
  `confirm_closing` after approval. `closing_status_from_str` parses a
  `ClosingStatus` name.
- `retailops.reports`: `ReportService` for `ReportDefinition`s,
  `run_report` over the users, participants, orders and `DatasetVersion`s
  it is given, and `ScheduledReport`s in xlsx, pdf or csv format. The
  helpers `valid_dimensions_for_kpi`, `valid_filters_for_kpi`,
  `validate_dimensions_and_filters`, `merge_filters` and
  `validate_export_format` are public.

## Example

```python
from uuid import uuid4

from retailops.register import ClosingStatus, RegisterBook
from retailops.returns import LineItem, Order, OrderBook, OrderStatus
from retailops.scope import ScopeContext

cashier = ScopeContext(user_id=uuid4())
book = OrderBook()
order = book.add_order(
    Order("A-100", cashier.user_id, "north", status=OrderStatus.PAID),
    [LineItem("SKU1", "Mug", 2, 500, 40)],
)
book.add_payment(order.id, "cash", 1080, cashier.user_id)

approval = book.initiate_reversal(cashier, order.id, uuid4())
book.approve(approval.id)
_, _, reversals = book.execute_reversal(cashier, order.id, approval.id, uuid4())
assert [e.amount_cents for e in reversals] == [-1080]

closing = RegisterBook(book).close_register(cashier, "north", 0, 0, 0)
assert closing.status is ClosingStatus.CONFIRMED
```

## What this package does not do

- It keeps everything in memory; there is no database or other storage.
- It has no HTTP server, routes or command-line program.
- It does not authenticate users, hash passwords or encrypt fields.
- The stores do not look up permission codes themselves; `RoleRegistry`
  records roles and bindings, but callers decide what a caller may invoke.
- Scheduled reports are only records; no export files are written.

## Tests

```
pip install -e .[test]
pytest
```