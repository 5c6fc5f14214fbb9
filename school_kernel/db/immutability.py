"""
ORM-level immutability enforcement for money and audit records.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and raise
ImmutabilityViolationError, aborting the flush before anything is written:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete()       --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

    Entity         | When immutable                       | Why
    ---------------|--------------------------------------|-----------------------------
    Payment        | ALWAYS (from creation)               | Money received is history
    Receipt        | ALWAYS (from creation)               | Issued to the payer
    PromotionLog   | ALWAYS (from creation)               | Audit trail
    Alumni         | Identity fields always; no delete    | Graduation happens once
    FeeStructure   | Money fields once payments reference | Would rewrite past balances
                   | the same grade/year/term             |

``updated_at`` / ``updated_by`` are audit metadata and may change on any
row.  Corrections to money are new rows, never edits.

Called once at startup (and by the test harness):

    from school_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()
"""

from sqlalchemy import event, func, inspect, select

from school_kernel.exceptions import ImmutabilityViolationError
from school_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by"})

_FEE_MONEY_FIELDS = ("total_amount", "breakdown")


def _changed_fields(target) -> list[str]:
    """Column attributes with pending changes, ignoring audit metadata."""
    state = inspect(target)
    changed = []
    for attr in state.mapper.column_attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _block(entity_type: str, target, operation: str, reason: str, **extra) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_payment_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "Payment", target, "UPDATE",
            "Payments cannot be modified; record a correcting payment instead",
            fields=changed,
        )


def _check_payment_delete(mapper, connection, target):
    _block("Payment", target, "DELETE", "Payments cannot be deleted")


def _check_receipt_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block("Receipt", target, "UPDATE", "Receipts cannot be modified", fields=changed)


def _check_receipt_delete(mapper, connection, target):
    _block("Receipt", target, "DELETE", "Receipts cannot be deleted")


def _check_promotion_log_immutability(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "PromotionLog", target, "UPDATE",
            "Promotion log entries are append-only",
            fields=changed,
        )


def _check_promotion_log_delete(mapper, connection, target):
    _block("PromotionLog", target, "DELETE", "Promotion log entries cannot be deleted")


def _check_alumni_immutability(mapper, connection, target):
    changed = [
        f for f in _changed_fields(target)
        if f in ("student_id", "graduation_year", "school_id")
    ]
    if changed:
        _block(
            "Alumni", target, "UPDATE",
            "Alumni identity (student, graduation year) cannot change",
            fields=changed,
        )


def _check_alumni_delete(mapper, connection, target):
    _block("Alumni", target, "DELETE", "Alumni records cannot be deleted")


def _fee_structure_is_referenced(connection, target) -> bool:
    """True if any payment exists for a student of this grade in the same term."""
    from school_kernel.models.fees import Payment
    from school_kernel.models.school import SchoolClass
    from school_kernel.models.student import Student

    count = connection.execute(
        select(func.count(Payment.id))
        .join(Student, Student.id == Payment.student_id)
        .join(SchoolClass, SchoolClass.id == Student.class_id)
        .where(
            SchoolClass.grade_id == target.grade_id,
            Payment.academic_year_id == target.academic_year_id,
            Payment.term_id == target.term_id,
        )
    ).scalar()
    return bool(count)


def _check_fee_structure_immutability(mapper, connection, target):
    changed = [f for f in _changed_fields(target) if f in _FEE_MONEY_FIELDS]
    if changed and _fee_structure_is_referenced(connection, target):
        _block(
            "FeeStructure", target, "UPDATE",
            "Fee amounts cannot change once payments have been recorded against them",
            fields=changed,
        )


def _check_fee_structure_delete(mapper, connection, target):
    if _fee_structure_is_referenced(connection, target):
        _block(
            "FeeStructure", target, "DELETE",
            "Fee structures referenced by payments cannot be deleted",
        )


def _listeners():
    from school_kernel.models.fees import FeeStructure, Payment, Receipt
    from school_kernel.models.promotion import Alumni, PromotionLog

    return [
        (Payment, "before_update", _check_payment_immutability),
        (Payment, "before_delete", _check_payment_delete),
        (Receipt, "before_update", _check_receipt_immutability),
        (Receipt, "before_delete", _check_receipt_delete),
        (PromotionLog, "before_update", _check_promotion_log_immutability),
        (PromotionLog, "before_delete", _check_promotion_log_delete),
        (Alumni, "before_update", _check_alumni_immutability),
        (Alumni, "before_delete", _check_alumni_delete),
        (FeeStructure, "before_update", _check_fee_structure_immutability),
        (FeeStructure, "before_delete", _check_fee_structure_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability event listeners.  Safe to call repeatedly.

    Call after the models are importable and before any writes.
    """
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the listeners.

    WARNING: tests only, to set up states production code must never reach.
    """
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
