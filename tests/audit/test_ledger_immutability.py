"""
ORM immutability listeners for money and audit rows.

Payments, receipts and alumni identity are write-once; audit metadata
(updated_by) may still change.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from school_kernel.domain.commands import RecordPaymentCommand
from school_kernel.exceptions import ImmutabilityViolationError
from school_kernel.models.fees import Payment, Receipt
from school_kernel.models.promotion import Alumni
from school_services.balance_service import BalanceService
from tests.conftest import TEST_ACTOR


@pytest.fixture
def recorded(session, world, clock, settings):
    student = world.add_student("Amina", "Grade 6A", joined=("2025", "Term 1"))
    result = BalanceService(session, clock=clock, settings=settings).record_payment(
        RecordPaymentCommand(
            student_id=student.id,
            amount=Decimal("5000"),
            academic_year="2025",
            term="Term 1",
            received_by=TEST_ACTOR,
        )
    )
    payment = session.get(Payment, result.payment.payment_id)
    receipt = session.execute(
        select(Receipt).where(Receipt.payment_id == payment.id)
    ).scalar_one()
    return payment, receipt


class TestPaymentImmutability:

    def test_amount_cannot_change(self, session, recorded):
        payment, _ = recorded
        payment.amount = Decimal("1")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Payment"

    def test_cannot_delete(self, session, recorded):
        payment, _ = recorded
        session.delete(payment)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_metadata_may_change(self, session, recorded):
        payment, _ = recorded
        payment.updated_by = "auditor"

        session.flush()

        assert payment.updated_by == "auditor"


class TestReceiptImmutability:

    def test_balances_cannot_change(self, session, recorded):
        _, receipt = recorded
        receipt.term_outstanding_after = Decimal("0")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()

        assert exc_info.value.entity_type == "Receipt"

    def test_cannot_delete(self, session, recorded):
        _, receipt = recorded
        session.delete(receipt)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAlumniImmutability:

    def test_identity_frozen_but_achievements_editable(self, session, world):
        student = world.add_student("Brian", "Grade 6A")
        alumni = Alumni(school_id=world.school_id, student_id=student.id, graduation_year="2025")
        session.add(alumni)
        session.flush()

        alumni.achievements = ["Head prefect"]
        session.flush()

        alumni.graduation_year = "2026"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
