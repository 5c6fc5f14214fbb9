"""
Tests for BalanceService.

Covers:
- Term balance arithmetic and zero clamping
- Payment recording with receipts and carry-forward of overpayments
- Join-point rules (nothing owed before the student joined)
- School-wide balance report
- Duplicate references and all-or-nothing recording
- Ledger statement and payment history
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

import school_services.balance_service as balance_module
from school_kernel.domain.commands import RecordPaymentCommand
from school_kernel.exceptions import (
    AcademicYearNotFoundError,
    DuplicatePaymentReferenceError,
    FeeStructureNotConfiguredError,
    FeeStructureNotFoundError,
    PaymentRecordingError,
    StudentNotFoundError,
    TermNotFoundError,
    ValidationError,
)
from school_kernel.models.academic import AcademicYear
from school_kernel.models.fees import Payment, Receipt
from school_kernel.services.sequence_service import SequenceService
from school_services.balance_service import BalanceService
from tests.conftest import TEST_ACTOR, utc


@pytest.fixture
def service(session, clock, settings):
    return BalanceService(session, clock=clock, settings=settings)


@pytest.fixture
def student(world):
    return world.add_student("Amina Otieno", "Grade 6A", joined=("2025", "Term 1"))


def pay(student_id, amount, term="Term 1", year="2025", reference=None, when=None, method="cash"):
    return RecordPaymentCommand(
        student_id=student_id,
        amount=Decimal(amount),
        academic_year=year,
        term=term,
        received_by=TEST_ACTOR,
        payment_method=method,
        reference_number=reference,
        payment_date=when,
    )


class TestTermBalance:

    def test_unpaid_term_owes_full_fee(self, service, student):
        balance = service.calculate_student_balance(student.id, "2025", "Term 1")

        assert balance.total_required == Decimal("8000")
        assert balance.total_paid == Decimal("0")
        assert balance.balance == Decimal("8000")
        assert balance.fee_breakdown == {"Tuition": Decimal("8000")}
        assert balance.payment_history == ()

    def test_term_accepts_enum_style_names(self, service, student):
        balance = service.calculate_student_balance(student.id, "2025", "SECOND")

        assert balance.term == "Term 2"

    def test_no_fee_structure_raises(self, service, student):
        with pytest.raises(FeeStructureNotFoundError):
            service.calculate_student_balance(student.id, "2025", "Term 3")

    def test_unknown_student(self, service, world):
        with pytest.raises(StudentNotFoundError):
            service.calculate_student_balance(uuid4(), "2025", "Term 1")

    def test_unknown_year_and_term(self, service, student):
        with pytest.raises(AcademicYearNotFoundError):
            service.calculate_student_balance(student.id, "1999", "Term 1")
        with pytest.raises(ValidationError):
            service.calculate_student_balance(student.id, "2025", "Term 9")

    def test_term_not_defined_for_year(self, service, world, student, session):
        bare = AcademicYear(
            school_id=world.school_id,
            name="2030",
            start_date=date(2030, 1, 1),
            end_date=date(2030, 12, 31),
        )
        session.add(bare)
        session.flush()

        with pytest.raises(TermNotFoundError):
            service.calculate_student_balance(student.id, "2030", "Term 1")

    def test_terms_before_join_are_not_owed(self, service, world):
        late = world.add_student("Late Joiner", "Grade 6A", joined=("2025", "Term 2"))

        term1 = service.calculate_student_balance(late.id, "2025", "Term 1")
        term2 = service.calculate_student_balance(late.id, "2025", "Term 2")

        assert term1.total_required == Decimal("0")
        assert term1.balance == Decimal("0")
        assert term2.balance == Decimal("8000")

    def test_join_date_used_without_join_term(self, service, world):
        late = world.add_student("Dated Joiner", "Grade 6A", joined_on=date(2025, 3, 1))

        term1 = service.calculate_student_balance(late.id, "2025", "Term 1")
        term2 = service.calculate_student_balance(late.id, "2025", "Term 2")

        assert term1.total_required == Decimal("0")
        assert term2.total_required == Decimal("8000")


class TestRecordPayment:

    def test_partial_then_full_payment(self, service, student):
        """8000 fee: 5000 leaves 3000, another 3000 settles the term."""
        first = service.record_payment(pay(student.id, "5000", when=utc(2025, 1, 20)))

        assert first.updated_balance.balance == Decimal("3000")
        assert first.receipt.term_outstanding_before == Decimal("8000")
        assert first.receipt.term_outstanding_after == Decimal("3000")
        assert first.receipt.year_outstanding_before == Decimal("16000")
        assert first.receipt.year_outstanding_after == Decimal("11000")
        assert first.carry_forward == ()

        second = service.record_payment(pay(student.id, "3000", when=utc(2025, 2, 10)))

        assert second.updated_balance.balance == Decimal("0")
        assert second.updated_balance.total_paid == Decimal("8000")
        assert [p.amount for p in second.updated_balance.payment_history] == [
            Decimal("3000"),
            Decimal("5000"),
        ]

    def test_overpayment_carries_forward_to_next_term(self, service, student):
        """Settled Term 1 plus 1000 more moves 1000 to Term 2."""
        service.record_payment(pay(student.id, "8000", when=utc(2025, 1, 20)))

        result = service.record_payment(pay(student.id, "1000", when=utc(2025, 2, 1)))

        assert result.updated_balance.balance == Decimal("0")
        assert result.receipt.carried_forward == Decimal("1000")
        assert result.receipt.unapplied_credit == Decimal("0")
        assert [(a.academic_year, a.term, a.amount) for a in result.carry_forward] == [
            ("2025", "Term 2", Decimal("1000")),
        ]

        term2 = service.calculate_student_balance(student.id, "2025", "Term 2")
        assert term2.total_paid == Decimal("1000")
        assert term2.balance == Decimal("7000")

        term1 = service.calculate_student_balance(student.id, "2025", "Term 1")
        assert term1.total_paid == Decimal("8000")

    def test_carry_forward_rows_are_marked(self, service, student, session):
        result = service.record_payment(
            pay(student.id, "9000", reference="BANK-77", when=utc(2025, 1, 20))
        )

        carried = session.execute(
            select(Payment).where(Payment.is_carry_forward.is_(True))
        ).scalars().all()
        assert len(carried) == 1
        assert carried[0].reference_number == "BANK-77-CF1"
        assert carried[0].receipt_number == f"{result.receipt.receipt_number}-CF1"
        assert carried[0].payment_method == "CARRY_FORWARD"
        assert carried[0].source_payment_id == result.payment.payment_id

    def test_excess_beyond_all_terms_stays_as_credit(self, service, student, captured_logs):
        result = service.record_payment(pay(student.id, "20000", when=utc(2025, 1, 20)))

        assert result.receipt.carried_forward == Decimal("8000")
        assert result.receipt.unapplied_credit == Decimal("4000")
        assert result.updated_balance.credit == Decimal("4000")
        assert any(r["message"] == "payment_excess_unapplied" for r in captured_logs())

    def test_receipt_numbers_are_sequential_per_school(self, service, student):
        a = service.record_payment(pay(student.id, "100", when=utc(2025, 1, 20)))
        b = service.record_payment(pay(student.id, "100", when=utc(2025, 1, 21)))

        assert a.receipt.receipt_number == "RCP-greenfield-000001"
        assert b.receipt.receipt_number == "RCP-greenfield-000002"
        assert a.payment.receipt_number == a.receipt.receipt_number

    def test_generated_reference_and_default_description(self, service, student, clock):
        result = service.record_payment(pay(student.id, "250"))

        assert result.payment.reference_number.startswith("PAY-")
        assert result.payment.description == "PAYMENT - Term 1 2025"
        assert result.payment.payment_date == clock.now()

    def test_duplicate_reference_rejected(self, service, student, session):
        service.record_payment(pay(student.id, "100", reference="MPESA-1"))

        with pytest.raises(DuplicatePaymentReferenceError) as exc_info:
            service.record_payment(pay(student.id, "200", reference="MPESA-1"))

        assert exc_info.value.code == "DUPLICATE_PAYMENT_REFERENCE"
        count = session.execute(select(func.count(Payment.id))).scalar()
        assert count == 1

    def test_fee_not_configured(self, service, student):
        with pytest.raises(FeeStructureNotConfiguredError):
            service.record_payment(pay(student.id, "100", term="Term 3"))

    def test_carry_forward_method_is_reserved(self, student):
        with pytest.raises(ValidationError):
            pay(student.id, "100", method="carry_forward")

    def test_failed_write_persists_nothing(self, service, student, session, monkeypatch):
        """A receipt that cannot be written takes the payment down with it."""

        def broken_receipt(**kwargs):
            raise OperationalError("INSERT INTO receipts", {}, Exception("disk full"))

        monkeypatch.setattr(balance_module, "Receipt", broken_receipt)

        with pytest.raises(PaymentRecordingError) as exc_info:
            service.record_payment(pay(student.id, "9000", reference="REF-ATOMIC"))

        assert exc_info.value.reference_number == "REF-ATOMIC"
        assert session.execute(select(func.count(Payment.id))).scalar() == 0
        assert session.execute(select(func.count(Receipt.id))).scalar() == 0
        seq = SequenceService(session).current_value(
            SequenceService.receipt_sequence("greenfield")
        )
        assert not seq

    def test_payment_recorded_log(self, service, student, captured_logs):
        service.record_payment(pay(student.id, "500"))

        records = [r for r in captured_logs() if r["message"] == "payment_recorded"]
        assert len(records) == 1
        assert records[0]["amount"] == "500.00"
        assert records[0]["student_id"] == str(student.id)


class TestYearOutstanding:

    def test_sums_clamped_terms(self, service, student):
        service.record_payment(pay(student.id, "3000", term="Term 2"))

        assert service.get_year_outstanding(student.id) == Decimal("13000")

    def test_overpaid_term_does_not_offset(self, service, world):
        """Credit on one term is not netted against another without carry-forward."""
        w = world
        w.add_fee("Grade 6", "2025", "Term 3", "8000")
        s = w.add_student("Baraka", "Grade 6A", joined=("2025", "Term 1"))
        service.record_payment(pay(s.id, "8000", term="Term 3"))
        service.record_payment(pay(s.id, "500", term="Term 3"))

        assert service.get_year_outstanding(s.id) == Decimal("16000")


class TestSchoolBalances:

    def test_summary_and_unconfigured_students(self, service, world, captured_logs):
        paid = world.add_student("Amina", "Grade 6A", joined=("2025", "Term 1"))
        world.add_student("Brian", "Grade 6A", joined=("2025", "Term 1"))
        no_fee = world.add_student("Chebet", "Grade 5A", joined=("2025", "Term 1"))
        service.record_payment(pay(paid.id, "8000"))

        report = service.get_school_student_balances(world.school_id, "2025", "Term 1")

        assert report.summary.total_students == 3
        assert report.summary.total_fees_required == Decimal("16000")
        assert report.summary.total_fees_collected == Decimal("8000")
        assert report.summary.total_outstanding == Decimal("8000")
        assert report.summary.students_with_outstanding == 1
        assert report.summary.unconfigured_student_ids == (no_fee.id,)
        assert [r.name for r in report.students] == ["Amina", "Brian", "Chebet"]
        assert report.students[0].last_payment is not None
        assert any(
            r["message"] == "fee_structure_missing_for_students" for r in captured_logs()
        )

    def test_filter_by_grade(self, service, world):
        world.add_student("Amina", "Grade 6A")
        world.add_student("Chebet", "Grade 5A")

        report = service.get_school_student_balances(
            world.school_id, "2025", "Term 1", grade_id=world.grades["Grade 5"].id
        )

        assert [r.name for r in report.students] == ["Chebet"]


class TestLedgerAndHistory:

    def test_ledger_hides_carry_forward_allocations(self, service, student):
        service.record_payment(pay(student.id, "9000", when=utc(2025, 1, 20)))

        ledger = service.get_student_ledger(student.id)

        assert ledger.total_charges == Decimal("16000")
        assert ledger.total_payments == Decimal("9000")
        assert ledger.outstanding_balance == Decimal("7000")
        assert [t.kind.value for t in ledger.transactions] == ["charge", "payment", "charge"]

    def test_year_ledger_counts_money_carried_into_the_year(self, service, student, world):
        """A 2026 statement agrees with the 2026 term balance after a carry-forward."""
        world.add_year("2026")
        world.add_fee("Grade 6", "2026", "Term 1", "8000")
        result = service.record_payment(pay(student.id, "17000", when=utc(2025, 1, 20)))
        assert result.receipt.carried_forward == Decimal("9000")

        next_year = service.get_student_ledger(student.id, academic_year="2026")
        this_year = service.get_student_ledger(student.id, academic_year="2025")
        full = service.get_student_ledger(student.id)

        term = service.calculate_student_balance(student.id, "2026", "Term 1")
        assert term.balance == Decimal("7000")
        assert next_year.outstanding_balance == term.balance
        assert next_year.total_payments == Decimal("1000")
        assert this_year.outstanding_balance == Decimal("0")
        assert this_year.total_payments == Decimal("16000")
        assert full.outstanding_balance == Decimal("7000")
        assert not any("-CF" in t.ref for t in full.transactions)

    def test_ledger_starts_at_join_term(self, service, world):
        late = world.add_student("Late", "Grade 6A", joined=("2025", "Term 2"))

        ledger = service.get_student_ledger(late.id)

        assert ledger.total_charges == Decimal("8000")

    def test_payment_history_filters(self, service, student):
        service.record_payment(pay(student.id, "100", when=utc(2025, 1, 20)))
        service.record_payment(pay(student.id, "200", term="Term 2", when=utc(2025, 5, 20)))

        assert len(service.get_payment_history(student.id)) == 2
        term2 = service.get_payment_history(student.id, "2025", "Term 2")
        assert [p.amount for p in term2] == [Decimal("200")]
        with pytest.raises(ValidationError):
            service.get_payment_history(student.id, term="Term 2")
