"""
BalanceService -- student fee balances and payment recording.

Contract:
    - Balances are derived on read from fee structures and payments; no
      balance is ever stored.
    - ``record_payment`` writes the payment, its receipt and any
      carry-forward allocations as one unit inside a SAVEPOINT.  Either all
      rows exist afterwards or none do.
    - Flush only.  The caller owns commit/rollback.

Term accounting:
    The money applied to a term is the payments recorded in it (including
    carry-forward allocations into it) less the excess carried out of it.
    So an overpayment is counted once: in the term that receives it.  The
    chronological ledger (``get_student_ledger``) shows real money only;
    an overpayment there appears as a credit running balance until the next
    charge absorbs it.

Join point:
    Nothing charged before the student joined is owed.  With a known join
    year and term the cut-off is by term order; otherwise by date against
    ``Student.joined_on``.

Failure modes:
    - StudentNotFoundError, AcademicYearNotFoundError, TermNotFoundError,
      FeeStructureNotFoundError on reads.
    - ValidationError from RecordPaymentCommand at the boundary.
    - FeeStructureNotConfiguredError when paying a term with no fee.
    - DuplicatePaymentReferenceError on a reused reference number.
    - PaymentRecordingError when the unit cannot be written; nothing from
      the unit persists.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from school_config import LedgerSettings
from school_engines import (
    CarryForwardAllocator,
    CarryForwardPlan,
    JoinPoint,
    Ledger,
    LedgerBuilder,
    LedgerCharge,
    LedgerPayment,
    OutstandingTerm,
    period_key,
)
from school_engines.ledger import as_utc_datetime
from school_kernel.domain.clock import Clock, SystemClock
from school_kernel.domain.commands import CARRY_FORWARD_METHOD, RecordPaymentCommand
from school_kernel.domain.dtos import (
    AcademicYearInfo,
    CarryForwardAllocation,
    PaymentRecord,
    PaymentResult,
    SchoolBalanceSummary,
    SchoolBalances,
    StudentBalance,
    StudentBalanceRow,
    TermInfo,
)
from school_kernel.domain.values import ZERO, TermName, clamp_zero
from school_kernel.exceptions import (
    AcademicYearNotFoundError,
    DuplicatePaymentReferenceError,
    FeeStructureNotConfiguredError,
    FeeStructureNotFoundError,
    NoCurrentAcademicYearError,
    PaymentRecordingError,
    SchoolKernelError,
    StudentNotFoundError,
    TermNotFoundError,
    ValidationError,
)
from school_kernel.logging_config import LogContext, get_logger
from school_kernel.models.fees import Payment, Receipt
from school_kernel.selectors.academic_selector import AcademicSelector
from school_kernel.selectors.ledger_selector import (
    FeeChargeRow,
    LedgerSelector,
    StudentContext,
)
from school_kernel.services.base import BaseService
from school_kernel.services.sequence_service import SequenceService

logger = get_logger("services.balance")


class BalanceService(BaseService):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._settings = settings or LedgerSettings.with_defaults()
        self._sequence = sequence_service or SequenceService(session)
        self._academic = AcademicSelector(session)
        self._ledger_rows = LedgerSelector(session)
        self._ledger_builder = LedgerBuilder()
        self._allocator = CarryForwardAllocator()

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def _student(self, student_id: UUID) -> StudentContext:
        ctx = self._ledger_rows.student_context(student_id)
        if ctx is None:
            raise StudentNotFoundError(str(student_id))
        return ctx

    def _year(self, school_id: UUID, academic_year: str) -> AcademicYearInfo:
        year = self._academic.get_year(school_id, academic_year)
        if year is None:
            raise AcademicYearNotFoundError(str(school_id), academic_year)
        return year

    def _term(self, year: AcademicYearInfo, term: str | TermName) -> TermInfo:
        term_name = TermName.parse(term).value
        info = self._academic.get_term(year.id, term_name)
        if info is None:
            raise TermNotFoundError(year.name, term_name)
        return info

    @staticmethod
    def _join_point(ctx: StudentContext) -> JoinPoint | None:
        if ctx.join_year_name and ctx.join_term_name:
            return JoinPoint(ctx.join_year_name, ctx.join_term_name)
        return None

    def _owed(self, ctx: StudentContext, row: FeeChargeRow) -> bool:
        """Whether a fee falls on or after the student's join point."""
        join = self._join_point(ctx)
        if join is not None:
            return row.period_key >= join.key
        if ctx.joined_on is not None:
            return as_utc_datetime(row.charged_at).date() >= ctx.joined_on
        return True

    def _term_fee(
        self, ctx: StudentContext, year: AcademicYearInfo, term: TermInfo
    ) -> FeeChargeRow | None:
        if ctx.grade_id is None:
            return None
        rows = self._ledger_rows.fee_charges(ctx.grade_id, year.id, term.id)
        return rows[0] if rows else None

    def _required(self, ctx: StudentContext, row: FeeChargeRow | None) -> Decimal:
        if row is None or not self._owed(ctx, row):
            return ZERO
        return row.total_amount

    def _term_outstanding(self, ctx: StudentContext, row: FeeChargeRow) -> Decimal:
        paid = self._ledger_rows.net_paid(ctx.student_id, row.academic_year_id, row.term_id)
        return clamp_zero(self._required(ctx, row) - paid)

    def _year_outstanding(self, ctx: StudentContext, year_id: UUID) -> Decimal:
        if ctx.grade_id is None:
            return ZERO
        rows = self._ledger_rows.fee_charges(ctx.grade_id, academic_year_id=year_id)
        return sum((self._term_outstanding(ctx, row) for row in rows), ZERO)

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    def calculate_student_balance(
        self,
        student_id: UUID,
        academic_year: str,
        term: str | TermName,
    ) -> StudentBalance:
        """
        Charges vs. payments for one student in one term.

        Raises:
            StudentNotFoundError: unknown student.
            AcademicYearNotFoundError / TermNotFoundError: unknown period.
            FeeStructureNotFoundError: the student's grade has no fee for it.
        """
        ctx = self._student(student_id)
        year = self._year(ctx.school_id, academic_year)
        term_info = self._term(year, term)

        fee = self._term_fee(ctx, year, term_info)
        if fee is None:
            raise FeeStructureNotFoundError(
                str(ctx.grade_id), year.name, term_info.name
            )

        history = self._ledger_rows.payments(ctx.student_id, year.id, term_info.id)
        total_required = self._required(ctx, fee)
        total_paid = self._ledger_rows.net_paid(ctx.student_id, year.id, term_info.id)

        return StudentBalance(
            student_id=ctx.student_id,
            academic_year=year.name,
            term=term_info.name,
            total_required=total_required,
            total_paid=total_paid,
            balance=clamp_zero(total_required - total_paid),
            fee_breakdown=dict(fee.breakdown) if total_required > ZERO else {},
            payment_history=tuple(history),
            last_updated=history[0].payment_date if history else None,
        )

    def get_school_student_balances(
        self,
        school_id: UUID,
        academic_year: str,
        term: str | TermName,
        grade_id: UUID | None = None,
    ) -> SchoolBalances:
        """
        Term balances for every active student of a school.

        Students whose grade has no fee structure for the term are reported
        with zero required and listed in ``summary.unconfigured_student_ids``.
        """
        self._require_school(school_id)
        year = self._year(school_id, academic_year)
        term_info = self._term(year, term)

        rows: list[StudentBalanceRow] = []
        unconfigured: list[UUID] = []
        for ctx in self._ledger_rows.students_for_school(school_id, grade_id=grade_id):
            fee = self._term_fee(ctx, year, term_info)
            if fee is None:
                unconfigured.append(ctx.student_id)
            history = self._ledger_rows.payments(ctx.student_id, year.id, term_info.id)
            required = self._required(ctx, fee)
            paid = self._ledger_rows.net_paid(ctx.student_id, year.id, term_info.id)
            rows.append(
                StudentBalanceRow(
                    student_id=ctx.student_id,
                    name=ctx.name,
                    admission_number=ctx.admission_number,
                    grade_name=ctx.grade_name or "",
                    class_name=ctx.class_name or "",
                    total_required=required,
                    total_paid=paid,
                    balance=clamp_zero(required - paid),
                    fee_configured=fee is not None,
                    last_payment=history[0] if history else None,
                )
            )

        summary = SchoolBalanceSummary(
            total_students=len(rows),
            total_fees_required=sum((r.total_required for r in rows), ZERO),
            total_fees_collected=sum((r.total_paid for r in rows), ZERO),
            total_outstanding=sum((r.balance for r in rows), ZERO),
            students_with_outstanding=sum(1 for r in rows if r.balance > ZERO),
            unconfigured_student_ids=tuple(unconfigured),
        )
        if unconfigured:
            logger.warning(
                "fee_structure_missing_for_students",
                extra={
                    "school_id": str(school_id),
                    "academic_year": year.name,
                    "term": term_info.name,
                    "student_count": len(unconfigured),
                },
            )
        return SchoolBalances(
            school_id=school_id,
            academic_year=year.name,
            term=term_info.name,
            students=tuple(rows),
            summary=summary,
        )

    def get_year_outstanding(
        self,
        student_id: UUID,
        academic_year_id: UUID | None = None,
    ) -> Decimal:
        """
        Outstanding fees across the terms of one academic year (clamped at 0).

        Defaults to the school's current academic year.
        """
        ctx = self._student(student_id)
        if academic_year_id is None:
            current = self._academic.current_year(ctx.school_id)
            if current is None:
                raise NoCurrentAcademicYearError(str(ctx.school_id))
            academic_year_id = current.id
        return self._year_outstanding(ctx, academic_year_id)

    def get_student_ledger(
        self,
        student_id: UUID,
        academic_year: str | None = None,
    ) -> Ledger:
        """
        Chronological fee statement from the join point onwards.

        The full statement shows each payment once, at its received amount.
        A statement for one ``academic_year`` shows money where it was
        applied instead: carry-forward allocations into that year appear as
        credits, and a payment made in it is reduced by what it carried out,
        so the closing balance matches the term balances of that year.
        """
        ctx = self._student(student_id)
        charges: list[LedgerCharge] = []
        if ctx.grade_id is not None:
            charges = [
                LedgerCharge(
                    ref=str(row.fee_structure_id),
                    academic_year_name=row.academic_year_name,
                    term_name=row.term_name,
                    amount=row.total_amount,
                    charged_at=row.charged_at,
                    academic_year_id=row.academic_year_id,
                )
                for row in self._ledger_rows.fee_charges(ctx.grade_id)
            ]
        records = self._ledger_rows.payments(ctx.student_id)
        if academic_year is None:
            applied = [(p, p.amount) for p in records if not p.is_carry_forward]
        else:
            carried_out: dict[UUID, Decimal] = {}
            for p in records:
                if p.is_carry_forward and p.source_payment_id is not None:
                    carried_out[p.source_payment_id] = (
                        carried_out.get(p.source_payment_id, ZERO) + p.amount
                    )
            applied = [
                (p, p.amount - carried_out.get(p.payment_id, ZERO))
                for p in records
            ]
        payments = [
            LedgerPayment(
                ref=p.receipt_number,
                academic_year_name=p.academic_year,
                term_name=p.term,
                amount=amount,
                paid_at=p.payment_date,
                description=p.description,
            )
            for p, amount in applied
            if p.is_carry_forward or amount > ZERO
        ]
        return self._ledger_builder.build(
            charges=charges,
            payments=payments,
            join=self._join_point(ctx),
            join_date=ctx.joined_on,
            academic_year=academic_year,
        )

    def get_payment_history(
        self,
        student_id: UUID,
        academic_year: str | None = None,
        term: str | TermName | None = None,
    ) -> list[PaymentRecord]:
        """Payments (with receipt numbers), most recent first."""
        ctx = self._student(student_id)
        year_id = term_id = None
        if academic_year is not None:
            year = self._year(ctx.school_id, academic_year)
            year_id = year.id
            if term is not None:
                term_id = self._term(year, term).id
        elif term is not None:
            raise ValidationError("academic_year", "is required when filtering by term")
        return self._ledger_rows.payments(ctx.student_id, year_id, term_id)

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    def _plan_carry_forward(
        self, ctx: StudentContext, fee: FeeChargeRow, excess: Decimal
    ) -> CarryForwardPlan:
        candidates = [
            OutstandingTerm(
                academic_year_name=row.academic_year_name,
                term_name=row.term_name,
                outstanding=self._term_outstanding(ctx, row),
                academic_year_id=row.academic_year_id,
                term_id=row.term_id,
            )
            for row in self._ledger_rows.fee_charges(ctx.grade_id)
            if self._owed(ctx, row)
        ]
        return self._allocator.allocate(
            excess=excess,
            candidates=candidates,
            after=period_key(fee.academic_year_name, fee.term_name),
            policy=self._settings.carry_forward_policy,
        )

    def record_payment(self, command: RecordPaymentCommand) -> PaymentResult:
        """
        Record a payment, issue its receipt and carry any excess forward.

        Raises:
            StudentNotFoundError, AcademicYearNotFoundError, TermNotFoundError
            FeeStructureNotConfiguredError: no fee for the student's term.
            DuplicatePaymentReferenceError: reference number already used.
            PaymentRecordingError: the unit could not be written.
        """
        ctx = self._student(command.student_id)
        year = self._year(ctx.school_id, command.academic_year)
        term_info = self._term(year, command.term)

        fee = self._term_fee(ctx, year, term_info)
        if fee is None:
            raise FeeStructureNotConfiguredError(
                str(ctx.student_id), year.name, term_info.name
            )

        reference = command.reference_number or (
            f"{self._settings.reference_prefix}-{uuid4().hex}"
        )
        existing = self._ledger_rows.payment_by_reference(reference)
        if existing is not None:
            raise DuplicatePaymentReferenceError(reference, str(existing.payment_id))

        payment_date = command.payment_date or self._clock.now()
        term_before = self._term_outstanding(ctx, fee)
        year_before = self._year_outstanding(ctx, year.id)
        excess = clamp_zero(command.amount - term_before)

        with LogContext.bind(school_id=str(ctx.school_id), student_id=str(ctx.student_id)):
            savepoint = self.session.begin_nested()
            try:
                receipt_number = self._sequence.next_receipt_number(
                    ctx.school_code, prefix=self._settings.receipt_prefix
                )
                payment = Payment(
                    student_id=ctx.student_id,
                    academic_year_id=year.id,
                    term_id=term_info.id,
                    amount=command.amount,
                    payment_method=command.payment_method,
                    reference_number=reference,
                    receipt_number=receipt_number,
                    description=command.description or f"PAYMENT - {term_info.name} {year.name}",
                    payment_date=payment_date,
                    received_by=command.received_by,
                    created_by=command.received_by,
                )
                self._persist(payment)

                plan = self._plan_carry_forward(ctx, fee, excess)
                allocations: list[CarryForwardAllocation] = []
                for index, line in enumerate(plan.lines, start=1):
                    carried = Payment(
                        student_id=ctx.student_id,
                        academic_year_id=line.target.academic_year_id,
                        term_id=line.target.term_id,
                        amount=line.amount,
                        payment_method=CARRY_FORWARD_METHOD,
                        reference_number=f"{reference}-CF{index}",
                        receipt_number=f"{receipt_number}-CF{index}",
                        description=(
                            f"CARRY FORWARD from {term_info.name} {year.name}"
                        ),
                        payment_date=payment_date,
                        received_by=command.received_by,
                        is_carry_forward=True,
                        source_payment_id=payment.id,
                        created_by=command.received_by,
                    )
                    self._persist(carried)
                    allocations.append(
                        CarryForwardAllocation(
                            academic_year=line.target.academic_year_name,
                            term=line.target.term_name,
                            amount=line.amount,
                            payment_id=carried.id,
                        )
                    )

                receipt = Receipt(
                    payment_id=payment.id,
                    student_id=ctx.student_id,
                    academic_year_id=year.id,
                    term_id=term_info.id,
                    receipt_number=receipt_number,
                    amount=command.amount,
                    payment_date=payment_date,
                    payment_method=command.payment_method,
                    reference_number=reference,
                    term_outstanding_before=term_before,
                    term_outstanding_after=clamp_zero(term_before - command.amount),
                    year_outstanding_before=year_before,
                    year_outstanding_after=self._year_outstanding(ctx, year.id),
                    carried_forward=plan.total_applied,
                    unapplied_credit=plan.unapplied,
                    created_by=command.received_by,
                )
                self._persist(receipt)
                savepoint.commit()
            except SchoolKernelError:
                savepoint.rollback()
                raise
            except IntegrityError as exc:
                savepoint.rollback()
                if "reference" in str(exc.orig).lower():
                    raise DuplicatePaymentReferenceError(reference) from exc
                raise self._recording_error(command, year, term_info, reference, exc) from exc
            except SQLAlchemyError as exc:
                savepoint.rollback()
                raise self._recording_error(command, year, term_info, reference, exc) from exc

            logger.info(
                "payment_recorded",
                extra={
                    "payment_id": str(payment.id),
                    "receipt_number": receipt_number,
                    "amount": str(command.amount),
                    "academic_year": year.name,
                    "term": term_info.name,
                    "term_outstanding_before": str(term_before),
                    "carried_forward": str(plan.total_applied),
                    "unapplied_credit": str(plan.unapplied),
                },
            )
            if plan.unapplied > ZERO:
                logger.warning(
                    "payment_excess_unapplied",
                    extra={
                        "payment_id": str(payment.id),
                        "unapplied_credit": str(plan.unapplied),
                    },
                )

        return PaymentResult(
            payment=payment.to_dto(year.name, term_info.name),
            receipt=receipt.to_dto(),
            updated_balance=self.calculate_student_balance(
                ctx.student_id, year.name, term_info.name
            ),
            carry_forward=tuple(allocations),
        )

    def _recording_error(
        self,
        command: RecordPaymentCommand,
        year: AcademicYearInfo,
        term: TermInfo,
        reference: str,
        exc: Exception,
    ) -> PaymentRecordingError:
        logger.error(
            "payment_recording_failed",
            extra={
                "amount": str(command.amount),
                "academic_year": year.name,
                "term": term.name,
                "reference_number": reference,
                "error": str(exc),
            },
        )
        return PaymentRecordingError(
            student_id=str(command.student_id),
            amount=command.amount,
            academic_year=year.name,
            term=term.name,
            reference_number=reference,
            reason=str(exc),
        )
