"""Tests for SequenceService counters."""

from school_kernel.services.sequence_service import SequenceService


class TestSequenceService:

    def test_first_value_is_one_then_increments(self, session):
        seq = SequenceService(session)

        assert seq.current_value("receipt:hillcrest") is None
        assert [seq.next_value("receipt:hillcrest") for _ in range(3)] == [1, 2, 3]
        assert seq.current_value("receipt:hillcrest") == 3

    def test_sequences_are_independent(self, session):
        seq = SequenceService(session)
        seq.next_value(SequenceService.receipt_sequence("a"))
        seq.next_value(SequenceService.receipt_sequence("a"))

        assert seq.next_value(SequenceService.receipt_sequence("b")) == 1
        assert seq.next_value(SequenceService.PROMOTION_LOG) == 1

    def test_separate_instances_share_the_counter(self, session):
        SequenceService(session).next_value("promotion_log")

        assert SequenceService(session).next_value("promotion_log") == 2

    def test_allocation_is_logged(self, session, captured_logs):
        SequenceService(session).next_value("receipt:hillcrest")

        allocated = [r for r in captured_logs() if r["message"] == "sequence_allocated"]
        assert allocated[-1]["sequence_name"] == "receipt:hillcrest"
        assert allocated[-1]["value"] == 1

    def test_receipt_numbers_are_per_school_and_padded(self, session):
        seq = SequenceService(session)

        assert seq.next_receipt_number("hillcrest", prefix="RCP") == "RCP-hillcrest-000001"
        assert seq.next_receipt_number("hillcrest", prefix="RCP") == "RCP-hillcrest-000002"
        assert seq.next_receipt_number("riverside", prefix="RCT") == "RCT-riverside-000001"
        assert seq.current_value(SequenceService.receipt_sequence("hillcrest")) == 2
