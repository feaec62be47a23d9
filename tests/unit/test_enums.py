"""Tests for cl_common.enums — values must match DB CHECK constraints."""

from src.cl_common.enums import (
    VALIDATED_PARTICIPATION_STATUSES,
    AllocationStatus,
    CycleStatus,
    FillSide,
    LedgerEntryType,
    LedgerSource,
    MatchStatus,
    ParticipationStatus,
    RolloverType,
)


class TestAllEnumsAreStr:
    def test_cycle_status_is_str(self) -> None:
        assert isinstance(CycleStatus.OPEN, str)
        assert CycleStatus.OPEN == "OPEN"

    def test_ledger_entry_type_is_lowercase(self) -> None:
        assert LedgerEntryType.MATCH_ATTEMPT == "match_attempt"


class TestValues:
    def test_cycle_status(self) -> None:
        assert {s.value for s in CycleStatus} == {"PLANNED", "OPEN", "CLOSED"}

    def test_fill_side(self) -> None:
        assert {s.value for s in FillSide} == {"BUY", "SELL"}

    def test_participation_status(self) -> None:
        assert {s.value for s in ParticipationStatus} == {
            "AWAITING_INVESTMENT",
            "OPTED_IN",
            "OPTED_OUT",
            "AWAITING_PAYOUT",
            "COMPLETED",
            "REFUNDED",
        }

    def test_rollover_type(self) -> None:
        assert {r.value for r in RolloverType} == {"FULL_PAYOUT", "INITIAL_ONLY", "CUSTOM_AMOUNT"}

    def test_ledger_entry_type(self) -> None:
        assert {e.value for e in LedgerEntryType} == {
            "deposit",
            "execution",
            "fee",
            "payout",
            "rollover",
            "refund",
            "match_attempt",
            "adjustment",
        }

    def test_ledger_source(self) -> None:
        assert {s.value for s in LedgerSource} == {
            "wallet_transactions",
            "wallet_journal",
            "operator",
            "system",
        }

    def test_match_status(self) -> None:
        assert {s.value for s in MatchStatus} == {"linked", "unlinked", "matched", "rejected"}

    def test_allocation_status(self) -> None:
        assert "MALFORMED" in {s.value for s in AllocationStatus}


class TestValidatedStatuses:
    def test_excludes_unvalidated_states(self) -> None:
        assert ParticipationStatus.AWAITING_INVESTMENT.value not in VALIDATED_PARTICIPATION_STATUSES
        assert ParticipationStatus.OPTED_OUT.value not in VALIDATED_PARTICIPATION_STATUSES
        assert ParticipationStatus.REFUNDED.value not in VALIDATED_PARTICIPATION_STATUSES
