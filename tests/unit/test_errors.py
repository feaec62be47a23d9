"""Tests for cl_common.errors and cl_common.response."""

from src.cl_common.errors import (
    AmountMismatchError,
    AppError,
    CycleBusyError,
    CycleNotFoundError,
    CycleStateConflictError,
    InvariantViolationError,
    MalformedEventError,
    NoSuccessorCycleError,
    TransferAlreadyMatchedError,
)
from src.cl_common.response import ApiResponse, error_response, success_response


class TestAppError:
    def test_base_error(self) -> None:
        err = AppError(code=9002, message="Internal error")
        assert err.code == 9002
        assert err.message == "Internal error"
        assert err.http_status == 500

    def test_is_exception(self) -> None:
        assert isinstance(AppError(code=1001, message="test"), Exception)


class TestSpecificErrors:
    def test_cycle_not_found(self) -> None:
        err = CycleNotFoundError("cyc_1")
        assert err.code == 1001
        assert err.http_status == 404
        assert "cyc_1" in err.message

    def test_state_conflict_carries_states(self) -> None:
        err = CycleStateConflictError("cyc_1", "PLANNED", "OPEN", "close")
        assert err.code == 1002
        assert err.http_status == 409
        assert err.current == "PLANNED"
        assert err.required == "OPEN"
        assert "Cannot close" in err.message

    def test_busy_is_retryable_conflict(self) -> None:
        err = CycleBusyError("cyc_1")
        assert err.code == 1003
        assert err.http_status == 409
        assert "retry" in err.message

    def test_no_successor(self) -> None:
        assert NoSuccessorCycleError("cyc_1").code == 1004

    def test_invariant_names_rule(self) -> None:
        err = InvariantViolationError("line_units", "sold > bought")
        assert err.invariant == "line_units"
        assert err.http_status == 422
        assert "line_units" in err.message

    def test_amount_mismatch(self) -> None:
        err = AmountMismatchError("5000000.00", "4999999.99")
        assert err.code == 3003
        assert "5000000.00" in err.message

    def test_transfer_already_matched(self) -> None:
        err = TransferAlreadyMatchedError("J1", "part_1")
        assert err.code == 3005
        assert "part_1" in err.message

    def test_malformed_event(self) -> None:
        err = MalformedEventError("quantity is missing")
        assert err.code == 4001
        assert err.http_status == 422


class TestApiResponse:
    def test_success_response(self) -> None:
        resp = success_response({"key": "value"})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"key": "value"}
        assert resp.request_id.startswith("req_")

    def test_error_response(self) -> None:
        resp = error_response(1001, "Cycle not found")
        assert resp.code == 1001
        assert resp.data is None

    def test_serializable(self) -> None:
        data = ApiResponse(code=0, message="ok", data=None).model_dump()
        assert "timestamp" in data
        assert "request_id" in data
