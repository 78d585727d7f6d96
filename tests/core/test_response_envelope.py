"""Tests for the response-v2 envelope helpers."""

from dataclasses import asdict

from context_engine.core.errors import ContextEngineError, ModelNotFoundError
from context_engine.core.responses import (
    ErrorCode,
    ErrorType,
    ToolResponse,
    engine_error_response,
    error_response,
    success_response,
    validation_error,
)
from tests.factories import RESPONSE_CONTRACT_VERSION


class TestSuccessResponse:
    def test_minimal_envelope(self):
        response = success_response({"tokens": 6})

        assert response.success is True
        assert response.data == {"tokens": 6}
        assert response.error is None
        assert response.meta == {"version": RESPONSE_CONTRACT_VERSION}

    def test_fields_merge_into_data(self):
        response = success_response({"a": 1}, b=2)
        assert response.data == {"a": 1, "b": 2}

    def test_meta_extras(self):
        response = success_response(
            {},
            warnings=["2 context items did not fit the budget"],
            telemetry={"duration_ms": 3.5},
            request_id="cli_abc",
            meta={"model": "test/flat"},
        )
        assert response.meta == {
            "version": RESPONSE_CONTRACT_VERSION,
            "request_id": "cli_abc",
            "warnings": ["2 context items did not fit the budget"],
            "telemetry": {"duration_ms": 3.5},
            "model": "test/flat",
        }

    def test_empty_warnings_omitted(self):
        assert "warnings" not in success_response({}, warnings=[]).meta


class TestErrorResponse:
    def test_defaults_to_internal(self):
        response = error_response("boom")

        assert response.success is False
        assert response.error == "boom"
        assert response.data == {"error_code": "INTERNAL_ERROR", "error_type": "internal"}

    def test_enum_and_string_codes(self):
        by_enum = error_response(
            "bad", error_code=ErrorCode.INVALID_FORMAT, error_type=ErrorType.VALIDATION
        )
        by_string = error_response("bad", error_code="INVALID_FORMAT", error_type="validation")
        assert by_enum.data == by_string.data

    def test_remediation_and_details(self):
        response = error_response(
            "bad", remediation="Fix it", details={"index": 2}, data={"extra": True}
        )
        assert response.data["remediation"] == "Fix it"
        assert response.data["details"] == {"index": 2}
        assert response.data["extra"] is True

    def test_validation_error_records_field(self):
        response = validation_error("Missing items", field="items")

        assert response.data["error_code"] == "VALIDATION_ERROR"
        assert response.data["error_type"] == "validation"
        assert response.data["details"] == {"field": "items"}


class TestEngineErrorResponse:
    def test_model_not_found(self):
        response = engine_error_response(
            ModelNotFoundError("nope", ["test/flat"]), request_id="cli_1"
        )

        assert response.error == "Model not registered: nope"
        assert response.data["error_code"] == "MODEL_NOT_FOUND"
        assert response.data["error_type"] == "not_found"
        assert response.data["model_id"] == "nope"
        assert response.data["available"] == ["test/flat"]
        assert "register_model" in response.data["remediation"]
        assert response.meta["request_id"] == "cli_1"

    def test_other_engine_errors_are_internal(self):
        response = engine_error_response(ContextEngineError("odd", remediation="retry"))
        assert response.data["error_code"] == "INTERNAL_ERROR"
        assert response.data["remediation"] == "retry"

    def test_envelope_serializes_to_plain_dict(self):
        data = asdict(ToolResponse(success=True))
        assert data == {
            "success": True,
            "data": {},
            "error": None,
            "meta": {"version": RESPONSE_CONTRACT_VERSION},
        }
