"""Tests for the service error taxonomy and JSON error envelopes."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api_errors.config import ERROR_STATUS_MAP, ErrorCode, ErrorConfig
from src.api_errors.exceptions import (
    AppError,
    BrokerError,
    CollectionError,
    ConflictError,
    DatabaseError,
    InvalidStateError,
    MonitoringServiceError,
    NotFoundError,
    ValidationError,
)
from src.api_errors.handlers import (
    create_error_response,
    handle_app_error,
    handle_unhandled_error,
    register_exception_handlers,
)
from src.logging_config.context import SignalContext


class TestErrorCodes:
    """Status mapping."""

    def test_every_code_has_a_status(self):
        assert set(ERROR_STATUS_MAP) == set(ErrorCode)

    @pytest.mark.parametrize("code,status", [
        (ErrorCode.VALIDATION_ERROR, 400),
        (ErrorCode.NOT_FOUND, 404),
        (ErrorCode.CONFLICT_ERROR, 409),
        (ErrorCode.INVALID_STATE, 409),
        (ErrorCode.DATABASE_ERROR, 500),
        (ErrorCode.BROKER_ERROR, 502),
        (ErrorCode.SERVICE_UNAVAILABLE, 503),
    ])
    def test_status(self, code, status):
        assert ERROR_STATUS_MAP[code] == status


class TestExceptions:
    """Attributes carried by each error kind."""

    def test_validation_error_names_the_field(self):
        exc = ValidationError("page must be >= 1", field="page")
        assert exc.status_code == 400
        assert exc.field == "page"
        assert exc.details == [{"field": "page", "issue": "page must be >= 1"}]
        assert isinstance(exc, MonitoringServiceError)

    def test_not_found(self):
        exc = NotFoundError("Signal", "sig_1")
        assert exc.message == "Signal with ID sig_1 not found"
        assert exc.code == "NOT_FOUND"
        assert exc.resource_id == "sig_1"

    def test_invalid_state_records_current_state(self):
        exc = InvalidStateError("stage already completed", current_state="completed")
        assert exc.status_code == 409
        assert exc.details == [{"current_state": "completed"}]

    def test_transient_classification(self):
        assert CollectionError().transient
        assert DatabaseError().transient
        assert not ConflictError().transient
        assert not ValidationError().transient

    def test_database_error_keeps_cause(self):
        cause = RuntimeError("connection reset")
        assert DatabaseError(cause=cause).cause is cause

    def test_broker_error(self):
        exc = BrokerError("alpaca", "401 unauthorized")
        assert exc.status_code == 502
        assert str(exc) == "alpaca: 401 unauthorized"
        assert not isinstance(exc, MonitoringServiceError)


class TestResponseBuilders:
    """Envelope construction."""

    def test_envelope_shape(self):
        response = create_error_response(ErrorCode.CONFLICT_ERROR, "duplicate stage")
        body = response.to_dict()
        assert response.status_code == 409
        assert body["error"]["code"] == "CONFLICT_ERROR"
        assert body["error"]["message"] == "duplicate stage"
        assert body["error"]["timestamp"]
        assert "details" not in body["error"]
        assert "correlation_id" not in body["error"]

    def test_app_error_carries_correlation_id(self):
        with SignalContext(signal_id="sig_1", correlation_id="corr-123"):
            response = handle_app_error(NotFoundError("Alert", "alert_1"))
        assert response.correlation_id == "corr-123"
        assert response.details[0]["resource_type"] == "Alert"

    def test_correlation_id_can_be_disabled(self):
        with SignalContext(correlation_id="corr-123"):
            response = handle_app_error(ConflictError(), ErrorConfig(include_correlation_id=False))
        assert response.correlation_id is None

    def test_unhandled_error_hides_internals(self):
        response = handle_unhandled_error(KeyError("secret_column"))
        assert response.status_code == 500
        assert response.message == "An internal error occurred"

    def test_unhandled_error_details_when_allowed(self):
        response = handle_unhandled_error(ValueError("bad"), ErrorConfig(suppress_internal_details=False))
        assert response.message == "ValueError: bad"


class TestRegisteredHandlers:
    """Handlers installed on an application."""

    @pytest.fixture
    def client(self):
        app = FastAPI()
        register_exception_handlers(app)

        @app.get("/missing")
        async def missing():
            raise NotFoundError("WebhookRequest", "wh_1")

        @app.get("/invalid")
        async def invalid():
            raise ValidationError("limit must be between 1 and 1000", field="limit")

        @app.get("/generic")
        async def generic():
            raise AppError("service is draining", ErrorCode.SERVICE_UNAVAILABLE)

        return TestClient(app)

    def test_not_found_rendered(self, client):
        response = client.get("/missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_validation_rendered_with_details(self, client):
        response = client.get("/invalid")
        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["field"] == "limit"

    def test_base_error_uses_its_code(self, client):
        response = client.get("/generic")
        assert response.status_code == 503
        assert response.json()["error"]["message"] == "service is draining"
