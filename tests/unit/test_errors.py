"""Tests for the error taxonomy."""

import pytest

from wideevent.core.errors import (
    AuthError,
    DependencyError,
    InvalidRequestError,
    PersistenceError,
    ProjectBindingError,
    QuotaExceeded,
    StoreError,
    ValidationError,
    WideEventError,
)


class TestErrorStatuses:
    """Each error maps to one HTTP status."""

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (AuthError("x"), 401),
            (ProjectBindingError("x"), 400),
            (InvalidRequestError("x"), 400),
            (PersistenceError("x"), 500),
            (StoreError("x"), 500),
            (DependencyError("x"), 502),
            (ValidationError("x"), 400),
        ],
    )
    def test_status_and_body(self, error: WideEventError, status: int) -> None:
        assert error.status_code == status
        assert error.to_body() == {"error": "x"}

    @pytest.mark.core
    def test_quota_body_carries_counts(self) -> None:
        error = QuotaExceeded(current_count=10_000, limit=10_000)

        assert error.status_code == 429
        assert error.to_body() == {
            "error": "Monthly event limit reached",
            "limitReached": True,
            "currentCount": 10_000,
            "limit": 10_000,
        }

    @pytest.mark.core
    def test_validation_error_is_value_error(self) -> None:
        assert isinstance(ValidationError("bad"), ValueError)
        assert isinstance(ProjectBindingError("x"), AuthError)
