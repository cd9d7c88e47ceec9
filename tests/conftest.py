"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import pytest

from app.events.dispatcher import ChangeEventDispatcher, TableRouter
from app.events.hub import BroadcastHub
from app.models.events import (
    AuthenticatorMetricEvent,
    ChangeRecord,
    OnlineUserEvent,
    Operation,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now() -> datetime:
    """A fixed, timezone-aware 'now' for clock injection."""
    return FIXED_NOW


@pytest.fixture
def hub() -> BroadcastHub:
    """Create a small BroadcastHub for testing."""
    hub = BroadcastHub(queue_size=8, overflow_capacity=4)
    yield hub
    hub.close()


@pytest.fixture
def dispatcher(hub: BroadcastHub, fixed_now: datetime) -> ChangeEventDispatcher:
    """Create a dispatcher over the test hub with a fixed clock."""
    return ChangeEventDispatcher(hub, router=TableRouter(), clock=lambda: fixed_now)


@pytest.fixture
def metric_row():
    """Factory for user_metrics row images."""

    def make(
        id: int = 1,
        authenticator: str = "password",
        sign_in: int = 1,
        sign_off: int = 0,
    ) -> Dict[str, Any]:
        return {
            "id": id,
            "authenticator": authenticator,
            "sign_in_user_count": sign_in,
            "sign_off_user_count": sign_off,
        }

    return make


@pytest.fixture
def session_row():
    """Factory for user_online row images."""

    def make(
        id: int = 1,
        user_uuid: str = "user-1",
        jti: str = "jti-1",
        online_start: str = "2024-05-01T10:00:00Z",
        token_expiration: str = "2024-05-01T13:00:00Z",
        renewal_count: int = 0,
    ) -> Dict[str, Any]:
        return {
            "id": id,
            "user_uuid": user_uuid,
            "jti": jti,
            "online_start_datetime": online_start,
            "token_expiration_datetime": token_expiration,
            "renewal_count": renewal_count,
        }

    return make


@pytest.fixture
def change_record():
    """Factory for change records."""

    def make(
        table: str = "user_metrics",
        operation: Operation = Operation.CREATE,
        after: Optional[Dict[str, Any]] = None,
        before: Optional[Dict[str, Any]] = None,
        topic: str = "dbserver1.public.user_metrics",
    ) -> ChangeRecord:
        return ChangeRecord(
            table=table, operation=operation, before=before, after=after, topic=topic
        )

    return make


@pytest.fixture
def metric_event(fixed_now: datetime):
    """Factory for AuthenticatorMetricEvents."""
    counter = {"next_id": 0}

    def make(
        sign_in: int = 1,
        sign_off: int = 0,
        authenticator: str = "password",
    ) -> AuthenticatorMetricEvent:
        counter["next_id"] += 1
        return AuthenticatorMetricEvent(
            id=counter["next_id"],
            authenticator=authenticator,
            sign_in_user_count=sign_in,
            sign_off_user_count=sign_off,
            operation="create",
            source_of_record="dbserver1.public.user_metrics",
            observed_at=fixed_now,
        )

    return make


@pytest.fixture
def online_event(fixed_now: datetime):
    """Factory for OnlineUserEvents."""

    def make(
        user_uuid: str = "user-1",
        jti: str = "jti-1",
        online_start: Optional[datetime] = None,
        token_expiration: Optional[datetime] = None,
        operation: str = "create",
        id: int = 1,
    ) -> OnlineUserEvent:
        return OnlineUserEvent(
            id=id,
            user_uuid=user_uuid,
            jti=jti,
            online_start=online_start or datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
            token_expiration=token_expiration
            or datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc),
            renewal_count=0,
            operation=operation,
            source_of_record="dbserver1.public.user_online",
            observed_at=fixed_now,
        )

    return make
