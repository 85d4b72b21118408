from datetime import datetime, timedelta, timezone

import pytest

from coordinator import RoomCoordinator


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(clock: FakeClock) -> RoomCoordinator:
    return RoomCoordinator(max_members=10, empty_room_grace_seconds=0, clock=clock)


def by_connection(plan):
    """Group a delivery plan into {connection_id: [message, ...]}."""
    grouped = {}
    for delivery in plan:
        grouped.setdefault(delivery.connection_id, []).append(delivery.message)
    return grouped


def roster_names(roster):
    return [entry.display_name for entry in roster]
