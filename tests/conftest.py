from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.application.inventory_service import FareClassDefinition
from src.bootstrap import build_services
from src.infrastructure.config import Settings
from src.main import create_app


class FrozenClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_url": f"sqlite+pysqlite:///{tmp_path / 'inventory.db'}",
        "db_connect_max_retries": 1,
        "db_connect_retry_delay": 0.0,
        "sweeper_enabled": False,
        "ticket_signing_secret": "test-secret",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def capacity_strategy():
    return "auto"


@pytest.fixture
def settings(tmp_path, capacity_strategy):
    return make_settings(tmp_path, capacity_strategy=capacity_strategy)


@pytest.fixture
def services(settings, clock):
    services = build_services(settings, clock=clock)
    services.create_schema()
    yield services
    services.shutdown()


@pytest.fixture
def flight(services):
    departure = datetime(2026, 4, 10, 6, 30, tzinfo=timezone.utc)
    return services.inventory.create_flight(
        flight_number="SI101",
        origin="DEL",
        destination="BOM",
        departure_time=departure,
        arrival_time=departure + timedelta(hours=2),
        fare_classes=[
            FareClassDefinition(name="economy", price=4500, total_seats=2),
            FareClassDefinition(name="business", price=12000, total_seats=4),
        ],
    )


@pytest.fixture
def client(settings, clock):
    app = create_app(settings, clock=clock)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def service_factory(tmp_path, clock):
    """Build extra service graphs on the same database file."""
    built = []

    def _build(ticket_issuer=None, **overrides):
        graph = build_services(
            make_settings(tmp_path, **overrides),
            clock=clock,
            ticket_issuer=ticket_issuer,
        )
        graph.create_schema()
        built.append(graph)
        return graph

    yield _build
    for graph in built:
        graph.shutdown()
