import logging
from datetime import datetime, timedelta, timezone

from src.application.inventory_service import FareClassDefinition
from src.bootstrap import build_services
from src.domain.exceptions import InvalidReservationError
from src.infrastructure.config import Settings

logger = logging.getLogger("seed_demo_data")


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


FLIGHT_DEFS = [
    {
        "flight_number": "SI101",
        "origin": "DEL",
        "destination": "BOM",
        "departure_time": _dt(days_from_now=3, hour=6, minute=30),
        "duration": timedelta(hours=2, minutes=10),
        "fare_classes": [
            FareClassDefinition(name="economy", price=5400, total_seats=150),
            FareClassDefinition(name="business", price=18900, total_seats=24),
        ],
    },
    {
        "flight_number": "SI245",
        "origin": "BLR",
        "destination": "CCU",
        "departure_time": _dt(days_from_now=5, hour=17, minute=45),
        "duration": timedelta(hours=2, minutes=35),
        "fare_classes": [
            FareClassDefinition(name="economy", price=6100, total_seats=120),
            FareClassDefinition(name="premium_economy", price=9800, total_seats=36),
            FareClassDefinition(name="business", price=21500, total_seats=12),
        ],
    },
]


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    services = build_services(Settings.from_env())
    services.create_schema()

    try:
        for item in FLIGHT_DEFS:
            try:
                flight = services.inventory.create_flight(
                    flight_number=item["flight_number"],
                    origin=item["origin"],
                    destination=item["destination"],
                    departure_time=item["departure_time"],
                    arrival_time=item["departure_time"] + item["duration"],
                    fare_classes=item["fare_classes"],
                )
            except InvalidReservationError as exc:
                logger.info("Skipping %s: %s", item["flight_number"], exc)
                continue
            print(f"Seeded flight {flight.flight_number} ({flight.id})")
    finally:
        services.shutdown()


if __name__ == "__main__":
    main()
