from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from src.domain.state_machine import TripStatus
from src.infrastructure.db.models import Base, Route, RouteSegment, Trip, User
from src.infrastructure.db.session import SessionLocal, engine


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    cairo = timezone(timedelta(hours=2))
    now_local = datetime.now(cairo)
    target = now_local + timedelta(days=days_from_now)
    local = target.replace(hour=hour, minute=minute, second=0, microsecond=0)
    return local.astimezone(timezone.utc)


def seed_users(db) -> dict[str, User]:
    user_defs = [
        {"user_name": "driver.karim", "email": "karim@example.com"},
        {"user_name": "mona.passenger", "email": "mona@example.com"},
        {"user_name": "youssef.passenger", "email": "youssef@example.com"},
    ]

    users = {}
    for item in user_defs:
        existing = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if not existing:
            existing = User(user_name=item["user_name"], email=item["email"])
            db.add(existing)
            db.flush()
        users[item["user_name"]] = existing
    return users


def seed_routes(db, driver: User) -> None:
    route_defs = [
        {
            "start_location": "Cairo",
            "end_location": "Alexandria",
            "segments": [
                ("Cairo", "Wadi El Natrun", Decimal("80.00"), 60),
                ("Wadi El Natrun", "Alexandria", Decimal("140.00"), 95),
            ],
            "trips": [
                {"days": 1, "hour": 8, "minute": 0, "seats": 4, "price": Decimal("350.00")},
                {"days": 2, "hour": 17, "minute": 30, "seats": 3, "price": Decimal("380.00")},
            ],
        },
        {
            "start_location": "Giza",
            "end_location": "Fayoum",
            "segments": [
                ("Giza", "Fayoum", Decimal("100.00"), 90),
            ],
            "trips": [
                {"days": 3, "hour": 9, "minute": 15, "seats": 2, "price": Decimal("150.00")},
            ],
        },
    ]

    for item in route_defs:
        route = db.execute(
            select(Route)
            .where(Route.start_location == item["start_location"])
            .where(Route.end_location == item["end_location"])
        ).scalar_one_or_none()
        if route:
            continue

        route = Route(start_location=item["start_location"], end_location=item["end_location"])
        db.add(route)
        db.flush()

        for order, (start, end, distance, minutes) in enumerate(item["segments"], start=1):
            db.add(
                RouteSegment(
                    route_id=route.id,
                    segment_order=order,
                    start_point=start,
                    end_point=end,
                    distance_km=distance,
                    estimated_minutes=minutes,
                )
            )

        for trip in item["trips"]:
            db.add(
                Trip(
                    route_id=route.id,
                    driver_id=driver.id,
                    start_time=_dt(trip["days"], trip["hour"], trip["minute"]),
                    price_per_seat=trip["price"],
                    available_seats=trip["seats"],
                    status=TripStatus.SCHEDULED,
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = seed_users(db)
        seed_routes(db, users["driver.karim"])
        db.commit()
        print("Seed complete: 3 users, Cairo-Alexandria and Giza-Fayoum routes with trips added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
