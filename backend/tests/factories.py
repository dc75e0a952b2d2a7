"""
Test data builders shared by the test modules.
"""

from datetime import timedelta

from backend.app.core.clock import utcnow
from backend.app.core.jwt import create_access_token
from backend.app.models.enums import UserRole
from backend.app.models.route_enums import RouteType, StopAction
from backend.app.schemas.package import PackageCreate
from backend.app.schemas.route import RouteCreate


def auth_headers(role: UserRole, user_id: int = 7, username: str = "tester") -> dict:
    token = create_access_token(data={"sub": username, "user_id": user_id, "role": role.value})
    return {"Authorization": f"Bearer {token}"}


def package_payload(**overrides) -> dict:
    payload = {
        "company_id": 1,
        "client_id": 42,
        "weight": 2.5,
        "destination": {
            "recipient_name": "Amina Bello",
            "recipient_phone": "+2348000000001",
            "address": "12 Marina Road",
            "city": "Lagos",
            "state": "Lagos",
            "location": {"type": "Point", "coordinates": [3.3792, 6.5244]},
        },
        "total_price": 1500,
    }
    payload.update(overrides)
    return payload


def package_data(**overrides) -> PackageCreate:
    return PackageCreate(**package_payload(**overrides))


def stop_payload(order: int, action: StopAction = StopAction.DELIVERY, package_ids=(), **overrides) -> dict:
    payload = {
        "order": order,
        "action": action,
        "location": {"type": "Point", "coordinates": [3.38 + order / 100, 6.52]},
        "address": f"Stop {order}",
        "package_ids": list(package_ids),
    }
    payload.update(overrides)
    return payload


def route_payload(stops, **overrides) -> dict:
    start = utcnow()
    payload = {
        "company_id": 1,
        "type": RouteType.LOCAL_DELIVERY,
        "distance": 25,
        "estimated_time": 120,
        "scheduled_start": start,
        "scheduled_end": start + timedelta(hours=4),
        "stops": stops,
    }
    payload.update(overrides)
    return payload


def route_data(stops, **overrides) -> RouteCreate:
    return RouteCreate(**route_payload(stops, **overrides))
