"""
Route Pydantic schemas.

Defines request and response models for the route execution engine and the
stop outcome dispatch.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import Field, model_validator
from backend.app.models.package_enums import PackageStatus
from backend.app.models.route_enums import RouteType, RouteStatus, StopStatus, StopAction
from backend.app.schemas.common import ApiModel, GeoPoint


class RouteStopCreate(ApiModel):
    """Schema for one stop of a new route."""
    order: int = Field(..., ge=1)
    action: StopAction
    location: GeoPoint
    address: Optional[str] = Field(None, max_length=500)
    branch_id: Optional[int] = None
    client_id: Optional[int] = None
    package_ids: List[int] = Field(default_factory=list)
    expected_arrival: Optional[datetime] = None
    expected_departure: Optional[datetime] = None
    stop_duration: int = Field(15, ge=1, le=240, description="Minutes spent at the stop")
    notes: Optional[str] = Field(None, max_length=500)
    contact_person: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=30)


class RouteCreate(ApiModel):
    """Schema for creating a route with its stops."""
    route_number: Optional[str] = Field(None, pattern=r"^R-\d{8}-\d{3,4}$")
    company_id: int
    name: Optional[str] = Field(None, max_length=100)
    type: RouteType
    origin_branch_id: Optional[int] = None
    destination_branch_id: Optional[int] = None
    assigned_vehicle_id: Optional[int] = None
    assigned_transporter_id: Optional[int] = None
    assigned_deliverer_id: Optional[int] = None
    distance: float = Field(..., ge=0.1, le=1000, description="Distance in kilometers")
    estimated_time: int = Field(..., ge=1, le=1440, description="Estimated duration in minutes")
    fuel_estimate: Optional[float] = Field(None, ge=0)
    cost_estimate: Optional[float] = Field(None, ge=0)
    scheduled_start: datetime
    scheduled_end: datetime
    stops: List[RouteStopCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_schedule(self):
        if self.scheduled_end <= self.scheduled_start:
            raise ValueError("Scheduled end must be after scheduled start")
        return self


class RouteAssignRequest(ApiModel):
    """Schema for assigning a route. At least one reference is required."""
    vehicle_id: Optional[int] = None
    deliverer_id: Optional[int] = None
    transporter_id: Optional[int] = None


class StopCompleteRequest(ApiModel):
    completed_packages: List[int] = Field(default_factory=list)
    failed_packages: List[int] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)


class StopFailRequest(ApiModel):
    reason: str = Field(..., min_length=1, max_length=500)
    skipped_packages: List[int] = Field(default_factory=list)


class StopSkipRequest(ApiModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RouteCompleteRequest(ApiModel):
    notes: Optional[str] = Field(None, max_length=1000)


class RouteCancelRequest(ApiModel):
    reason: str = Field(..., min_length=1, max_length=500)


class StopReorderRequest(ApiModel):
    stop_ids: List[int] = Field(..., min_length=1)


class RouteStopResponse(ApiModel):
    """Schema for route stop response."""
    id: int
    order: int
    action: StopAction
    location: GeoPoint
    address: Optional[str]
    branch_id: Optional[int]
    client_id: Optional[int]
    package_ids: List[int]
    completed_packages: List[int]
    failed_packages: List[int]
    skipped_packages: List[int]
    expected_arrival: Optional[datetime]
    actual_arrival: Optional[datetime]
    expected_departure: Optional[datetime]
    actual_departure: Optional[datetime]
    stop_duration: int
    status: StopStatus
    notes: Optional[str]
    contact_person: Optional[str]
    contact_phone: Optional[str]
    issues: List[str]


class RouteResponse(ApiModel):
    """Schema for route response, including derived read-time views."""
    id: int
    route_number: str
    company_id: int
    name: Optional[str]
    type: RouteType
    origin_branch_id: Optional[int]
    destination_branch_id: Optional[int]
    assigned_vehicle_id: Optional[int]
    assigned_transporter_id: Optional[int]
    assigned_deliverer_id: Optional[int]
    distance: float
    estimated_time: int
    actual_time: Optional[float]
    fuel_estimate: Optional[float]
    cost_estimate: Optional[float]
    status: RouteStatus
    current_stop_index: int
    completed_stops: int
    failed_stops: int
    skipped_stops: int
    on_time_performance: float
    scheduled_start: datetime
    actual_start: Optional[datetime]
    scheduled_end: datetime
    actual_end: Optional[datetime]
    paused_at: Optional[datetime]
    resumed_at: Optional[datetime]
    cancellation_reason: Optional[str]
    completion_notes: Optional[str]
    stops: List[RouteStopResponse]
    created_at: datetime
    updated_at: datetime

    # Derived
    is_active: bool = False
    is_completed: bool = False
    is_delayed: bool = False
    progress_percentage: float = 0
    estimated_time_remaining: Optional[float] = None
    current_stop: Optional[RouteStopResponse] = None
    next_stop: Optional[RouteStopResponse] = None
    remaining_stops: List[RouteStopResponse] = Field(default_factory=list)
    total_packages: int = 0
    completed_packages: int = 0

    @classmethod
    def from_route(cls, route) -> "RouteResponse":
        from backend.app.domain.routes.derived import derived_views, ordered_stops

        stops = [RouteStopResponse.model_validate(stop) for stop in ordered_stops(route)]
        views = derived_views(route)
        by_id = {stop.id: stop for stop in stops}

        def _project(stop):
            return by_id[stop.id] if stop is not None else None

        views["current_stop"] = _project(views["current_stop"])
        views["next_stop"] = _project(views["next_stop"])
        views["remaining_stops"] = [by_id[stop.id] for stop in views["remaining_stops"]]
        return cls.model_validate(route).model_copy(update={"stops": stops, **views})


class SkippedPackage(ApiModel):
    package_id: int
    status: PackageStatus
    reason: str


class StopDispatchResponse(ApiModel):
    """Outcome of a stop dispatch: the route plus per-package results."""
    route: RouteResponse
    updated_packages: List[int]
    skipped_packages: List[SkippedPackage]
