"""
Read-time package views computed from unsaved rows.
"""

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.domain.packages import derived
from backend.app.models.package import Package
from backend.app.models.package_enums import PackageStatus, PaymentStatus
from backend.app.models.package_issue import PackageIssue

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def make_package(**overrides) -> Package:
    fields = dict(
        status=PackageStatus.PENDING,
        weight=2.5,
        total_price=150.0,
        recipient_phone="+254700000001",
        payment_status=PaymentStatus.PENDING,
        is_return=False,
        attempt_count=0,
        max_attempts=3,
        next_attempt_date=None,
        estimated_delivery_time=None,
    )
    fields.update(overrides)
    return Package(**fields)


@pytest.mark.parametrize("status,expected", [
    (PackageStatus.PENDING, 0),
    (PackageStatus.ACCEPTED, 10),
    (PackageStatus.AT_ORIGIN_BRANCH, 20),
    (PackageStatus.IN_TRANSIT_TO_BRANCH, 40),
    (PackageStatus.AT_DESTINATION_BRANCH, 60),
    (PackageStatus.OUT_FOR_DELIVERY, 80),
    (PackageStatus.DELIVERED, 100),
    (PackageStatus.FAILED_DELIVERY, 80),
    (PackageStatus.RESCHEDULED, 70),
    (PackageStatus.RETURNED, 100),
    (PackageStatus.CANCELLED, 0),
    (PackageStatus.LOST, 0),
    (PackageStatus.DAMAGED, 100),
    (PackageStatus.ON_HOLD, 50),
])
def test_delivery_progress(status, expected):
    assert derived.delivery_progress(make_package(status=status)) == expected


def test_needs_attention_when_retry_date_passed():
    package = make_package(
        status=PackageStatus.AT_DESTINATION_BRANCH,
        next_attempt_date=NOW - timedelta(hours=1),
    )
    assert derived.needs_attention(package, NOW) is True

    package.next_attempt_date = NOW + timedelta(hours=1)
    assert derived.needs_attention(package, NOW) is False


def test_needs_attention_for_open_issue():
    package = make_package(status=PackageStatus.IN_TRANSIT_TO_BRANCH)
    package.issues.append(PackageIssue(resolved=False))

    assert derived.needs_attention(package, NOW) is True


def test_can_be_delivered_requires_payment_and_no_return():
    package = make_package(status=PackageStatus.OUT_FOR_DELIVERY)
    assert derived.can_be_delivered(package) is False

    package.payment_status = PaymentStatus.PAID
    assert derived.can_be_delivered(package) is True

    package.is_return = True
    assert derived.can_be_delivered(package) is False


def test_rescheduled_package_cannot_be_delivered():
    package = make_package(status=PackageStatus.RESCHEDULED, payment_status=PaymentStatus.PAID)

    assert derived.can_be_delivered(package) is False


def test_can_be_accepted():
    assert derived.can_be_accepted(make_package()) is True
    assert derived.can_be_accepted(make_package(total_price=0)) is False
    assert derived.can_be_accepted(make_package(recipient_phone="")) is False
    assert derived.can_be_accepted(make_package(status=PackageStatus.ACCEPTED)) is False


def test_estimated_time_remaining_rounds_half_up():
    package = make_package(estimated_delivery_time=NOW + timedelta(minutes=90))
    assert derived.estimated_time_remaining(package, NOW) == 2

    package.estimated_delivery_time = NOW - timedelta(hours=3)
    assert derived.estimated_time_remaining(package, NOW) == 0
    assert derived.is_overdue(package, NOW) is True


def test_derived_views_include_acceptance():
    views = derived.derived_views(make_package(), NOW)

    assert views["can_be_accepted"] is True
    assert views["can_be_delivered"] is False
    assert views["estimated_time_remaining"] is None
