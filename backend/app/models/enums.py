"""
User roles enumeration and shared column helpers.

Defines the actor roles recognised by the delivery core and the helper used
to persist string enums by value.
"""

import enum
from sqlalchemy import Enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Platform administrator
        MANAGER: Company manager, owns branch configuration
        SUPERVISOR: Branch supervisor, drives package and route operations
        DELIVERER: Last-mile deliverer assigned to routes
        TRANSPORTER: Inter-branch transporter assigned to routes
        CLIENT: Sender of packages
    """
    ADMIN = "admin"
    MANAGER = "manager"
    SUPERVISOR = "supervisor"
    DELIVERER = "deliverer"
    TRANSPORTER = "transporter"
    CLIENT = "client"


def db_enum(enum_cls: type) -> Enum:
    """
    Column type storing an enum by its value.

    Downstream consumers match on the lowercase value strings
    (e.g. "failed_delivery"), so member names never reach the database.
    """
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        validate_strings=True,
        length=32,
    )
