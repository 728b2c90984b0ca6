"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    Marketplace roles carried in bearer tokens.

    - CUSTOMER: places, cancels and tips orders
    - CHEF: accepts/declines and prepares orders
    - DELIVERY: picks up and delivers orders
    - ADMIN: cancellation policy, analytics, receives every order event
    """

    CUSTOMER = "customer"
    CHEF = "chef"
    DELIVERY = "delivery"
    ADMIN = "admin"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_
