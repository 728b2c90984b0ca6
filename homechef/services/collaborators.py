"""
External collaborators consulted by the order engine.

Payment rails and the chef catalogue live in other services; only their
interfaces are modelled here. The defaults accept everything and are
replaced in deployments (and tests) via the setters.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID


class PaymentGateway(Protocol):
    def is_authorized(self, payment_id: str | None, amount: float) -> bool: ...


class ChefDirectory(Protocol):
    def is_available(self, chef_id: UUID) -> bool: ...


class AcceptingPaymentGateway:
    def is_authorized(self, payment_id: str | None, amount: float) -> bool:
        return True


class AcceptingChefDirectory:
    def is_available(self, chef_id: UUID) -> bool:
        return True


_payment_gateway: PaymentGateway = AcceptingPaymentGateway()
_chef_directory: ChefDirectory = AcceptingChefDirectory()


def get_payment_gateway() -> PaymentGateway:
    return _payment_gateway


def set_payment_gateway(gateway: PaymentGateway) -> PaymentGateway:
    global _payment_gateway
    previous = _payment_gateway
    _payment_gateway = gateway
    return previous


def get_chef_directory() -> ChefDirectory:
    return _chef_directory


def set_chef_directory(directory: ChefDirectory) -> ChefDirectory:
    global _chef_directory
    previous = _chef_directory
    _chef_directory = directory
    return previous
