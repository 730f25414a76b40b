"""Collaborators outside the booking engine: payment processor and notifications."""

from .notifications import LoggingNotifier, Notifier
from .payments import PaymentGateway, PaymentGatewayError, StripePaymentGateway, UnconfiguredPaymentGateway

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "PaymentGateway",
    "PaymentGatewayError",
    "StripePaymentGateway",
    "UnconfiguredPaymentGateway",
]
