"""
config/catalog.py
Process-wide static configuration: the default slot list, accepted receipt
types and the payment-method directory shown to clients.
Loaded once at import time and never mutated.
"""

from types import MappingProxyType

from config.settings import settings


DEFAULT_TIME_SLOTS: tuple[str, ...] = ("09:00", "10:00", "11:00", "14:00", "15:00", "16:00")

RECEIPT_CONTENT_TYPES: frozenset[str] = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "application/pdf",
})

PAYMENT_METHODS = MappingProxyType({
    "easypaisa": MappingProxyType({
        "name": "EasyPaisa",
        "account_number": "0312-3456789",
        "account_title": "MindWell Psychology",
        "instructions": "Send payment to the EasyPaisa account above and upload the receipt.",
    }),
    "jazzcash": MappingProxyType({
        "name": "JazzCash",
        "account_number": "0300-1234567",
        "account_title": "MindWell Psychology",
        "instructions": "Send payment to the JazzCash account above and upload the receipt.",
    }),
    "bank_transfer": MappingProxyType({
        "name": "Bank Transfer",
        "bank_name": "Habib Bank Limited",
        "account_number": "1234-5678901-2",
        "account_title": "MindWell Psychology",
        "iban": "PK00HABB1234567890123",
        "branch": "Main Branch, Karachi",
        "instructions": "Transfer to the bank account above and upload the deposit slip.",
    }),
    "cash": MappingProxyType({
        "name": "Cash",
        "instructions": "Pay at the clinic reception and upload the issued receipt.",
    }),
})

CONTACT_INFO = MappingProxyType({
    "phone": "+92-312-3456789",
    "email": "payments@mindwell.com",
})


def payment_methods_payload() -> dict:
    """Plain-dict rendering of the payment directory for API responses."""
    return {
        "methods": {key: dict(details) for key, details in PAYMENT_METHODS.items()},
        "default_amount": settings.DEFAULT_APPOINTMENT_AMOUNT,
        "currency": "PKR",
        "contact_info": dict(CONTACT_INFO),
    }
