"""Schema package exports."""
from .checkout import (
    CheckoutSessionCreate,
    CheckoutSessionRead,
    LineItem,
    OrderRead,
    RentalPaymentIntentCreate,
    RentalPaymentIntentRead,
    RentalRead,
)
from .payee import OnboardingLinkCreate, OnboardingLinkRead, PayeeAccountCreate, PayeeAccountRead
from .webhook import WebhookAck
