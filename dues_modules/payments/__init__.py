"""Payment Module: the payment recorder."""

from dues_modules.payments.models import PaymentApplication, PaymentMethod, PaymentRecord

__all__ = ["PaymentApplication", "PaymentMethod", "PaymentRecord"]
