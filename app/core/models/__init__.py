from app.core.models.audit_log import AuditLog
from app.core.models.gateway_payment import GatewayPaymentRecord
from app.core.models.installment import Installment
from app.core.models.payment_plan import PaymentPlan
from app.core.models.receipt import Receipt
from app.core.models.student import Student

__all__ = [
    "AuditLog",
    "GatewayPaymentRecord",
    "Installment",
    "PaymentPlan",
    "Receipt",
    "Student",
]
