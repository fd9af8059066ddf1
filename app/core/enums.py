from enum import Enum


class PaymentPlanStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"
    SUSPENDED = "Suspended"
    DEFAULTED = "Defaulted"
    CANCELLED = "Cancelled"


class InstallmentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    OVERDUE = "Overdue"


class GatewayPaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class StudentStatus(str, Enum):
    PENDING_PAYMENT = "PendingPayment"
    ENROLLED = "Enrolled"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    DROPPED = "Dropped"
    SUSPENDED = "Suspended"


class ReceiptType(str, Enum):
    ADMISSION_FEE = "AdmissionFee"
    TUITION_FEE = "TuitionFee"
    COURSE_FEE = "CourseFee"
    EXAM_FEE = "ExamFee"
    OTHER = "Other"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    PAYMENT_APPLIED = "PAYMENT_APPLIED"
    PAYMENT_REFERENCE_CONFLICT = "PAYMENT_REFERENCE_CONFLICT"
    RECEIPT_FAILED = "RECEIPT_FAILED"
    STUDENT_ADVANCE_FAILED = "STUDENT_ADVANCE_FAILED"
    GATEWAY_INTENT_CREATED = "GATEWAY_INTENT_CREATED"
    GATEWAY_PAYMENT_SUCCEEDED = "GATEWAY_PAYMENT_SUCCEEDED"
    GATEWAY_PAYMENT_FAILED = "GATEWAY_PAYMENT_FAILED"
    OVERDUE_SWEEP = "OVERDUE_SWEEP"
