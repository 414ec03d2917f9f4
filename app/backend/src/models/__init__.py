"""ORM models exposed for easy imports."""

from .academic import AcademicYear, Curriculum
from .enrollment import PaymentPlan, ProgramEnrollment
from .invoice import Invoice
from .payment import Payment
from .student import Student
from .user import User

__all__ = [
    "AcademicYear",
    "Curriculum",
    "Invoice",
    "Payment",
    "PaymentPlan",
    "ProgramEnrollment",
    "Student",
    "User",
]
