from app.models.activity import ActivityLog  # noqa: F401
from app.models.billing import (  # noqa: F401
    OUTSTANDING_BILL_STATUSES,
    Bill,
    BillStatus,
    Payment,
    PaymentMethod,
    PaymentReconciliation,
    PaymentStatus,
    ReconciliationSource,
)
from app.models.customer import Customer, CustomerStatus  # noqa: F401
