# mobifaktura/models/__init__.py
from .user import User, UserRole, UserSession, LoginLog, LoginAttempt
from .company import Company, UserCompanyPermission
from .invoice import Invoice, InvoiceType, InvoiceStatus, InvoiceEditHistory
from .budget_request import BudgetRequest, BudgetRequestStatus
from .saldo_transaction import SaldoTransaction, TransactionType
from .notification import Notification, NotificationType
from .advance import Advance, AdvanceStatus
