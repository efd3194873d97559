from .auth import User
from .citations import Citation
from .payments import Payment, Receipt, PaymentAudit, ReceiptSequence
from .audit import AuditLog, OrAuditLog

__all__ = [
    'User',
    'Citation',
    'Payment', 'Receipt', 'PaymentAudit', 'ReceiptSequence',
    'AuditLog', 'OrAuditLog',
]
