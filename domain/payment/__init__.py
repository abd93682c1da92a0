from .entity import PaymentTransaction, TransactionStatus
from .repository import PaymentTransactionRepository

__all__ = ["PaymentTransaction", "TransactionStatus", "PaymentTransactionRepository"]
