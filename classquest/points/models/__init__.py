from classquest.core.database import Base
from .transactions import PointsTransaction, TransactionSource

__all__ = ["Base", "PointsTransaction", "TransactionSource"]
