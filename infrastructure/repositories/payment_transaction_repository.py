"""
支付流水仓储实现
"""
from typing import Optional, List
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from domain.payment.entity import PaymentTransaction, TransactionStatus
from domain.payment.repository import PaymentTransactionRepository
from infrastructure.models.payment import PaymentTransactionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentTransactionRepository(PaymentTransactionRepository):
    """支付流水仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> PaymentTransaction:
        return PaymentTransaction(
            id=model.id,
            order_id=model.order_id,
            provider=model.provider,
            correlation_id=model.correlation_id,
            status=TransactionStatus(model.status),
            amount=Decimal(str(model.amount)) if model.amount is not None else None,
            currency=model.currency,
            outcome=model.outcome,
            raw_payload=model.raw_payload or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
            settled_at=model.settled_at,
        )

    def _to_model(self, entity: PaymentTransaction) -> PaymentTransactionModel:
        now = datetime.now(timezone.utc)
        return PaymentTransactionModel(
            order_id=entity.order_id,
            provider=entity.provider,
            correlation_id=entity.correlation_id,
            status=entity.status.value,
            amount=entity.amount,
            currency=entity.currency,
            outcome=entity.outcome,
            raw_payload=entity.raw_payload,
            created_at=entity.created_at or now,
            updated_at=entity.updated_at or now,
            settled_at=entity.settled_at,
        )

    async def add(self, txn: PaymentTransaction) -> Optional[PaymentTransaction]:
        db_txn = self._to_model(txn)
        try:
            async with self.session.begin_nested():
                self.session.add(db_txn)
                await self.session.flush()
        except IntegrityError:
            logger.info(
                "payment_transaction_exists",
                provider=txn.provider,
                correlation_id=txn.correlation_id,
            )
            return None
        logger.info(
            "payment_transaction_recorded",
            transaction_id=db_txn.id,
            order_id=db_txn.order_id,
            provider=db_txn.provider,
            correlation_id=db_txn.correlation_id,
        )
        return self._to_entity(db_txn)

    async def get(self, provider: str, correlation_id: str) -> Optional[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.provider == provider,
                PaymentTransactionModel.correlation_id == correlation_id,
            )
            .execution_options(populate_existing=True)
        )
        db_txn = result.scalar_one_or_none()
        return self._to_entity(db_txn) if db_txn else None

    async def list_by_order(self, order_id: int) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.order_id == order_id)
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_stale_initiated(self, before: datetime, limit: int = 100) -> List[PaymentTransaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.status == TransactionStatus.INITIATED.value,
                PaymentTransactionModel.created_at < before,
            )
            .order_by(PaymentTransactionModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def settle(
        self,
        txn_id: int,
        status: TransactionStatus,
        *,
        outcome: str,
        amount: Optional[Decimal] = None,
        raw_payload: Optional[dict] = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        values = {"status": status.value, "outcome": outcome, "settled_at": now, "updated_at": now}
        if amount is not None:
            values["amount"] = amount
        if raw_payload is not None:
            values["raw_payload"] = raw_payload
        result = await self.session.execute(
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == txn_id,
                PaymentTransactionModel.status == TransactionStatus.INITIATED.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            logger.info("payment_transaction_settled", transaction_id=txn_id, status=status.value, outcome=outcome)
            return True
        return False
