import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import CoinServiceError, PersistenceError, SignatureError
from .identity import UserKeyResolver, resolve_user_key
from .models import CallbackOutcome, CallbackRecordEntry, CallbackStatus, ChangeType
from .signature import SignatureVerifier
from .store import LedgerStore
from .tables import CallbackRecord, utcnow

logger = logging.getLogger(__name__)


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


class CallbackIngestor:
    """
    Processes partner reward callbacks at most once per order_id.

    The pending CallbackRecord insert is the gate: only the delivery that
    creates (or re-arms) the row goes on to verify and credit. A failed or
    abandoned order can be retried with the same order_id; a successful one
    is terminal and only ever reported back as a duplicate.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        verifier: SignatureVerifier,
        store: LedgerStore,
        resolve_user_key: UserKeyResolver = resolve_user_key,
        clock: Callable[[], datetime] = utcnow,
        stale_after_seconds: int = 300,
    ):
        self.session_factory = session_factory
        self.verifier = verifier
        self.store = store
        self.resolve_user_key = resolve_user_key
        self.clock = clock
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def process_callback(
        self,
        order_id: str,
        app_key: Optional[str],
        user_key_raw: Union[int, str],
        task_id: Optional[Union[int, str]],
        coins: int,
        total_count: int,
        completed_count: int,
        timestamp: int,
        timezone: str,
        sign: Optional[str],
    ) -> CallbackOutcome:
        user_key = self.resolve_user_key(user_key_raw)

        existing = self.get_record(order_id)
        if existing is not None and existing.status == CallbackStatus.SUCCESS:
            return self._duplicate(existing, "Order already processed")

        claimed = self._claim(
            order_id,
            user_key=user_key,
            task_id=str(task_id) if task_id is not None else None,
            reward_coins=coins,
            total_count=total_count,
            completed_count=completed_count,
            callback_timestamp=timestamp,
            timezone=timezone,
        )
        if not claimed:
            current = self.get_record(order_id)
            if current is not None and current.status == CallbackStatus.SUCCESS:
                return self._duplicate(current, "Order already processed")
            logger.info("Order %s is being processed by another delivery", order_id)
            return self._duplicate(current, "Order is already being processed")

        try:
            self.verifier.verify(app_key, timestamp, coins, user_key_raw, sign)
        except SignatureError as e:
            self._mark_failed(order_id, str(e))
            raise

        reason = f"Task {task_id} reward ({completed_count}/{total_count})" if task_id is not None else "Task reward"
        try:
            result = self.store.credit_idempotent(user_key, order_key(order_id), coins, ChangeType.REWARD, reason)
            self._mark(order_id, CallbackStatus.SUCCESS, None)
        except CoinServiceError as e:
            self._mark_failed(order_id, str(e))
            raise
        except Exception as e:
            logger.exception("Callback processing failed order_id=%s", order_id)
            self._mark_failed(order_id, f"Unexpected error: {e}")
            raise PersistenceError(f"Callback processing failed: {e}") from e

        logger.info(
            "Callback credited order_id=%s user_key=%s coins=%s new_balance=%s duplicate=%s",
            order_id, user_key, coins, result.new_balance, result.duplicate,
        )
        return CallbackOutcome(
            order_id=order_id,
            user_key=user_key,
            coins=coins,
            new_balance=result.new_balance,
            duplicate=result.duplicate,
            message="Order already credited" if result.duplicate else "Coins credited",
        )

    def get_record(self, order_id: str) -> Optional[CallbackRecordEntry]:
        with self.session_factory() as session:
            row = session.execute(
                select(CallbackRecord).where(CallbackRecord.order_id == order_id)
            ).scalar_one_or_none()
            return CallbackRecordEntry.model_validate(row) if row else None

    def _duplicate(self, record: Optional[CallbackRecordEntry], message: str) -> CallbackOutcome:
        # The row can vanish only if someone deletes it out from under us
        if record is None:
            raise PersistenceError("Callback record disappeared while claiming the order")
        return CallbackOutcome(
            order_id=record.order_id,
            user_key=record.user_key,
            coins=record.reward_coins,
            new_balance=self.store.current_balance(record.user_key),
            duplicate=True,
            message=message,
        )

    def _claim(self, order_id: str, **fields) -> bool:
        now = self.clock()
        try:
            with self.session_factory() as session:
                try:
                    session.add(CallbackRecord(
                        order_id=order_id,
                        status=CallbackStatus.PENDING.value,
                        created_at=now,
                        updated_at=now,
                        **fields,
                    ))
                    session.commit()
                    return True
                except IntegrityError:
                    session.rollback()

                # Row exists: take it over only if the earlier attempt failed or went stale
                stale_before = now - self.stale_after
                rearmed = session.execute(
                    update(CallbackRecord)
                    .where(CallbackRecord.order_id == order_id)
                    .where(or_(
                        CallbackRecord.status == CallbackStatus.FAILED.value,
                        and_(
                            CallbackRecord.status == CallbackStatus.PENDING.value,
                            CallbackRecord.updated_at < stale_before,
                        ),
                    ))
                    .values(status=CallbackStatus.PENDING.value, error_message=None, updated_at=now, **fields)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                if rearmed.rowcount == 1:
                    logger.info("Re-armed callback order_id=%s for retry", order_id)
                    return True
                return False
        except SQLAlchemyError as e:
            logger.exception("Could not claim callback order_id=%s", order_id)
            raise PersistenceError(f"Could not record callback: {e}") from e

    def _mark(self, order_id: str, status: CallbackStatus, error_message: Optional[str]) -> None:
        with self.session_factory() as session:
            session.execute(
                update(CallbackRecord)
                .where(CallbackRecord.order_id == order_id)
                .where(CallbackRecord.status == CallbackStatus.PENDING.value)
                .values(status=status.value, error_message=error_message, updated_at=self.clock())
                .execution_options(synchronize_session=False)
            )
            session.commit()

    def _mark_failed(self, order_id: str, message: str) -> None:
        try:
            self._mark(order_id, CallbackStatus.FAILED, message)
        except SQLAlchemyError:
            # Row stays pending until it goes stale
            logger.exception("Could not mark callback failed order_id=%s", order_id)
        else:
            logger.warning("Callback failed order_id=%s: %s", order_id, message)
