"""
Ledger persistence: the per-user balance snapshot plus the append-only audit log.

Every balance change runs as one transaction:

    insert-or-ignore the user row -> lock it -> compute the change
    -> update the snapshot -> append the CoinRecord -> commit

The unique index on coin_records.idempotency_key is what makes a change
at-most-once. A conflicting insert rolls the whole transaction back, so the
snapshot and the audit log always move together.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import InsufficientBalanceError, PersistenceError
from .models import ChangeType, CoinRecordEntry, CreditResult, UserBalance
from .tables import CoinRecord, UserCoins, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Posting:
    delta: int
    reason: str
    checkin_date: Optional[date] = None
    continuous_days: Optional[int] = None


PostingPlan = Callable[[UserCoins], Posting]


def _insert_user_if_missing(session: Session, user_key: int, now: datetime) -> None:
    values = dict(
        user_key=user_key, coin_balance=0, total_earned=0, last_total_balance=0,
        continuous_days=0, created_at=now, updated_at=now,
    )
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        stmt = insert(UserCoins).values(**values).on_conflict_do_nothing(index_elements=["user_key"])
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        stmt = insert(UserCoins).values(**values).on_conflict_do_nothing(index_elements=["user_key"])
    elif dialect in ("mysql", "mariadb"):
        from sqlalchemy.dialects.mysql import insert
        stmt = insert(UserCoins).values(**values).prefix_with("IGNORE")
    else:
        raise PersistenceError(f"Unsupported database dialect: {dialect}")
    session.execute(stmt)


class LedgerStore:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def credit_idempotent(
        self,
        user_key: int,
        idempotency_key: str,
        delta: int,
        change_type: ChangeType,
        reason: str,
    ) -> CreditResult:
        return self.apply_posting(
            user_key, idempotency_key, change_type,
            lambda row: Posting(delta=delta, reason=reason),
        )

    def apply_posting(
        self,
        user_key: int,
        idempotency_key: str,
        change_type: ChangeType,
        plan: PostingPlan,
    ) -> CreditResult:
        """
        Apply the change produced by ``plan`` at most once per idempotency key.

        ``plan`` runs against the locked user row, so anything it derives from
        the current state (streaks, tiers) is computed under the same lock that
        guards the write.
        """
        change_type = ChangeType(change_type)
        try:
            with self.session_factory() as session:
                try:
                    result = self._post(session, user_key, idempotency_key, change_type, plan)
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = self._find_record(session, idempotency_key)
                    if existing is None:
                        raise
                    return self._duplicate(session, existing)
        except SQLAlchemyError as e:
            logger.exception("Ledger write failed user_key=%s key=%s", user_key, idempotency_key)
            raise PersistenceError(f"Ledger write failed: {e}") from e

        if not result.duplicate:
            logger.info(
                "Ledger %s user_key=%s change=%+d balance %s -> %s key=%s",
                change_type.value, user_key, result.coin_change,
                result.previous_balance, result.new_balance, idempotency_key,
            )
        return result

    def _post(
        self,
        session: Session,
        user_key: int,
        idempotency_key: str,
        change_type: ChangeType,
        plan: PostingPlan,
    ) -> CreditResult:
        now = self.clock()
        # Write first so SQLite takes its write lock before anything is read
        _insert_user_if_missing(session, user_key, now)
        row = session.execute(
            select(UserCoins).where(UserCoins.user_key == user_key).with_for_update()
        ).scalar_one()

        posting = plan(row)
        previous = row.coin_balance
        new_balance = previous + posting.delta
        if new_balance < 0:
            existing = self._find_record(session, idempotency_key)
            if existing is not None:
                return self._duplicate(session, existing)
            raise InsufficientBalanceError(
                f"Insufficient balance: have {previous}, change {posting.delta}"
            )

        row.last_total_balance = previous
        row.coin_balance = new_balance
        if posting.delta > 0:
            row.total_earned += posting.delta
        if posting.checkin_date is not None:
            row.last_checkin_date = posting.checkin_date
        if posting.continuous_days is not None:
            row.continuous_days = posting.continuous_days
        row.updated_at = now

        record = CoinRecord(
            user_key=user_key,
            coin_change=posting.delta,
            change_type=change_type.value,
            change_reason=posting.reason,
            balance_after=new_balance,
            idempotency_key=idempotency_key,
            created_at=now,
        )
        session.add(record)
        session.flush()

        return CreditResult(
            user_key=user_key,
            new_balance=new_balance,
            previous_balance=previous,
            coin_change=posting.delta,
            duplicate=False,
            record=CoinRecordEntry.model_validate(record),
        )

    def _duplicate(self, session: Session, existing: CoinRecord) -> CreditResult:
        logger.info("Duplicate ledger key=%s user_key=%s, nothing applied", existing.idempotency_key, existing.user_key)
        return CreditResult(
            user_key=existing.user_key,
            new_balance=self._balance_of(session, existing.user_key),
            duplicate=True,
            coin_change=0,
            record=CoinRecordEntry.model_validate(existing),
        )

    @staticmethod
    def _find_record(session: Session, idempotency_key: str) -> Optional[CoinRecord]:
        return session.execute(
            select(CoinRecord).where(CoinRecord.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    @staticmethod
    def _balance_of(session: Session, user_key: int) -> int:
        balance = session.execute(
            select(UserCoins.coin_balance).where(UserCoins.user_key == user_key)
        ).scalar_one_or_none()
        return balance or 0

    def get_balance(self, user_key: int) -> Optional[UserBalance]:
        with self.session_factory() as session:
            row = session.execute(
                select(UserCoins).where(UserCoins.user_key == user_key)
            ).scalar_one_or_none()
            return UserBalance.model_validate(row) if row else None

    def get_or_create_balance(self, user_key: int) -> UserBalance:
        try:
            with self.session_factory() as session:
                _insert_user_if_missing(session, user_key, self.clock())
                session.commit()
                row = session.execute(
                    select(UserCoins).where(UserCoins.user_key == user_key)
                ).scalar_one()
                return UserBalance.model_validate(row)
        except SQLAlchemyError as e:
            logger.exception("Could not load balance user_key=%s", user_key)
            raise PersistenceError(f"Could not load balance: {e}") from e

    def current_balance(self, user_key: int) -> int:
        with self.session_factory() as session:
            return self._balance_of(session, user_key)

    def list_records(self, user_key: int, limit: int = 50, offset: int = 0) -> list[CoinRecordEntry]:
        with self.session_factory() as session:
            rows = session.execute(
                select(CoinRecord)
                .where(CoinRecord.user_key == user_key)
                .order_by(CoinRecord.created_at.desc(), CoinRecord.id.desc())
                .limit(limit)
                .offset(offset)
            ).scalars().all()
            return [CoinRecordEntry.model_validate(r) for r in rows]

    def count_records(self, user_key: int) -> int:
        with self.session_factory() as session:
            return session.execute(
                select(func.count(CoinRecord.id)).where(CoinRecord.user_key == user_key)
            ).scalar_one()

    def list_balances(self, limit: int = 20, offset: int = 0) -> list[UserBalance]:
        with self.session_factory() as session:
            rows = session.execute(
                select(UserCoins).order_by(UserCoins.user_key).limit(limit).offset(offset)
            ).scalars().all()
            return [UserBalance.model_validate(r) for r in rows]

    def count_balances(self) -> int:
        with self.session_factory() as session:
            return session.execute(select(func.count(UserCoins.id))).scalar_one()
