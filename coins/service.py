import logging
from datetime import date, datetime
from typing import Callable, Optional, Union
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from .callbacks import CallbackIngestor
from .checkin import CheckinEngine
from .config import Settings
from .db import build_engine, build_session_factory, init_db
from .errors import CoinServiceError
from .identity import UserKeyResolver, resolve_user_key
from .models import (
    CallbackOutcome,
    CallbackRequest,
    ChangeType,
    CheckinResult,
    CheckinStatus,
    CoinRecordEntry,
    CoinRecordPage,
    CoinStatistics,
    CreditResult,
    UserBalance,
    UserBalancePage,
)
from .signature import SignatureVerifier
from .statistics import StatisticsReader
from .store import LedgerStore
from .tables import utcnow

logger = logging.getLogger(__name__)


def admin_key(idempotency_key: str) -> str:
    return f"admin:{idempotency_key}"


def in_memory_session_factory() -> sessionmaker:
    engine = build_engine("sqlite://")
    init_db(engine)
    return build_session_factory(engine)


class CoinService:
    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        resolve_user_key: UserKeyResolver = resolve_user_key,
    ):
        self.settings = settings or Settings()
        self.session_factory = session_factory or in_memory_session_factory()
        self.clock = clock
        self.resolve_user_key = resolve_user_key

        self.verifier = SignatureVerifier(
            self.settings.app_secrets,
            max_skew_seconds=self.settings.signature_max_skew_seconds,
            clock_ms=lambda: int(self.clock().timestamp() * 1000),
        )
        self.store = LedgerStore(self.session_factory, clock=clock)
        self.callbacks = CallbackIngestor(
            self.session_factory,
            self.verifier,
            self.store,
            resolve_user_key=resolve_user_key,
            clock=clock,
            stale_after_seconds=self.settings.callback_stale_seconds,
        )
        self.checkins = CheckinEngine(self.store, clock=clock, timezone=self.settings.checkin_timezone)
        self.stats = StatisticsReader(self.session_factory)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CoinService":
        engine = build_engine(settings.database_url, busy_timeout=settings.sqlite_busy_timeout)
        init_db(engine)
        return cls(build_session_factory(engine), settings=settings, **kwargs)

    def today(self) -> date:
        return self.checkins.today()

    def resolve(self, raw: Union[int, str, None]) -> int:
        return self.resolve_user_key(raw)

    def process_callback(self, request: CallbackRequest) -> CallbackOutcome:
        return self.callbacks.process_callback(
            order_id=request.order_id,
            app_key=request.app_key,
            user_key_raw=request.user_id,
            task_id=request.task_id,
            coins=request.coins,
            total_count=request.total_count,
            completed_count=request.completed_count,
            timestamp=request.timestamp,
            timezone=request.timezone,
            sign=request.sign,
        )

    def checkin(self, user_key: int) -> CheckinResult:
        return self.checkins.checkin(user_key)

    def checkin_status(self, user_key: int) -> CheckinStatus:
        return self.checkins.status(user_key)

    def get_user_coins(self, user_key: int) -> UserBalance:
        return self.store.get_or_create_balance(user_key)

    def list_coin_records(self, user_key: int, limit: int = 50) -> list[CoinRecordEntry]:
        return self.store.list_records(user_key, limit=limit)

    def list_coin_records_page(self, user_key: int, page: int = 1, page_size: int = 20) -> CoinRecordPage:
        page = max(page, 1)
        records = self.store.list_records(user_key, limit=page_size, offset=(page - 1) * page_size)
        return CoinRecordPage(
            records=records,
            total=self.store.count_records(user_key),
            current_page=page,
            page_size=page_size,
        )

    def list_user_balances_page(self, page: int = 1, page_size: int = 20) -> UserBalancePage:
        page = max(page, 1)
        return UserBalancePage(
            users=self.store.list_balances(limit=page_size, offset=(page - 1) * page_size),
            total=self.store.count_balances(),
            current_page=page,
            page_size=page_size,
        )

    def adjust_balance(
        self,
        user_key: int,
        coin_change: int,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> CreditResult:
        if coin_change == 0:
            raise CoinServiceError("coinChange must not be zero")
        change_type = ChangeType.REWARD if coin_change > 0 else ChangeType.CONSUME
        key = admin_key(idempotency_key or str(uuid4()))
        logger.info("Admin adjustment user_key=%s change=%+d key=%s", user_key, coin_change, key)
        return self.store.credit_idempotent(user_key, key, coin_change, change_type, reason or "Admin adjustment")

    def statistics(self) -> CoinStatistics:
        return self.stats.snapshot(self.today())
