import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional
from uuid import UUID

from sqlalchemy import create_engine, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import NotFoundError, PersistenceError
from .models import Cover, PaymentRecord, PaymentStatus, PendingPayment, UserBalance
from .tables import Base, CoverRow, PaymentRow, PendingPaymentRow, UserRow

logger = logging.getLogger(__name__)


class LedgerStorage:
    """Persistence contract for balances, covers and payments.

    ``try_consume`` and ``settle_payment`` are the two operations that must be
    atomic: the first is a single check-and-decrement, the second inserts the
    payment record and grants its credits in one unit.
    """

    def get_user(self, user_id: str) -> Optional[UserBalance]:
        raise NotImplementedError

    def get_or_create_user(self, user_id: str, free_downloads: int) -> UserBalance:
        raise NotImplementedError

    def try_consume(self, user_id: str, cover_id: Optional[UUID] = None) -> Optional[UserBalance]:
        """Take one free download; ``None`` when the balance is exhausted."""
        raise NotImplementedError

    def grant_credits(self, user_id: str, amount: int) -> UserBalance:
        raise NotImplementedError

    def add_cover(self, cover: Cover) -> Cover:
        raise NotImplementedError

    def get_cover(self, cover_id: UUID) -> Optional[Cover]:
        raise NotImplementedError

    def list_covers(self, owner_id: Optional[str] = None) -> list[Cover]:
        raise NotImplementedError

    def add_pending_payment(self, pending: PendingPayment) -> PendingPayment:
        raise NotImplementedError

    def get_pending_payment(self, reference: str) -> Optional[PendingPayment]:
        raise NotImplementedError

    def set_pending_status(self, reference: str, status: PaymentStatus) -> Optional[PendingPayment]:
        raise NotImplementedError

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        raise NotImplementedError

    def settle_payment(self, record: PaymentRecord) -> tuple[PaymentRecord, bool]:
        """Store ``record`` and grant its credits together.

        Returns the stored record and whether this call created it. When a
        record for the reference already exists nothing is granted.
        """
        raise NotImplementedError


class InMemoryStorage(LedgerStorage):
    def __init__(self):
        self.users: dict[str, dict] = {}
        self.covers: dict[UUID, dict] = {}
        self.payments: dict[str, dict] = {}
        self.pending_payments: dict[str, dict] = {}
        self._lock = threading.RLock()

    def get_user(self, user_id: str) -> Optional[UserBalance]:
        with self._lock:
            user = self.users.get(user_id)
            return UserBalance(**user) if user else None

    def get_or_create_user(self, user_id: str, free_downloads: int) -> UserBalance:
        with self._lock:
            if user_id not in self.users:
                now = datetime.now(timezone.utc)
                self.users[user_id] = {
                    "user_id": user_id, "free_downloads": free_downloads,
                    "total_downloads": 0, "created_at": now, "updated_at": now,
                }
            return UserBalance(**self.users[user_id])

    def try_consume(self, user_id: str, cover_id: Optional[UUID] = None) -> Optional[UserBalance]:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            if user["free_downloads"] <= 0:
                return None
            user["free_downloads"] -= 1
            user["total_downloads"] += 1
            user["updated_at"] = datetime.now(timezone.utc)
            if cover_id is not None and cover_id in self.covers:
                self.covers[cover_id]["downloaded"] = True
            return UserBalance(**user)

    def grant_credits(self, user_id: str, amount: int) -> UserBalance:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            user["free_downloads"] += amount
            user["updated_at"] = datetime.now(timezone.utc)
            return UserBalance(**user)

    def add_cover(self, cover: Cover) -> Cover:
        with self._lock:
            self.covers[cover.id] = cover.model_dump()
            return cover

    def get_cover(self, cover_id: UUID) -> Optional[Cover]:
        with self._lock:
            data = self.covers.get(cover_id)
            return Cover(**data) if data else None

    def list_covers(self, owner_id: Optional[str] = None) -> list[Cover]:
        with self._lock:
            covers = [
                Cover(**c) for c in self.covers.values()
                if owner_id is None or c["owner_id"] == owner_id
            ]
        covers.sort(key=lambda c: c.created_at)
        return covers

    def add_pending_payment(self, pending: PendingPayment) -> PendingPayment:
        with self._lock:
            if pending.reference in self.pending_payments:
                raise PersistenceError(f"Pending payment {pending.reference} already exists")
            self.pending_payments[pending.reference] = pending.model_dump()
            return pending

    def get_pending_payment(self, reference: str) -> Optional[PendingPayment]:
        with self._lock:
            data = self.pending_payments.get(reference)
            return PendingPayment(**data) if data else None

    def set_pending_status(self, reference: str, status: PaymentStatus) -> Optional[PendingPayment]:
        with self._lock:
            data = self.pending_payments.get(reference)
            if data is None:
                return None
            data["status"] = status
            data["updated_at"] = datetime.now(timezone.utc)
            return PendingPayment(**data)

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        with self._lock:
            data = self.payments.get(reference)
            return PaymentRecord(**data) if data else None

    def settle_payment(self, record: PaymentRecord) -> tuple[PaymentRecord, bool]:
        with self._lock:
            existing = self.payments.get(record.reference)
            if existing:
                return PaymentRecord(**existing), False
            if record.user_id not in self.users:
                raise NotFoundError(f"User {record.user_id} not found")
            self.grant_credits(record.user_id, record.credits_added)
            self.payments[record.reference] = record.model_dump()
            pending = self.pending_payments.get(record.reference)
            if pending:
                pending["status"] = record.status
                pending["updated_at"] = datetime.now(timezone.utc)
            return record, True


class SqlStorage(LedgerStorage):
    def __init__(self, database_url: str, echo: bool = False):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args, echo=echo)
        self.session_factory = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False,
        )

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception("Ledger storage failure")
            raise PersistenceError("Storage unavailable") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_user(self, user_id: str) -> Optional[UserBalance]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return self._to_balance(row) if row else None

    def get_or_create_user(self, user_id: str, free_downloads: int) -> UserBalance:
        existing = self.get_user(user_id)
        if existing:
            return existing
        try:
            with self._session() as session:
                row = UserRow(id=user_id, free_downloads=free_downloads, total_downloads=0)
                session.add(row)
                session.flush()
                return self._to_balance(row)
        except IntegrityError:
            # Another request provisioned the same user first.
            existing = self.get_user(user_id)
            if existing is None:
                raise PersistenceError(f"Could not provision user {user_id}")
            return existing

    def try_consume(self, user_id: str, cover_id: Optional[UUID] = None) -> Optional[UserBalance]:
        with self._session() as session:
            result = session.execute(
                update(UserRow)
                .where(UserRow.id == user_id, UserRow.free_downloads > 0)
                .values(
                    free_downloads=UserRow.free_downloads - 1,
                    total_downloads=UserRow.total_downloads + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                if session.get(UserRow, user_id) is None:
                    raise NotFoundError(f"User {user_id} not found")
                return None
            if cover_id is not None:
                session.execute(
                    update(CoverRow)
                    .where(CoverRow.id == str(cover_id))
                    .values(downloaded=True)
                    .execution_options(synchronize_session=False)
                )
            row = session.get(UserRow, user_id, populate_existing=True)
            return self._to_balance(row)

    def grant_credits(self, user_id: str, amount: int) -> UserBalance:
        with self._session() as session:
            self._increment_free(session, user_id, amount)
            row = session.get(UserRow, user_id, populate_existing=True)
            return self._to_balance(row)

    def add_cover(self, cover: Cover) -> Cover:
        with self._session() as session:
            data = cover.model_dump()
            data["id"] = str(cover.id)
            session.add(CoverRow(**data))
        return cover

    def get_cover(self, cover_id: UUID) -> Optional[Cover]:
        with self._session() as session:
            row = session.get(CoverRow, str(cover_id))
            return Cover.model_validate(row) if row else None

    def list_covers(self, owner_id: Optional[str] = None) -> list[Cover]:
        with self._session() as session:
            stmt = select(CoverRow).order_by(CoverRow.created_at)
            if owner_id is not None:
                stmt = stmt.where(CoverRow.owner_id == owner_id)
            return [Cover.model_validate(row) for row in session.scalars(stmt)]

    def add_pending_payment(self, pending: PendingPayment) -> PendingPayment:
        try:
            with self._session() as session:
                data = pending.model_dump()
                data["status"] = pending.status.value
                session.add(PendingPaymentRow(**data))
        except IntegrityError as e:
            raise PersistenceError(f"Pending payment {pending.reference} already exists") from e
        return pending

    def get_pending_payment(self, reference: str) -> Optional[PendingPayment]:
        with self._session() as session:
            row = self._pending_row(session, reference)
            return PendingPayment.model_validate(row) if row else None

    def set_pending_status(self, reference: str, status: PaymentStatus) -> Optional[PendingPayment]:
        with self._session() as session:
            row = self._pending_row(session, reference)
            if row is None:
                return None
            row.status = status.value
            session.flush()
            return PendingPayment.model_validate(row)

    def get_payment(self, reference: str) -> Optional[PaymentRecord]:
        with self._session() as session:
            row = self._payment_row(session, reference)
            return PaymentRecord.model_validate(row) if row else None

    def settle_payment(self, record: PaymentRecord) -> tuple[PaymentRecord, bool]:
        try:
            with self._session() as session:
                existing = self._payment_row(session, record.reference)
                if existing is not None:
                    return PaymentRecord.model_validate(existing), False
                data = record.model_dump()
                data["status"] = record.status.value
                session.add(PaymentRow(**data))
                session.flush()
                self._increment_free(session, record.user_id, record.credits_added)
                pending = self._pending_row(session, record.reference)
                if pending is not None:
                    pending.status = record.status.value
                return record, True
        except IntegrityError:
            # A concurrent verification inserted the same reference and granted.
            existing = self.get_payment(record.reference)
            if existing is None:
                raise PersistenceError(f"Could not settle payment {record.reference}")
            logger.info("Payment %s settled concurrently; skipping grant", record.reference)
            return existing, False

    def _increment_free(self, session: Session, user_id: str, amount: int) -> None:
        result = session.execute(
            update(UserRow)
            .where(UserRow.id == user_id)
            .values(free_downloads=UserRow.free_downloads + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFoundError(f"User {user_id} not found")

    @staticmethod
    def _pending_row(session: Session, reference: str) -> Optional[PendingPaymentRow]:
        return session.scalars(
            select(PendingPaymentRow).where(PendingPaymentRow.reference == reference)
        ).one_or_none()

    @staticmethod
    def _payment_row(session: Session, reference: str) -> Optional[PaymentRow]:
        return session.scalars(
            select(PaymentRow).where(PaymentRow.reference == reference)
        ).one_or_none()

    @staticmethod
    def _to_balance(row: UserRow) -> UserBalance:
        return UserBalance(
            user_id=row.id,
            free_downloads=row.free_downloads,
            total_downloads=row.total_downloads,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def create_storage(database_url: Optional[str]) -> LedgerStorage:
    if not database_url:
        logger.warning("DATABASE_URL not set; using in-memory ledger storage")
        return InMemoryStorage()
    storage = SqlStorage(database_url)
    storage.create_all()
    return storage
