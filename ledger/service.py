import logging
from typing import Optional
from uuid import UUID

from .errors import CoverNotFoundError, InsufficientCreditError, InvalidRequestError
from .models import ConsumeResult, DownloadResult, DownloadState, UserBalance
from .storage import InMemoryStorage, LedgerStorage

logger = logging.getLogger(__name__)

DEFAULT_FREE_DOWNLOADS = 5


class CreditService:
    def __init__(self, storage: Optional[LedgerStorage] = None, free_downloads: int = DEFAULT_FREE_DOWNLOADS):
        self.storage = storage or InMemoryStorage()
        self.free_downloads = free_downloads

    def get_balance(self, user_id: str) -> UserBalance:
        self._check_user_id(user_id)
        return self.storage.get_or_create_user(user_id, self.free_downloads)

    def try_consume_free_credit(self, user_id: str, cover_id: Optional[UUID] = None) -> ConsumeResult:
        balance = self.get_balance(user_id)
        updated = self.storage.try_consume(user_id, cover_id)
        if updated is None:
            logger.info("Download credit denied for user %s", user_id)
            return ConsumeResult(consumed=False, balance=self.storage.get_user(user_id) or balance)
        return ConsumeResult(consumed=True, balance=updated)

    def consume_free_credit(self, user_id: str, cover_id: Optional[UUID] = None) -> UserBalance:
        result = self.try_consume_free_credit(user_id, cover_id)
        if not result.consumed:
            raise InsufficientCreditError(user_id, result.balance.free_downloads)
        return result.balance

    def grant_credits(self, user_id: str, amount: int) -> UserBalance:
        if amount <= 0:
            raise InvalidRequestError(f"Credit grant must be positive, got {amount}")
        self.get_balance(user_id)
        balance = self.storage.grant_credits(user_id, amount)
        logger.info("Granted %d credits to user %s (free=%d)", amount, user_id, balance.free_downloads)
        return balance

    @staticmethod
    def _check_user_id(user_id: str) -> None:
        if not user_id or not user_id.strip():
            raise InvalidRequestError("User id is required")


class DownloadController:
    """Runs one download request through the credit check.

    REQUESTING -> CHECKING -> GRANTED -> DELIVERED when a credit is taken,
    REQUESTING -> CHECKING -> PAYMENT_REQUIRED when none is left. The second
    path is an expected outcome and leaves every balance untouched.
    """

    def __init__(self, credits: CreditService, enforce_ownership: bool = True):
        self.credits = credits
        self.storage = credits.storage
        self.enforce_ownership = enforce_ownership

    def download(self, user_id: str, cover_id: UUID) -> DownloadResult:
        cover = self.storage.get_cover(cover_id)
        if cover is None:
            raise CoverNotFoundError(f"Cover {cover_id} not found")
        if self.enforce_ownership and not cover.is_visible_to(user_id):
            logger.warning("User %s requested cover %s owned by another user", user_id, cover_id)
            raise CoverNotFoundError(f"Cover {cover_id} not found")

        outcome = self.credits.try_consume_free_credit(user_id, cover_id)
        if not outcome.consumed:
            return DownloadResult(
                state=DownloadState.PAYMENT_REQUIRED,
                user_id=user_id,
                cover_id=cover_id,
                remaining_free=outcome.balance.free_downloads,
            )

        logger.info(
            "User %s downloaded cover %s (remaining=%d)",
            user_id, cover_id, outcome.balance.free_downloads,
        )
        return DownloadResult(
            state=DownloadState.DELIVERED,
            user_id=user_id,
            cover_id=cover_id,
            image_url=cover.image_url,
            remaining_free=outcome.balance.free_downloads,
        )
