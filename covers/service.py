import base64
import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from ledger.errors import CoverGenerationError, CoverNotFoundError
from ledger.models import Cover, GenerateCoverRequest
from ledger.storage import InMemoryStorage, LedgerStorage

from .generator import ImageGenerator
from .prompt import build_prompt

logger = logging.getLogger(__name__)


def to_data_url(image: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode()}"


class CoverService:
    def __init__(self, generator: ImageGenerator, storage: Optional[LedgerStorage] = None):
        self.generator = generator
        self.storage = storage or InMemoryStorage()

    def generate(self, user_id: Optional[str], request: GenerateCoverRequest) -> Cover:
        prompt = build_prompt(request)
        image = self.generator.generate(prompt)
        if not image:
            raise CoverGenerationError("Image generator returned an empty image")

        cover = Cover(
            id=uuid4(),
            owner_id=user_id,
            **request.model_dump(),
            prompt=prompt,
            image_url=to_data_url(image),
            downloaded=False,
            created_at=datetime.now(timezone.utc),
        )
        self.storage.add_cover(cover)
        logger.info("Generated cover %s for user %s (%d bytes)", cover.id, user_id, len(image))
        return cover

    def get_cover(self, cover_id: UUID) -> Cover:
        cover = self.storage.get_cover(cover_id)
        if cover is None:
            raise CoverNotFoundError(f"Cover {cover_id} not found")
        return cover

    def list_covers(self, user_id: str) -> list[Cover]:
        return self.storage.list_covers(owner_id=user_id)
