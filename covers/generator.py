import base64
import binascii
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from ledger.errors import CoverGenerationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-image-1"
DEFAULT_SIZE = "1024x1536"


class ImageGenerator:
    def generate(self, prompt: str) -> bytes:
        raise NotImplementedError


class OpenAIImageGenerator(ImageGenerator):
    """OpenAI Images API. Failures are not retried."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        size: str = DEFAULT_SIZE,
        client: Optional[OpenAI] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.size = size
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def generate(self, prompt: str) -> bytes:
        try:
            resp = self.client.images.generate(model=self.model, prompt=prompt, size=self.size, n=1)
        except OpenAIError as e:
            logger.error("Image generation failed: %s", e)
            raise CoverGenerationError(f"Image generation failed: {e}") from e

        if not resp.data or not resp.data[0].b64_json:
            raise CoverGenerationError("No image data received from the image API")
        try:
            return base64.b64decode(resp.data[0].b64_json)
        except (binascii.Error, ValueError) as e:
            raise CoverGenerationError("Image API returned undecodable data") from e
