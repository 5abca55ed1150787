"""
AI Book Cover Generation

Turns the cover form (title, author, genre, mood, keywords, palette) into an
image prompt, calls the image API and stores the result as a downloadable
cover. Generation never touches download credits.
"""

from .generator import ImageGenerator, OpenAIImageGenerator
from .prompt import build_prompt
from .service import CoverService

__all__ = [
    "ImageGenerator",
    "OpenAIImageGenerator",
    "build_prompt",
    "CoverService",
]
