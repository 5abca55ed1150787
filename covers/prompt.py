from ledger.models import GenerateCoverRequest

COMPOSITION_GUIDE = (
    "The image should be suitable for a book cover with space for title and author text overlay. "
    "High quality, professional, artistic composition, 3:4 aspect ratio."
)


def build_prompt(request: GenerateCoverRequest) -> str:
    prompt = f"Create a professional book cover image for a {request.genre or 'fiction'} book"
    if request.keywords:
        prompt += f" featuring {request.keywords}"
    if request.mood:
        prompt += f" with a {request.mood} atmosphere"
    if request.color_palette:
        prompt += f" using {request.color_palette}"
    return f"{prompt}. {COMPOSITION_GUIDE}"
