import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from .llm import LLMClient, extract_json
from .models import Aesthetic
from .prompts import AESTHETIC_PROMPT_TEMPLATE, ANALYSIS_PROMPT_TEMPLATE, SUMMARY_PROMPT_TEMPLATE

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "A compelling story worth reading."
DEFAULT_VIBE = "A unique reading experience."
FALLBACK_AESTHETIC = Aesthetic.CONTEMPORARY.value

# cinematic is a rendering default, not a category a book is classified into
BOOK_AESTHETICS = [a.value for a in Aesthetic if a is not Aesthetic.CINEMATIC]


class BookInput(BaseModel):
    title: str = ""
    author: str = "Unknown"
    description: str = ""
    genres: List[str] = Field(default_factory=list)


class BookAnalysis(BaseModel):
    summary: str
    tropes: List[str]
    aesthetic: str
    vibe_collage: str = Field(serialization_alias="vibeCollage")


def normalize_aesthetic(raw: Optional[str]) -> str:
    aesthetic = (raw or "").strip().strip(".\"'").lower()
    if aesthetic in BOOK_AESTHETICS:
        return aesthetic
    # closest match on the distinctive words
    if "dark" in aesthetic and "academia" in aesthetic:
        return Aesthetic.DARK_ACADEMIA.value
    if "paranormal" in aesthetic and "romance" in aesthetic:
        return Aesthetic.PARANORMAL_ROMANCE.value
    if "cozy" in aesthetic and "fantasy" in aesthetic:
        return Aesthetic.COZY_FANTASY.value
    return FALLBACK_AESTHETIC


async def analyze_book(llm: LLMClient, book: BookInput) -> BookAnalysis:
    prompt = ANALYSIS_PROMPT_TEMPLATE.format(
        title=book.title,
        author=book.author,
        description=book.description,
        genres=", ".join(book.genres),
    )
    data = extract_json(await llm.generate_json_like(prompt), kind="object")
    if data is None:
        logger.warning("No JSON found in analysis response, using defaults")
        data = {}

    tropes = data.get("tropes")
    return BookAnalysis(
        summary=str(data.get("summary") or book.description[:250] or DEFAULT_SUMMARY),
        tropes=[str(t) for t in tropes] if isinstance(tropes, list) else [],
        aesthetic=normalize_aesthetic(data.get("aesthetic")),
        vibe_collage=str(data.get("vibeCollage") or DEFAULT_VIBE),
    )


async def recommend_aesthetic(llm: LLMClient, book: BookInput) -> str:
    prompt = AESTHETIC_PROMPT_TEMPLATE.format(
        title=book.title,
        description=book.description,
        genres=", ".join(book.genres),
    )
    return normalize_aesthetic(await llm.generate_text(prompt))


async def generate_summary(llm: LLMClient, book: BookInput) -> str:
    prompt = SUMMARY_PROMPT_TEMPLATE.format(title=book.title, description=book.description)
    summary = (await llm.generate_text(prompt)).strip()
    return summary or "A compelling story waiting to be discovered."
