"""
Declared extraction shapes.

Each shape is a strict pydantic model: required keys must be present,
declared types must match without coercion, and enumerated fields only
accept their allowed values. Every shape also knows how to build its
deterministic fallback from the prompt context.
"""

import re
from typing import TYPE_CHECKING, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

if TYPE_CHECKING:
    from .extractor import PromptContext

MAX_LIST_ITEMS = 20

_HUNGARIAN_HINTS = re.compile(
    r"\bhu\b|magyar|szia|tetel|t[eé]tel|vizsga|erettsegi|[áéíóöőúüű]",
    re.IGNORECASE,
)
_INLINE_MATH = re.compile(r"\$\$[\s\S]*?\$\$|\$[^$]*\$")


def detect_language(text: str) -> str:
    """Best-effort "hu"/"en" guess used for fallbacks."""
    return "hu" if _HUNGARIAN_HINTS.search(text or "") else "en"


def _clean_items(items: List[str]) -> List[str]:
    cleaned = [item.strip() for item in items if item and item.strip()]
    return cleaned[:MAX_LIST_ITEMS]


class ExtractionSchema(BaseModel):
    """Base class for shapes the extractor can produce."""

    model_config = ConfigDict(strict=True, extra="ignore")

    @classmethod
    def fallback(cls, context: "PromptContext") -> "ExtractionSchema":
        """Schema-conformant default used when every attempt fails."""
        raise NotImplementedError(f"{cls.__name__} does not define a fallback")


class AnswerPayload(ExtractionSchema):
    """Tutor answer: markdown for display plus a speech-friendly version."""

    display: str
    speech: str
    language: str

    @model_validator(mode="after")
    def backfill_empty_fields(self) -> "AnswerPayload":
        if not self.display:
            self.display = self.speech
        if not self.speech:
            self.speech = _INLINE_MATH.sub("", self.display).strip()
        return self

    @classmethod
    def fallback(cls, context: "PromptContext") -> "AnswerPayload":
        if _language_of(context) == "hu":
            text = "Most nem sikerült választ készíteni. Kérlek, próbáld újra."
            language = "Hungarian"
        else:
            text = "I could not prepare an answer right now. Please try again."
            language = "English"
        return cls(display=text, speech=text, language=language)


class MaterialExtract(ExtractionSchema):
    """Study material read from uploaded images."""

    extracted: str
    key_topics: List[str]
    tasks_found: List[str]
    language: Literal["hu", "en"]

    @field_validator("extracted")
    @classmethod
    def strip_extracted(cls, value: str) -> str:
        return value.strip()

    @field_validator("key_topics", "tasks_found")
    @classmethod
    def cap_items(cls, value: List[str]) -> List[str]:
        return _clean_items(value)

    @classmethod
    def fallback(cls, context: "PromptContext") -> "MaterialExtract":
        return cls(
            extracted=context.user.strip(),
            key_topics=[],
            tasks_found=[],
            language=_language_of(context),
        )


class TitledList(ExtractionSchema):
    """A titled list of short items (vocabulary, steps, practice prompts)."""

    title: str
    items: List[str]

    @field_validator("items")
    @classmethod
    def cap_items(cls, value: List[str]) -> List[str]:
        return _clean_items(value)

    @classmethod
    def fallback(cls, context: "PromptContext") -> "TitledList":
        title = "Jegyzet" if _language_of(context) == "hu" else "Notes"
        return cls(title=title, items=[])


def _language_of(context: "PromptContext") -> str:
    hint: Optional[str] = context.language
    if hint:
        return "hu" if hint.lower() in ("hu", "hungarian", "magyar") else "en"
    return detect_language(context.user)
