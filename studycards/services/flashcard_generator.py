"""
Flashcard Generator - prompt construction and strict parsing of model output.
"""

import json

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from studycards.exceptions import InvalidAIOutputError
from studycards.models.api import GeneratedFlashcard
from studycards.services.llm_fallback import ModelFallbackClient

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are an expert educational content creator. Your task is to analyze study notes and create high-quality flashcards that promote active recall and effective learning.

Instructions:
1. Create between 5-20 flashcards based on the content length and complexity
2. Focus on key concepts, definitions, processes, and important details
3. Make questions specific and unambiguous
4. Ensure answers are concise but complete
5. Vary question types: definitions, examples, comparisons, applications
6. Use clear, educational language
7. Prioritize the most important information

Return your response as a JSON array of objects with this exact structure:
[
  {
    "question": "Clear, specific question that tests understanding",
    "answer": "Comprehensive but concise answer",
    "difficulty": 1-5 (1=basic recall, 5=complex application)
  }
]

Important: Return ONLY the JSON array, no additional text or explanation."""

_flashcard_list = TypeAdapter(list[GeneratedFlashcard])


def build_user_prompt(title: str, notes: str, description: str | None = None) -> str:
    """Build the user message for one set of notes."""
    description_line = f"Description: {description}" if description else ""
    return f"Create flashcards from these study notes:\n\nTitle: {title}\n{description_line}\n\nNotes:\n{notes}"


def parse_flashcards(raw_text: str) -> list[GeneratedFlashcard]:
    """
    Parse model output as a non-empty JSON array of flashcards.

    Nothing is coerced: a string difficulty or a missing answer is rejected.

    Raises:
        InvalidAIOutputError: Output is not a valid, non-empty flashcard array
    """
    if not raw_text or not raw_text.strip():
        raise InvalidAIOutputError("empty response")

    try:
        parsed = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise InvalidAIOutputError("response is not valid JSON") from e

    if not isinstance(parsed, list):
        raise InvalidAIOutputError("response is not a JSON array")
    if not parsed:
        raise InvalidAIOutputError("no flashcards generated from the provided notes")

    try:
        return _flashcard_list.validate_python(parsed)
    except PydanticValidationError as e:
        raise InvalidAIOutputError(f"{e.error_count()} invalid flashcard field(s)") from e


class FlashcardGenerator:
    """Turns study notes into validated flashcards through the fallback client."""

    def __init__(self, llm: ModelFallbackClient) -> None:
        self.llm = llm

    async def generate(
        self, title: str, notes: str, description: str | None = None
    ) -> list[GeneratedFlashcard]:
        raw_text = await self.llm.complete(
            SYSTEM_PROMPT, build_user_prompt(title, notes, description)
        )
        try:
            cards = parse_flashcards(raw_text)
        except InvalidAIOutputError:
            logger.warning("llm_output_rejected", response_length=len(raw_text or ""))
            raise

        logger.info("flashcards_parsed", count=len(cards))
        return cards
