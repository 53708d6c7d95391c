from typing import Optional

import structlog

from photoguide.core.errors import ClientInputError
from photoguide.services.model_client import GenerationModel

logger = structlog.get_logger(__name__)

# A bare request for the place guide rather than a specific question
FACTS_KEYWORDS = {"facts", "guide", "history"}

FACTS_TEMPLATE = """Write a short visitor guide for {place} using exactly these bullet sections:
- What it is: one sentence.
- History: 2 to 3 bullets with dates where known.
- Fun facts: 2 to 3 bullets.
- Visiting tips: 2 to 3 bullets (best time, tickets, nearby sights).
Keep it factual. If you are unsure about a detail, leave it out."""

QA_TEMPLATE = """You are a knowledgeable local guide for {place}.
Answer the visitor's question concisely (at most 6 sentences). If the answer is not known, say so.
Question: {message}"""


def is_facts_request(message: Optional[str]) -> bool:
    """Absent, empty or keyword-only messages ask for the facts guide."""
    if message is None:
        return True
    text = message.strip().lower()
    return text == "" or text in FACTS_KEYWORDS


def build_chat_prompt(
    place: str,
    message: Optional[str],
    photo_context: Optional[str] = None,
    facts_instruction: Optional[str] = None,
) -> str:
    if is_facts_request(message):
        prompt = (facts_instruction or FACTS_TEMPLATE).replace("{place}", place)
    else:
        prompt = QA_TEMPLATE.format(place=place, message=message.strip())
    if photo_context:
        prompt += f"\n\nThe visitor's photo shows: {photo_context}"
    return prompt


class ChatService:
    def __init__(self, model: GenerationModel):
        self.model = model

    async def answer(
        self,
        place: str,
        message: Optional[str] = None,
        photo_context: Optional[str] = None,
        facts_instruction: Optional[str] = None,
    ) -> str:
        if not place or not place.strip():
            raise ClientInputError("Missing 'place'.")
        place = place.strip()
        mode = "facts" if is_facts_request(message) else "qa"
        prompt = build_chat_prompt(place, message, photo_context, facts_instruction)
        text = await self.model.complete(prompt)
        logger.info("chat_answered", place=place, mode=mode, with_photo=bool(photo_context), chars=len(text))
        return text
