"""
StorytellerAgent — AI co-writer for dialogue lines and choice menus.

Reads the last few story log entries and asks Gemini for either one line of
dialogue for a character or a short menu of choices for the next player.
Whatever comes back is untrusted text: it is trimmed, length-capped and
turned into ordinary ``dialogue`` / ``choice`` log entries. Choice effects
are never taken from the model.
"""

import logging
from typing import List, Optional

from google import genai
from pydantic import BaseModel, ValidationError

from models.characters import Character
from models.session import SessionState
from models.story_log import Choice, ChoiceEntry, DialogueEntry
from tools.rate_limiter import gemini_limiter

logger = logging.getLogger('Storyteller')

HISTORY_WINDOW = 10
MAX_DIALOGUE_CHARS = 300
MAX_CHOICE_CHARS = 120
MAX_CHOICES = 3

# Stable identity prompt: goes in system_instruction (never changes)
STORYTELLER_IDENTITY = """You are an expert creative writer for a collaborative visual novel.

Several players take turns adding to one shared story. You help whoever
is holding the pen: sometimes by speaking as a character, sometimes by
offering the next player a few ways forward.

Style:
- Short, vivid, in-character. One idea per line.
- Move the story forward; never recap it.
- Never break the 4th wall. Never mention players, turns or the app.
"""


class _ChoiceText(BaseModel):
    text: str


class _ChoiceMenu(BaseModel):
    choices: List[_ChoiceText] = []


def build_context(state: SessionState, character: Optional[Character] = None,
                  instruction: str = "") -> str:
    """Prompt body: story title and rules, the character, recent dialogue."""
    lines = []
    for entry in state.story_log[-HISTORY_WINDOW:]:
        if isinstance(entry, DialogueEntry):
            speaker = state.find_character(entry.character_id)
            lines.append(f'{speaker.name if speaker else "Narrator"}: "{entry.text}"')
    history = "\n".join(lines) or "(The story has not started yet.)"

    parts = [f"STORY: {state.title}", f"TABLE RULES:\n{state.gm_rules}"]
    if character is not None:
        parts.append(f"YOUR CHARACTER:\nName: {character.name}\nBio: {character.bio or 'Unknown.'}")
    parts.append(f"RECENT HISTORY:\n{history}")
    parts.append(f"INSTRUCTION:\n{instruction}")
    return "\n\n".join(parts)


def clean_dialogue(text: str) -> str:
    """Trim, drop wrapping quotes, cap the length."""
    text = (text or "").strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "\"'":
        text = text[1:-1].strip()
    text = text.strip('"“”')
    if len(text) > MAX_DIALOGUE_CHARS:
        text = text[:MAX_DIALOGUE_CHARS].rstrip() + "…"
    return text


def parse_choices(raw_text: str) -> List[Choice]:
    """Model JSON → text-only choices. Anything unparseable gives an empty list."""
    raw_text = (raw_text or "").strip()
    # Strip markdown code fences if present
    if raw_text.startswith('```'):
        raw_text = raw_text.split('\n', 1)[1] if '\n' in raw_text else ""
        raw_text = raw_text.rsplit('```', 1)[0]
    try:
        menu = _ChoiceMenu.model_validate_json(raw_text)
    except ValidationError as e:
        logger.error(f"Choice menu failed validation: {e.error_count()} error(s)")
        logger.debug(f"Raw response: {raw_text[:500]}")
        return []

    choices = []
    for item in menu.choices:
        text = item.text.strip()[:MAX_CHOICE_CHARS]
        if text:
            choices.append(Choice(text=text))
    return choices[:MAX_CHOICES]


class StorytellerAgent:
    """Generates dialogue and choices from the recent story log."""

    def __init__(self, client, model_id: str = "gemini-2.5-flash"):
        self.client = client
        self.model_id = model_id

    async def generate_dialogue(self, state: SessionState, character: Character) -> str:
        """One line of dialogue for ``character``. Raises if the model gives nothing."""
        if not self.client:
            raise RuntimeError("Storyteller Agent not connected to model.")

        prompt = build_context(
            state, character,
            f"Based on the context, write a single line of dialogue for {character.name}. "
            "Be creative and move the story forward. Do not surround it with quotes.",
        )
        logger.info(f"Generating dialogue for {character.name}")
        await gemini_limiter.acquire()
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=genai.types.GenerateContentConfig(
                    system_instruction=STORYTELLER_IDENTITY,
                    temperature=0.9,  # Higher for creative lines
                    max_output_tokens=80,
                )
            )
        except Exception as e:
            logger.error(f"Dialogue generation failed: {e}", exc_info=True)
            raise

        text = clean_dialogue(response.text)
        if not text:
            raise RuntimeError("AI returned an empty response for dialogue.")
        return text

    async def generate_choices(self, state: SessionState) -> List[Choice]:
        """Two or three short choices for the next player (text only)."""
        if not self.client:
            return []

        prompt = build_context(
            state, None,
            "Based on the current situation, generate 2-3 interesting and distinct choices "
            "for the next player. The choices should be short action descriptions. "
            'Respond with JSON only: {"choices": [{"text": "..."}]}',
        )
        logger.info("Generating choices")
        await gemini_limiter.acquire()
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=genai.types.GenerateContentConfig(
                    system_instruction=STORYTELLER_IDENTITY,
                    temperature=0.8,
                    response_mime_type="application/json",
                )
            )
        except Exception as e:
            logger.error(f"Choice generation failed: {e}", exc_info=True)
            raise
        return parse_choices(response.text)

    async def dialogue_entry(self, state: SessionState, character: Character) -> DialogueEntry:
        text = await self.generate_dialogue(state, character)
        return DialogueEntry(character_id=character.id, text=text)

    async def choice_entry(self, state: SessionState) -> Optional[ChoiceEntry]:
        choices = await self.generate_choices(state)
        if not choices:
            return None
        return ChoiceEntry(choices=choices)
