"""AI helpers backed by the Copilot SDK: smart-add extraction and biographies.

The client is the ``CopilotClient`` created in ``main.py``'s lifespan; any
object with the same ``create_session`` interface works.
"""

import asyncio
import json
import logging

from pydantic import ValidationError

from models import ExtractedPerson, Person

logger = logging.getLogger("familytree.ai")

BIOGRAPHY_FALLBACK = "Could not generate biography."

EXTRACTION_SYSTEM_PROMPT = """You extract genealogy records from free text.
Reply with a single JSON object and nothing else, using these keys:
- firstName (string, required)
- lastName (string, required)
- gender (required, one of "Male", "Female", "Other")
- birthDate (YYYY-MM-DD if possible, otherwise the text as written)
- birthPlace
- deathDate (YYYY-MM-DD if possible)
- deathPlace
- bio (a short summary of the text)
Omit keys you cannot determine. If the text does not describe a person, reply with {}."""

BIOGRAPHY_SYSTEM_PROMPT = """You write short, engaging biographies (max 150 words) for genealogy records.
The tone is respectful and historical. If dates are missing, focus on the name and legacy.
Do not invent specific facts that are not provided, but you may add general historical
context when a date is given."""


class AIServiceError(Exception):
    """The AI service could not be reached or did not answer in time."""


async def _complete(client, prompt: str, system_message: str, model: str, timeout: float) -> str:
    """Send one prompt in a fresh session and return the final assistant message."""
    if client is None:
        raise AIServiceError("AI client not initialized")

    try:
        session = await client.create_session({
            "model": model,
            "system_message": {"content": system_message},
        })
    except Exception as e:
        raise AIServiceError(f"Could not open AI session: {e}") from e

    done = asyncio.Event()
    response_content = ""
    error_message = None

    def on_event(event):
        nonlocal response_content, error_message
        event_type = event.type.value if hasattr(event.type, "value") else str(event.type)
        logger.debug(f"Session event: {event_type}")
        if event_type == "assistant.message":
            response_content = event.data.content or ""
        elif event_type == "session.error":
            error_message = getattr(event.data, "message", "unknown error")
            done.set()
        elif event_type == "session.idle":
            done.set()

    session.on(on_event)
    try:
        await session.send({"prompt": prompt})
        await asyncio.wait_for(done.wait(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AIServiceError(f"AI service did not answer within {timeout}s") from e
    except Exception as e:
        raise AIServiceError(f"AI request failed: {e}") from e
    finally:
        await session.destroy()

    if error_message:
        raise AIServiceError(f"AI service reported an error: {error_message}")
    return response_content


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


async def extract_person(client, text: str, model: str = "gpt-4.1", timeout: float = 60) -> ExtractedPerson | None:
    """
    Extract a person from free text.

    Returns:
        The extracted person, or None when nothing usable could be extracted

    Raises:
        AIServiceError: the AI service itself failed
    """
    if not text.strip():
        return None

    logger.info(f"Extracting person from text ({len(text)} chars)")
    reply = await _complete(client, f'Text: "{text}"', EXTRACTION_SYSTEM_PROMPT, model, timeout)

    try:
        data = json.loads(_strip_code_fence(reply))
    except json.JSONDecodeError:
        logger.warning(f"AI reply was not JSON: '{reply[:80]}'")
        return None
    if not isinstance(data, dict) or not data:
        logger.info("AI found no person in the text")
        return None

    try:
        extracted = ExtractedPerson.model_validate(data)
    except ValidationError as e:
        logger.warning(f"AI reply missing required fields: {e.error_count()} errors")
        return None

    if not (extracted.first_name.strip() and extracted.last_name.strip()):
        return None
    logger.info(f"Extracted {extracted.first_name} {extracted.last_name}")
    return extracted


async def generate_biography(client, person: Person, model: str = "gpt-4.1", timeout: float = 60) -> str:
    """
    Write a short biography for a person.

    Returns the biography, or BIOGRAPHY_FALLBACK when the service answered with nothing.

    Raises:
        AIServiceError: the AI service itself failed
    """
    prompt = f"""Details:
Name: {person.full_name}
Gender: {person.gender.value}
Born: {person.birth_date or 'Unknown'} at {person.birth_place or 'Unknown'}
Died: {person.death_date or 'Unknown'} at {person.death_place or 'Unknown'}"""

    logger.info(f"Generating biography for {person.id} ({person.full_name})")
    reply = await _complete(client, prompt, BIOGRAPHY_SYSTEM_PROMPT, model, timeout)
    return reply.strip() or BIOGRAPHY_FALLBACK
