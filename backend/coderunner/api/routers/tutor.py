from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from coderunner.api.deps import get_app_settings
from coderunner.core.config import Settings
import logging

router = APIRouter(prefix="/tutor", tags=["tutor"])
logger = logging.getLogger("tutor")

SYSTEM_PROMPT = (
    "You are a patient programming tutor. Explain concepts and bugs clearly, "
    "show short code examples when they help, and keep answers focused on the question."
)


class TutorRequest(BaseModel):
    prompt: str | None = None
    max_tokens: int = 800


class TutorResponse(BaseModel):
    response: str
    model: str


async def _complete(settings: Settings, prompt: str, max_tokens: int) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    logger.debug("Calling OpenAI model=%s chars=%d", settings.AI_MODEL, len(prompt))
    resp = await client.chat.completions.create(
        model=settings.AI_MODEL,
        messages=[
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        max_tokens=min(2048, max_tokens),
        temperature=0.3,
    )
    return (resp.choices[0].message.content or "").strip()


@router.post("", response_model=TutorResponse)
async def tutor(req: TutorRequest, settings: Settings = Depends(get_app_settings)):
    if not settings.OPENAI_API_KEY:
        raise HTTPException(500, "Missing OpenAI API key")
    if not req.prompt or not req.prompt.strip():
        raise HTTPException(400, "Prompt is required")
    try:
        text = await _complete(settings, req.prompt, req.max_tokens)
    except Exception as e:
        logger.exception("OpenAI tutor error: %s", e)
        raise HTTPException(500, str(e))
    return TutorResponse(response=text, model=settings.AI_MODEL)
