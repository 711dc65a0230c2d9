"""FastAPI endpoints for the Zaytoon AI relay.

POST /ai-response - relay a text prompt through a persona-seeded chat session
POST /ai-response-with-image - relay an uploaded image plus prompt
GET /health - component health check
"""

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from zaytoon.api.schemas import ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from zaytoon.core.errors import ExternalServiceError, InputValidationError
from zaytoon.core.uploads import (
    MULTIPART_OVERHEAD,
    StoredUpload,
    discard_upload,
    is_writable,
    limited_request,
    read_upload,
    store_upload,
)

logger = structlog.get_logger(__name__)

router = APIRouter()

PROMPT_REQUIRED = "Prompt is required."
NO_IMAGE = "No image uploaded."
UNEXPECTED_FIELD = "Unexpected field"
CHAT_FAILED = "An error occurred while processing your request."
IMAGE_FAILED = "Failed to generate response with image."

IMAGE_FIELD = "image"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid input"},
    500: {"model": ErrorResponse, "description": "Model call or server failure"},
}


@router.post("/ai-response", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def ai_response(req: Request):
    """Relay a text prompt: validate -> fresh chat session -> reply."""
    start = time.monotonic()
    body = await _read_body(req)
    prompt = _prompt_from(body)

    logger.info("chat.request", prompt_len=len(prompt))

    try:
        text = await req.app.state.relay.chat(prompt)
    except ExternalServiceError as e:
        logger.error("chat.relay_failed", error=str(e))
        raise ExternalServiceError(CHAT_FAILED) from e

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info("chat.response", latency_ms=latency_ms, response_len=len(text))
    return ChatResponse(response=text)


@router.post("/ai-response-with-image", response_model=ChatResponse, responses=ERROR_RESPONSES)
async def ai_response_with_image(req: Request):
    """Relay an image plus prompt: parse -> store -> model call -> delete upload."""
    start = time.monotonic()
    settings = req.app.state.settings

    upload_request = limited_request(req, settings.max_upload_bytes + MULTIPART_OVERHEAD)
    try:
        form = await upload_request.form()
    except MultiPartException as e:
        raise InputValidationError(e.message) from e
    except StarletteHTTPException as e:
        # Starlette converts multipart errors to HTTPException inside an app
        raise InputValidationError(str(e.detail)) from e

    try:
        image = _single_image(form)
        stored = await store_upload(image, settings.upload_dir, settings.max_upload_bytes)
        try:
            prompt = form.get("prompt")
            if not isinstance(prompt, str) or not prompt:
                logger.warning("vision.missing_prompt", storage_name=stored.storage_name)
                raise InputValidationError(PROMPT_REQUIRED)

            logger.info("vision.request", prompt_len=len(prompt),
                        storage_name=stored.storage_name, size=stored.size)
            text = await _relay_image(req, stored, prompt)
        finally:
            await discard_upload(stored)
    finally:
        await form.close()

    latency_ms = int((time.monotonic() - start) * 1000)
    logger.info("vision.response", latency_ms=latency_ms, response_len=len(text))
    return ChatResponse(response=text)


@router.get("/health", response_model=HealthResponse)
def health(req: Request):
    """Check that the model key is configured and scratch storage is writable."""
    components = {
        "gemini": "ok" if req.app.state.settings.api_key else "error",
        "uploads": "ok" if is_writable(req.app.state.settings.upload_dir) else "error",
    }
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, components=components)


async def _read_body(req: Request) -> dict:
    """Decode a JSON or urlencoded body into a dict; anything else is empty.

    Malformed JSON propagates to the global error handler.
    """
    content_type = req.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await req.json()
        return body if isinstance(body, dict) else {}
    if content_type.startswith("application/x-www-form-urlencoded"):
        form = await req.form()
        return dict(form)
    return {}


def _prompt_from(body: dict) -> str:
    try:
        prompt = ChatRequest.model_validate(body).prompt
    except ValidationError:
        prompt = None
    if not prompt:
        logger.warning("chat.missing_prompt")
        raise InputValidationError(PROMPT_REQUIRED)
    return prompt


def _single_image(form: FormData) -> UploadFile:
    """Return the one file sent under ``image``.

    Raises:
        InputValidationError: A file arrived under another field name, more
            than one image was sent, or no image was sent at all.
    """
    files = [(name, value) for name, value in form.multi_items() if isinstance(value, UploadFile)]
    if len(files) > 1 or any(name != IMAGE_FIELD for name, _ in files):
        raise InputValidationError(UNEXPECTED_FIELD)
    if not files:
        raise InputValidationError(NO_IMAGE)
    return files[0][1]


async def _relay_image(req: Request, stored: StoredUpload, prompt: str) -> str:
    try:
        image = await read_upload(stored)
        return await req.app.state.relay.generate_with_image(image, stored.mime_type, prompt)
    except (ExternalServiceError, OSError) as e:
        logger.error("vision.relay_failed", storage_name=stored.storage_name, error=str(e))
        raise ExternalServiceError(IMAGE_FAILED) from e
