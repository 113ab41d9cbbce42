"""FastAPI web server for aichat-client."""

import json
import logging
import re
from collections.abc import AsyncIterator

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .backends import get_storage
from .config import get_max_duration
from .conversations import ConversationStore
from .core import ROLES, Conversation, Message, ModelConfig, format_iso, utc_now
from .errors import ChatError, EmptyMessagesError, InvalidModelIdError, ValidationError
from .models import is_valid_model_id, load_models, resolve_model_id
from .preferences import PreferenceStore
from .storage import StoragePort
from .transport import ChatTransport, NanoGPTTransport, iterate_with_deadline

logger = logging.getLogger(__name__)

app = FastAPI(title="aichat-client", version="0.1.0")

# Lazily created singletons (populated on first request)
_storage: StoragePort | None = None
_transport: ChatTransport | None = None

_MODEL_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:/@+-]{0,199}$")


def _get_storage() -> StoragePort:
    global _storage
    if _storage is None:
        _storage = get_storage()
        logger.info("Using %s storage", _storage.name)
    return _storage


def _get_transport() -> ChatTransport:
    global _transport
    if _transport is None:
        _transport = NanoGPTTransport()
        logger.info("Created model transport %s", type(_transport).__name__)
    return _transport


def _get_store() -> ConversationStore:
    return ConversationStore(_get_storage())


def _get_preferences() -> PreferenceStore:
    return PreferenceStore(_get_storage())


def _conversation_summary(conversation: Conversation) -> dict:
    """Conversation fields for list views (messages omitted)."""
    return {
        "id": conversation.id,
        "title": conversation.title,
        "messageCount": len(conversation.messages),
        "createdAt": format_iso(conversation.created_at),
        "updatedAt": format_iso(conversation.updated_at),
    }


def resolve_model_header(model_id: str | None, models: list[ModelConfig]) -> str:
    """Return the model to use for a request's ``x-model-id`` header.

    Absent → default; malformed → :class:`InvalidModelIdError`; well-formed
    but unknown → default, with a warning.
    """
    if not model_id:
        return resolve_model_id(models)
    if not _MODEL_ID_PATTERN.match(model_id):
        raise InvalidModelIdError(f"Malformed model id: {model_id[:100]!r}")
    if not is_valid_model_id(models, model_id):
        logger.warning("Invalid model ID requested: %s, using default", model_id)
        return resolve_model_id(models)
    return model_id


class CreateConversationBody(BaseModel):
    firstMessage: str | None = None


class RenameConversationBody(BaseModel):
    title: str


class ModelPreferenceBody(BaseModel):
    selectedModelId: str


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


# ── Routes ───────────────────────────────────────────────────────


@app.get("/api/health")
async def health():
    """Health check for container orchestration and monitoring."""
    return {"status": "healthy", "timestamp": format_iso(utc_now())}


@app.get("/api/models")
async def get_models():
    """Return the model registry, with any loading warning."""
    models, error = await run_in_threadpool(load_models)
    data = {"models": [m.to_dict() for m in models]}
    if error:
        data["error"] = error
    return data


@app.post("/api/chat")
async def chat(request: Request, x_model_id: str | None = Header(None)):
    """Stream a reply to ``{"messages": [...]}`` as server-sent events."""
    transport = _get_transport()
    transport.validate_credentials()

    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")

    raw_messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(raw_messages, list) or not raw_messages:
        raise EmptyMessagesError()

    messages = [
        Message.from_dict(m) for m in raw_messages
        if isinstance(m, dict) and m.get("role") in ROLES
    ]
    if not messages:
        raise EmptyMessagesError("No valid messages provided")

    models, _ = await run_in_threadpool(load_models)
    model_id = resolve_model_header(x_model_id, models)
    return StreamingResponse(
        _event_stream(transport, messages, model_id),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Model-Id": model_id},
    )


@app.get("/api/conversations")
async def list_conversations():
    return [_conversation_summary(c) for c in _get_store().get_all()]


@app.post("/api/conversations", status_code=201)
async def create_conversation(body: CreateConversationBody | None = None):
    first_message = body.firstMessage if body else None
    return _get_store().create(first_message).to_dict()


@app.get("/api/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    conversation = _get_store().get(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation.to_dict()


@app.patch("/api/conversations/{conversation_id}")
async def rename_conversation(conversation_id: str, body: RenameConversationBody):
    conversation = _get_store().rename(conversation_id, body.title)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation.to_dict()


@app.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    if not _get_store().delete(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"deleted": conversation_id}


@app.get("/api/preferences/model")
async def get_model_preference():
    models, _ = await run_in_threadpool(load_models)
    return {"selectedModelId": _get_preferences().get_model_preference(models)}


@app.put("/api/preferences/model")
async def put_model_preference(body: ModelPreferenceBody):
    models, _ = await run_in_threadpool(load_models)
    if not is_valid_model_id(models, body.selectedModelId):
        raise HTTPException(status_code=400, detail=f"Unknown model: {body.selectedModelId}")
    _get_preferences().save_model_preference(body.selectedModelId)
    return {"selectedModelId": body.selectedModelId}


async def _event_stream(
    transport: ChatTransport,
    messages: list[Message],
    model_id: str,
) -> AsyncIterator[str]:
    """Serialize transport events as SSE lines, ending with ``[DONE]``."""
    try:
        async for event in iterate_with_deadline(transport.stream(messages, model_id), get_max_duration()):
            yield f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"
    except ChatError as e:
        logger.error("Chat stream failed for model %s: %s", model_id, e.message)
        yield f"data: {json.dumps({'type': 'error', 'errorText': e.message})}\n\n"
    except Exception:
        logger.exception("Chat API error")
        error = {"type": "error", "errorText": ChatError.default_message}
        yield f"data: {json.dumps(error)}\n\n"
    yield "data: [DONE]\n\n"
