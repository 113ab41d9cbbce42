"""Model registry: load, validate and resolve model descriptors.

The registry document is a JSON object ``{"models": [...]}`` read from a URL
or a local file. Loading never fails: any problem yields the built-in
fallback collection plus an advisory error string.
"""

import json
import logging
from pathlib import Path

import httpx

from .config import DEFAULT_MODEL, get_models_source
from .core import ModelConfig
from .errors import EmptyRegistryError

logger = logging.getLogger(__name__)

FALLBACK_MODELS: list[ModelConfig] = [
    ModelConfig(
        id=DEFAULT_MODEL,
        name="GPT OSS 120B",
        description="Open-weight reasoning model with tool use",
        capabilities=["chat", "reasoning", "tools"],
        max_tokens=131072,
        default=True,
    ),
    ModelConfig(
        id="deepseek-ai/DeepSeek-V3.1",
        name="DeepSeek V3.1",
        description="General purpose chat model with hybrid thinking",
        capabilities=["chat", "reasoning"],
        max_tokens=65536,
        default=False,
    ),
    ModelConfig(
        id="moonshotai/Kimi-K2-Instruct",
        name="Kimi K2 Instruct",
        description="Long-context instruction model",
        capabilities=["chat", "tools"],
        max_tokens=131072,
        default=False,
    ),
]


def is_valid_model_config(model: object) -> bool:
    """Return True if ``model`` has every required descriptor field.

    Unknown extra fields are ignored.
    """
    if not isinstance(model, dict):
        return False

    capabilities = model.get("capabilities")
    max_tokens = model.get("maxTokens")
    return (
        isinstance(model.get("id"), str)
        and len(model["id"]) > 0
        and isinstance(model.get("name"), str)
        and len(model["name"]) > 0
        and isinstance(model.get("description"), str)
        and isinstance(capabilities, list)
        and all(isinstance(c, str) for c in capabilities)
        and isinstance(max_tokens, (int, float))
        and not isinstance(max_tokens, bool)
        and max_tokens > 0
        and isinstance(model.get("default"), bool)
    )


def is_valid_models_collection(data: object) -> bool:
    if not isinstance(data, dict):
        return False
    models = data.get("models")
    return isinstance(models, list) and len(models) > 0 and all(is_valid_model_config(m) for m in models)


def load_models(
    source: str | None = None,
    client: httpx.Client | None = None,
) -> tuple[list[ModelConfig], str | None]:
    """Load the model registry from ``source`` (URL or path).

    Returns ``(models, error)``. ``error`` is None on full success, a warning
    when invalid entries were filtered out, or the reason the fallback
    collection was returned.
    """
    source = source or get_models_source()

    try:
        if source.startswith(("http://", "https://")):
            data, error = _fetch_document(source, client)
            if error:
                return list(FALLBACK_MODELS), error
        else:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
    except (httpx.HTTPError, OSError, ValueError) as e:
        logger.error("Error loading models from %s: %s", source, e)
        return list(FALLBACK_MODELS), f"Failed to load models: {e}"

    if is_valid_models_collection(data):
        return [ModelConfig.from_dict(m) for m in data["models"]], None

    logger.warning("Loaded model registry from %s has invalid structure", source)
    raw_models = data.get("models") if isinstance(data, dict) else None
    if isinstance(raw_models, list) and raw_models:
        valid = [m for m in raw_models if is_valid_model_config(m)]
        if valid:
            logger.warning("Returning %d of %d models that passed validation", len(valid), len(raw_models))
            return (
                [ModelConfig.from_dict(m) for m in valid],
                "Models validation warning: some models were filtered out",
            )

    return list(FALLBACK_MODELS), "Models configuration is malformed"


def find_model_by_id(models: list[ModelConfig], model_id: str) -> ModelConfig | None:
    for model in models:
        if model.id == model_id:
            return model
    return None


def get_default_model(models: list[ModelConfig]) -> ModelConfig:
    """Return the model flagged as default, else the first one."""
    if not models:
        raise EmptyRegistryError("get_default_model: models collection is empty")
    for model in models:
        if model.default:
            return model
    return models[0]


def is_valid_model_id(models: list[ModelConfig], model_id: str) -> bool:
    return any(m.id == model_id for m in models)


def filter_models_by_capability(models: list[ModelConfig], capability: str) -> list[ModelConfig]:
    return [m for m in models if capability in m.capabilities]


def resolve_model_id(models: list[ModelConfig], selected_id: str | None = None) -> str:
    """Return ``selected_id`` if it names a known model, else the default id."""
    if selected_id and is_valid_model_id(models, selected_id):
        return selected_id
    return get_default_model(models).id


# ── Private helpers ──────────────────────────────────────────────


def _fetch_document(url: str, client: httpx.Client | None) -> tuple[object, str | None]:
    """GET the registry document, bypassing caches."""
    headers = {"Accept": "application/json", "Cache-Control": "no-store"}
    if client is None:
        with httpx.Client(timeout=10.0) as own_client:
            response = own_client.get(url, headers=headers)
    else:
        response = client.get(url, headers=headers)

    if not response.is_success:
        logger.warning(
            "Failed to fetch model registry: %s %s", response.status_code, response.reason_phrase
        )
        return None, f"Failed to load models: HTTP {response.status_code}"

    return response.json(), None
