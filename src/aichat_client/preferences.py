"""Persisted model selection for this device."""

import json
import logging

from .config import MODEL_PREFERENCE_KEY
from .core import ModelConfig, ModelPreference, parse_iso, utc_now
from .models import FALLBACK_MODELS, resolve_model_id
from .storage import StorageError, StoragePort

logger = logging.getLogger(__name__)


class PreferenceStore:
    """Reads and writes the single ``{selectedModelId, lastUpdated}`` record."""

    def __init__(self, storage: StoragePort):
        self.storage = storage

    def load(self) -> ModelPreference | None:
        """Return the saved preference, or None if absent or unreadable."""
        try:
            raw = self.storage.get(MODEL_PREFERENCE_KEY)
            if not raw:
                return None
            data = json.loads(raw)
            selected = data.get("selectedModelId")
        except (StorageError, ValueError, AttributeError) as e:
            logger.error("Failed to load model preference: %s", e)
            return None

        if not isinstance(selected, str) or not selected:
            return None
        return ModelPreference(
            selected_model_id=selected,
            last_updated=parse_iso(data.get("lastUpdated")) or utc_now(),
        )

    def get_model_preference(self, models: list[ModelConfig] | None = None) -> str:
        """Return the saved model id if still available, else the default."""
        models = models or FALLBACK_MODELS
        preference = self.load()
        return resolve_model_id(models, preference.selected_model_id if preference else None)

    def save_model_preference(self, model_id: str) -> None:
        preference = ModelPreference(selected_model_id=model_id)
        try:
            self.storage.set(MODEL_PREFERENCE_KEY, json.dumps(preference.to_dict()))
        except StorageError as e:
            logger.error("Failed to save model preference: %s", e)

    def clear_model_preference(self) -> None:
        try:
            self.storage.remove(MODEL_PREFERENCE_KEY)
        except StorageError as e:
            logger.error("Failed to clear model preference: %s", e)
