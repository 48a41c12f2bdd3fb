"""Model catalog collaborator: per-model backend, budget, prompt and source."""

import json
from collections.abc import Iterable, Iterator
from pathlib import Path

from pocket_chat.catalog.models import BackendKind, ModelDescriptor
from pocket_chat.core.logging import get_logger

logger = get_logger(__name__)

GEMMA_SYSTEM_PROMPT = (
    "You are Gemma, an on-device assistant. Answer user questions directly with "
    "a short, factual reply. Do not repeat phrases or re-state that you are "
    "answering; simply provide the response and stop."
)

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (
    ModelDescriptor(
        id="lfm2-350m",
        display_name="LFM2 350M",
        provider="LiquidAI",
        backend=BackendKind.CONVERSATION,
        context_window=4096,
        description="Smallest LFM2 text model; fastest on-device option",
    ),
    ModelDescriptor(
        id="lfm2-700m",
        display_name="LFM2 700M",
        provider="LiquidAI",
        backend=BackendKind.CONVERSATION,
        context_window=4096,
        description="Balanced quality vs size",
    ),
    ModelDescriptor(
        id="lfm2-1.2b",
        display_name="LFM2 1.2B",
        provider="LiquidAI",
        backend=BackendKind.CONVERSATION,
        context_window=4096,
        description="Higher quality; larger footprint",
    ),
    ModelDescriptor(
        id="gemma3-270m",
        display_name="Gemma 3 270M IT",
        provider="Google",
        backend=BackendKind.CONTAINER,
        context_window=8192,
        system_prompt=GEMMA_SYSTEM_PROMPT,
        primary_file="model.safetensors",
        description="Instruction-tuned Gemma 3 on the container backend",
    ),
    ModelDescriptor(
        id="gemma3-1b",
        display_name="Gemma 3 1B IT",
        provider="Google",
        backend=BackendKind.CONTAINER,
        context_window=8192,
        system_prompt=GEMMA_SYSTEM_PROMPT,
        primary_file="model.safetensors",
        description="Larger Gemma 3 instruction-tuned model",
    ),
    ModelDescriptor(
        id="gemma3n-e2b",
        display_name="Gemma 3n E2B IT",
        provider="Google",
        backend=BackendKind.CONTAINER,
        context_window=32768,
        system_prompt=GEMMA_SYSTEM_PROMPT,
        primary_file="model.safetensors",
        description="Gemma 3n E2B on the container backend",
    ),
)


class ModelCatalog:
    """Read-only lookup of model descriptors by identifier."""

    def __init__(self, models: Iterable[ModelDescriptor] = DEFAULT_MODELS) -> None:
        self._models: dict[str, ModelDescriptor] = {}
        for model in models:
            self._models[model.id] = model

    @classmethod
    def from_file(cls, path: Path) -> "ModelCatalog":
        """Load a catalog from a JSON file holding a list of descriptors."""
        raw = json.loads(path.read_text(encoding="utf-8"))
        models = [ModelDescriptor.model_validate(item) for item in raw]
        logger.info("catalog_loaded", path=str(path), count=len(models))
        return cls(models)

    def get(self, model_id: str) -> ModelDescriptor | None:
        return self._models.get(model_id)

    def require(self, model_id: str) -> ModelDescriptor:
        """Get a descriptor or raise KeyError for unknown identifiers."""
        model = self.get(model_id)
        if model is None:
            raise KeyError(model_id)
        return model

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models
