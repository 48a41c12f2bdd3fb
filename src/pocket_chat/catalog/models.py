"""Model catalog data types."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class BackendKind(str, Enum):
    """Which native inference capability a model runs on."""

    # Backend keeps its own multi-turn conversation object
    CONVERSATION = "conversation"
    # Backend is a stateless generate-from-messages container
    CONTAINER = "container"


class ModelDescriptor(BaseModel):
    """Catalog entry describing one model and how to load it.

    Attributes:
        id: Stable model identifier, used as the conversation's model key
        display_name: Human readable name
        provider: Model publisher
        backend: Backend kind the model must be loaded on
        context_window: Token budget ceiling for the model
        system_prompt: Optional system prompt injected at conversation start
        source: Default on-disk location of the model files
        served_model_name: Name the native server knows the model by
        primary_file: File that must exist inside a container model directory
        description: Short description for model pickers
    """

    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    provider: str = ""
    backend: BackendKind
    context_window: int = 4096
    system_prompt: str | None = None
    source: Path | None = None
    served_model_name: str | None = None
    primary_file: str | None = None
    description: str = ""

    @property
    def native_name(self) -> str:
        return self.served_model_name or self.id

    @property
    def cleaned_system_prompt(self) -> str | None:
        """System prompt with surrounding whitespace removed, None if blank."""
        if self.system_prompt is None:
            return None
        prompt = self.system_prompt.strip()
        return prompt or None
