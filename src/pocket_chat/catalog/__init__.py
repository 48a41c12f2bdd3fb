"""Model catalog collaborator."""

from pocket_chat.catalog.models import BackendKind, ModelDescriptor
from pocket_chat.catalog.registry import DEFAULT_MODELS, ModelCatalog

__all__ = ["BackendKind", "DEFAULT_MODELS", "ModelCatalog", "ModelDescriptor"]
