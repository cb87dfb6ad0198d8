from gateway.core.models.catalog import MODEL_CATALOG, ModelEntry, ModelMeta, ProviderName
from gateway.core.models.registry import ModelRegistry

__all__ = ["MODEL_CATALOG", "ModelEntry", "ModelMeta", "ModelRegistry", "ProviderName"]
