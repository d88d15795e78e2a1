"""
Loading of model configurations and documents from YAML or JSON files.

JSON documents are valid YAML, so both formats go through ``yaml.safe_load``.
A configuration file either holds a full model configuration (with an
``entities`` key) or just the mapping of model names to models.

Usage::

    from modelguard.loader import ModelConfigurationLoader

    loader = ModelConfigurationLoader()
    configuration = loader.load(Path("models.yaml"))
    models = loader.load_models(Path("models.yaml"))
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Tuple

import yaml

from modelguard.models import ModelConfiguration
from modelguard.resolver import Models, resolve_models

logger = logging.getLogger(__name__)


def _read(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    with open(path) as fh:
        return yaml.safe_load(fh)


def _to_configuration(raw: Any, source: str) -> ModelConfiguration:
    if not isinstance(raw, dict):
        raise TypeError(
            f"Expected YAML mapping at root of {source}, got {type(raw).__name__}"
        )
    if "entities" not in raw:
        raw = {"entities": raw}
    return ModelConfiguration.model_validate(raw)


class ModelConfigurationLoader:
    """Model configuration loader with per-path caching.

    Resolved models are cached alongside the configuration so repeated
    validations against the same file resolve the catalog only once.
    """

    _cache: ClassVar[Dict[str, Tuple[ModelConfiguration, Models]]] = {}

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the configuration cache (useful in tests)."""
        cls._cache.clear()

    def _load(self, path: Path) -> Tuple[ModelConfiguration, Models]:
        key = str(path.resolve())
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("%s cache hit: %s", type(self).__name__, key)
            return cached

        configuration = _to_configuration(_read(path), str(path))
        models = resolve_models(configuration)
        self._cache[key] = (configuration, models)
        logger.debug("Loaded %d models from %s", len(models), key)
        return configuration, models

    def load(self, path: Path) -> ModelConfiguration:
        """Load a model configuration.

        Raises:
            FileNotFoundError: If the file does not exist.
            TypeError: If the YAML root is not a mapping.
            yaml.YAMLError: If the file contains invalid YAML.
            pydantic.ValidationError: If the configuration is malformed.
            ConfigurationError: If the models can not be resolved.
        """
        return self._load(path)[0]

    def load_models(self, path: Path) -> Models:
        """Load and resolve the models of a configuration file."""
        return self._load(path)[1]

    def load_from_string(self, yaml_str: str) -> ModelConfiguration:
        """Load a model configuration from a YAML string (convenience for testing)."""
        return _to_configuration(yaml.safe_load(yaml_str), "string")


def load_documents(path: Path) -> List[Dict[str, Any]]:
    """Load one document (a mapping) or a list of documents from a file."""
    raw = _read(path)
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, dict) for item in raw):
        return raw
    raise TypeError(f"Expected a document or a list of documents in {path}")


def load_document(path: Path) -> Dict[str, Any]:
    """Load exactly one document from a file."""
    documents = load_documents(path)
    if len(documents) != 1:
        raise TypeError(f"Expected exactly one document in {path}, got {len(documents)}")
    return documents[0]
