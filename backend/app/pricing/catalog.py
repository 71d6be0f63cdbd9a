"""
System Model Catalogue

Loads the system-maintained model definitions from models.yaml. These are
upserted into the definition store at startup; projects add their own
definitions through the public API, which take priority when both match.
"""

from pathlib import Path
from typing import List

import yaml
from pydantic import ValidationError

from app.core.logging import get_logger
from app.models.model_definition import ModelDefinition

logger = get_logger(__name__)


def load_system_definitions(path: str) -> List[ModelDefinition]:
    p = Path(path)
    if not p.exists():
        logger.warning("models_config_missing", path=path)
        return []

    with open(p) as f:
        data = yaml.safe_load(f) or {}

    definitions: List[ModelDefinition] = []
    for entry in data.get("models", []):
        try:
            definition = ModelDefinition.model_validate({**entry, "projectId": None})
        except ValidationError as e:
            logger.error("system_model_invalid", entry=entry.get("id"), error=str(e))
            continue
        definitions.append(definition)

    ids = [d.id for d in definitions]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Duplicate model ids in {path}")

    logger.info("system_models_loaded", count=len(definitions))
    return definitions
