"""
Model Matcher

Selects the single model definition that prices a generation. Candidates are
filtered by regex match on the model name and by unit, then ranked:

  1. definitions owned by the generation's project beat system-maintained ones
  2. within an ownership tier, the latest start_date <= generation start wins
  3. undated definitions are the baseline, used only when no dated one applies
  4. remaining ties break on id so the result is deterministic
"""

import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.core.logging import get_logger
from app.core.timeutils import as_utc, utcnow
from app.models.model_definition import ModelDefinition
from app.models.usage import UsageUnit

logger = get_logger(__name__)

_INVALID = object()


class ModelMatcher:
    def __init__(self):
        self._patterns: Dict[str, object] = {}

    def _compile(self, pattern: str):
        compiled = self._patterns.get(pattern)
        if compiled is None:
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                logger.warning("model_pattern_invalid", pattern=pattern, error=str(e))
                compiled = _INVALID
            self._patterns[pattern] = compiled
        return compiled

    def _pattern_matches(self, definition: ModelDefinition, model_name: str) -> bool:
        compiled = self._compile(definition.match_pattern)
        if compiled is _INVALID:
            return False
        return compiled.search(model_name) is not None

    def candidates(
        self,
        definitions: Iterable[ModelDefinition],
        model_name: str,
        unit: UsageUnit,
        start_time: datetime,
    ) -> List[ModelDefinition]:
        """All definitions eligible for (model_name, unit, start_time), unranked."""
        start_time = as_utc(start_time)
        eligible = []
        for definition in definitions:
            if definition.unit != unit:
                continue
            if definition.start_date is not None and as_utc(definition.start_date) > start_time:
                continue
            if self._pattern_matches(definition, model_name):
                eligible.append(definition)
        return eligible

    def match(
        self,
        definitions: Iterable[ModelDefinition],
        model_name: Optional[str],
        unit: UsageUnit,
        start_time: Optional[datetime] = None,
        project_id: Optional[str] = None,
    ) -> Optional[ModelDefinition]:
        if not model_name:
            return None

        start_time = start_time or utcnow()
        eligible = [
            d for d in self.candidates(definitions, model_name, unit, start_time)
            if d.project_id is None or d.project_id == project_id
        ]
        if not eligible:
            logger.debug("model_match_none", model=model_name, unit=unit.value)
            return None

        best = min(eligible, key=_rank_key)
        logger.debug(
            "model_matched",
            model=model_name,
            unit=unit.value,
            model_id=best.id,
            candidates=len(eligible),
        )
        return best


def _rank_key(definition: ModelDefinition) -> Tuple[int, int, float, str]:
    ownership = 0 if definition.project_id is not None else 1
    if definition.start_date is None:
        return (ownership, 1, 0.0, definition.id)
    # Latest start_date first
    return (ownership, 0, -as_utc(definition.start_date).timestamp(), definition.id)
