import copy
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel

from medflow.errors import UnknownFieldError

S = TypeVar("S", bound=BaseModel)


def merge(current: Mapping[str, Any] | None, patch: Mapping[str, Any] | None) -> dict[str, Any]:
    """Apply a partial update to a section without dropping sibling fields.

    Top-level keys in ``patch`` overwrite ``current``. When both sides hold a
    mapping for the same key the two are combined one level deep, so patching
    ``{"flags": {"icterus": True}}`` keeps every other flag. Lists are
    replaced wholesale; callers build the full list themselves.

    Missing or ``None`` inputs are treated as empty mappings. The inputs are
    never modified.
    """
    result: dict[str, Any] = dict(current or {})
    for key, value in (patch or {}).items():
        existing = result.get(key)
        if isinstance(value, Mapping) and isinstance(existing, Mapping):
            result[key] = {**existing, **value}
        else:
            result[key] = value
    return copy.deepcopy(result)


def merge_section(section: S, patch: Mapping[str, Any] | BaseModel, name: str = "") -> S:
    """Merge ``patch`` into a schema'd section and re-validate the result.

    Every top-level key of the patch must be a declared field of the section
    model; nested sub-maps are checked by the section's own validation.
    """
    model = type(section)
    if isinstance(patch, BaseModel):
        patch = patch.model_dump(exclude_unset=True)

    unknown = [key for key in patch if key not in model.model_fields]
    if unknown:
        raise UnknownFieldError(name or model.__name__, unknown)

    merged = merge(section.model_dump(), patch)
    return model.model_validate(merged)
