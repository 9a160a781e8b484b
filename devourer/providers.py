"""Declarative metadata provider descriptors.

A descriptor is a JSON document shipped in `plugins/providers/` that tells
the resolver how to query one catalog and how to map its results::

    {
      "key": "myanimelist",
      "type": "metadata",
      "properties": {
        "library_type": "manga",
        "results_entity": "data",
        "search_array": {"field": "titles", "key": "title"},
        "search_fallback": "title"
      },
      "endpoints": {"title": "https://api.jikan.moe/v4/manga?q={{query}}"},
      "parser": {
        "title": "title",
        "genres": {"key": "genres", "value": "name"},
        "metadata_provider": {"key": "static", "value": "myanimelist"}
      },
      "postProcessing": {"authors": {"action": "to_array"}}
    }

Parser rules come in three shapes and are validated into tagged models:

- a string: copy the (dotted) source field
- ``{"key": <array field>, "value": <item field>}``: project a list of
  objects onto one of their fields
- ``{"key": "static", "value": <anything>}``: a constant
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError, model_validator

from .logging_config import get_logger

logger = get_logger(__name__)


class DirectField(BaseModel):
    kind: Literal["direct"] = "direct"
    source: str

    def apply(self, item: Dict[str, Any]) -> Any:
        return get_path(item, self.source)


class NestedProjection(BaseModel):
    kind: Literal["projection"] = "projection"
    key: str
    value: str

    def apply(self, item: Dict[str, Any]) -> List[Any]:
        values = get_path(item, self.key)
        if values is None:
            return []
        if not isinstance(values, list):
            values = [values]
        projected = []
        for entry in values:
            picked = get_path(entry, self.value) if isinstance(entry, dict) else entry
            if picked is not None:
                projected.append(picked)
        return projected


class StaticValue(BaseModel):
    kind: Literal["static"] = "static"
    value: Any = None

    def apply(self, item: Dict[str, Any]) -> Any:
        return self.value


MappingRule = Annotated[
    Union[DirectField, NestedProjection, StaticValue], Field(discriminator="kind")
]


class PostProcessing(BaseModel):
    action: Literal["to_array", "to_identifier", "to_isbn", "format"]
    # Identifier type for `to_identifier`, e.g. "ISBN_13"; defaults to the
    # upper-cased field name.
    type: Optional[str] = None
    # `format` only: a str.format template receiving the field as {value}.
    template: Optional[str] = None

    @model_validator(mode="after")
    def _template_required(self) -> "PostProcessing":
        if self.action == "format" and not self.template:
            raise ValueError("format post-processing needs a template")
        return self


class SearchArray(BaseModel):
    field: str
    key: str


class ResultFilter(BaseModel):
    """Drop results whose `field` (a value or a list) holds any of `values`."""

    field: str
    values: List[str]


class ProviderProperties(BaseModel):
    model_config = {"extra": "ignore"}

    library_type: Literal["book", "manga"]
    results_entity: str = ""
    search_array: Optional[SearchArray] = None
    search_fallback: Optional[str] = None
    exclude: Optional[ResultFilter] = None
    # Fields a result must carry to count as an exact title match.
    match_requires: List[str] = []


class ProviderDescriptor(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}

    key: str
    type: Literal["metadata"] = "metadata"
    name: Optional[str] = None
    properties: ProviderProperties
    endpoints: Dict[str, str]
    parser: Dict[str, MappingRule]
    post_processing: Dict[str, PostProcessing] = Field(
        default_factory=dict, alias="postProcessing"
    )

    @model_validator(mode="before")
    @classmethod
    def _tag_parser_rules(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("parser"), dict):
            return data
        data = dict(data)
        data["parser"] = {
            field: _tag_rule(field, rule) for field, rule in data["parser"].items()
        }
        return data

    def endpoint(self, selector: str) -> str:
        try:
            return self.endpoints[selector]
        except KeyError:
            raise ValueError(
                f"Provider {self.key!r} has no endpoint for selector {selector!r}"
            ) from None


def _tag_rule(field: str, rule: Any) -> Any:
    if isinstance(rule, str):
        return {"kind": "direct", "source": rule}
    if isinstance(rule, dict) and "kind" not in rule:
        if rule.get("key") == "static":
            return {"kind": "static", "value": rule.get("value")}
        if "key" in rule and "value" in rule:
            return {"kind": "projection", "key": rule["key"], "value": rule["value"]}
        raise ValueError(f"Parser rule for {field!r} needs 'key' and 'value'")
    return rule


def get_path(data: Any, dotted: str) -> Any:
    """Follow a dotted path through nested dicts (and list indexes).

    Example:
        >>> get_path({"a": {"b": [{"c": 1}]}}, "a.b.0.c")
        1
    """
    if not dotted:
        return data
    current = data
    for part in dotted.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


class ProviderRegistry:
    """Loads descriptors from a directory tree once and caches them by key."""

    def __init__(self, providers_dir: Path):
        self.providers_dir = Path(providers_dir)
        self._descriptors: Optional[Dict[str, ProviderDescriptor]] = None
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, ProviderDescriptor]:
        descriptors: Dict[str, ProviderDescriptor] = {}
        if not self.providers_dir.is_dir():
            logger.warning(f"Providers directory not found: {self.providers_dir}")
            return descriptors

        for path in sorted(self.providers_dir.rglob("*.json")):
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.error(f"Unreadable provider descriptor {path.name}: {exc}")
                continue
            if not isinstance(raw, dict) or raw.get("type") != "metadata":
                continue
            try:
                descriptor = ProviderDescriptor.model_validate(raw)
            except ValidationError as exc:
                logger.error(f"Invalid provider descriptor {path.name}: {exc}")
                continue
            descriptors[descriptor.key] = descriptor

        logger.debug(f"Loaded {len(descriptors)} metadata providers")
        return descriptors

    def all(self) -> Dict[str, ProviderDescriptor]:
        with self._lock:
            if self._descriptors is None:
                self._descriptors = self._load()
            return self._descriptors

    def get(self, key: str) -> Optional[ProviderDescriptor]:
        return self.all().get(key)

    def for_library_type(self, library_type: str) -> List[ProviderDescriptor]:
        return [
            d for d in self.all().values() if d.properties.library_type == library_type
        ]
