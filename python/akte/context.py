"""
Placeholder context: the string replacements used for substitution and the
typed values used for condition evaluation.
"""

import json
from collections.abc import Mapping, MutableMapping
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterator, Optional, Union

import structlog

logger = structlog.get_logger(__name__)


class CaseInsensitiveDict(MutableMapping):
    """
    Mapping keyed by the lower-cased key.
    Iteration yields keys in the spelling they were last set with.
    """

    def __init__(self, data: Optional[Mapping] = None, **kwargs):
        self._store: Dict[str, tuple] = {}
        if data:
            self.update(data)
        if kwargs:
            self.update(kwargs)

    def __setitem__(self, key: str, value: Any):
        self._store[key.lower()] = (key, value)

    def __getitem__(self, key: str) -> Any:
        return self._store[key.lower()][1]

    def __delitem__(self, key: str):
        del self._store[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._store

    def copy(self) -> "CaseInsensitiveDict":
        return CaseInsensitiveDict(dict(self.items()))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({dict(self.items())!r})"


def format_value(value: Any) -> str:
    """
    Renders a typed value as replacement text.
    None -> "", bools as Ja/Nee, dates as dd-mm-yyyy, non-integral numbers with two decimals.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Ja" if value else "Nee"
    if isinstance(value, datetime):
        return value.strftime("%d-%m-%Y")
    if isinstance(value, date):
        return value.strftime("%d-%m-%Y")
    if isinstance(value, (Decimal, float)):
        if float(value).is_integer():
            return str(int(value))
        return f"{value:.2f}"
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(item) for item in value)
    return str(value)


class PlaceholderContext:
    """
    replacements: case-insensitive str -> str map used by substitution and pruning.
    values: case-insensitive typed map used by the condition evaluator.
    Every replacement is also present in values.
    """

    def __init__(
        self,
        replacements: Optional[Mapping[str, str]] = None,
        values: Optional[Mapping[str, Any]] = None,
    ):
        self.replacements = CaseInsensitiveDict()
        self.values = CaseInsensitiveDict(values or {})
        for key, text in (replacements or {}).items():
            text = "" if text is None else str(text)
            self.replacements[key] = text
            if key not in self.values:
                self.values[key] = text

    def set(self, key: str, text: Optional[str], value: Any = None):
        """Stores a replacement. The typed value defaults to the text itself."""
        text = "" if text is None else str(text)
        self.replacements[key] = text
        self.values[key] = text if value is None else value

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.replacements.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self.replacements

    def __len__(self) -> int:
        return len(self.replacements)

    @classmethod
    def from_values(cls, mapping: Mapping[str, Any]) -> "PlaceholderContext":
        context = cls()
        for key, value in mapping.items():
            context.set(key, format_value(value), value)
        return context

    @classmethod
    def from_json(cls, payload: Union[str, bytes, Mapping[str, Any]]) -> "PlaceholderContext":
        """
        Accepts {"replacements": {...}, "values": {...}} or a flat mapping of typed values.
        Raises ValueError on anything else.
        """
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                raise ValueError(f"Context is not valid JSON: {e}") from e

        if not isinstance(payload, Mapping):
            raise ValueError("Context must be a JSON object")

        if "replacements" in payload and isinstance(payload["replacements"], Mapping):
            values = payload.get("values") or {}
            if not isinstance(values, Mapping):
                raise ValueError("Context 'values' must be a JSON object")
            replacements = {k: format_value(v) for k, v in payload["replacements"].items()}
            return cls(replacements, values)

        return cls.from_values(payload)

    def __repr__(self) -> str:
        return f"PlaceholderContext(replacements={len(self.replacements)}, values={len(self.values)})"
