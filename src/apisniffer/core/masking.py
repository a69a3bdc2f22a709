"""
Data masking engine for captured headers and bodies.

Runs before an entry enters the ring buffer so no sensitive value is ever
stored, persisted or exported.
"""

from typing import Any, FrozenSet, Iterable, Optional

import structlog

logger = structlog.get_logger(__name__)

MASK_TOKEN = "***MASKED***"

DEFAULT_MASK_FIELDS: FrozenSet[str] = frozenset({
    "password",
    "token",
    "secret",
    "authorization",
    "key",
    "apikey",
    "api_key",
    "x-api-key",
    "cookie",
    "set-cookie",
    "session",
    "access_token",
    "refresh_token",
})


class MaskingEngine:
    """
    Replaces values stored under sensitive keys with a fixed token.

    Features:
    - Built-in default field set plus caller additions
    - Case-insensitive exact key matching
    - Deep traversal of nested dicts and lists
    - Returns a copy, the input is never modified
    """

    def __init__(
        self,
        extra_fields: Optional[Iterable[Any]] = None,
        mask_token: str = MASK_TOKEN,
    ) -> None:
        self.mask_token = mask_token
        self.fields = self._build_policy(extra_fields or ())
        logger.debug("Masking engine initialized", fields=len(self.fields))

    def _build_policy(self, extra_fields: Iterable[Any]) -> FrozenSet[str]:
        """Union of the defaults and valid caller entries, lowercased."""
        fields = set(DEFAULT_MASK_FIELDS)
        for field in extra_fields:
            if not isinstance(field, str) or not field:
                logger.debug("Ignoring invalid mask field", field=repr(field))
                continue
            fields.add(field.lower())
        return frozenset(fields)

    def should_mask(self, key: Any) -> bool:
        """Check whether a key names a sensitive field."""
        return isinstance(key, str) and key.lower() in self.fields

    def mask(self, value: Any) -> Any:
        """
        Return a masked deep copy of a header map, body or scalar.

        Args:
            value: Object to traverse (dict, list, or primitive)

        Returns:
            Copy with every value under a sensitive key replaced
        """
        if isinstance(value, dict):
            masked = {}
            for key, item in value.items():
                if self.should_mask(key):
                    masked[key] = self.mask_token
                else:
                    masked[key] = self.mask(item)
            return masked

        if isinstance(value, list):
            return [self.mask(item) for item in value]

        # Primitive value - return as-is
        return value


def mask_value(value: Any, extra_fields: Optional[Iterable[Any]] = None) -> Any:
    """Convenience wrapper for one-off masking with a throwaway policy."""
    return MaskingEngine(extra_fields).mask(value)
