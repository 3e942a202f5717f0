"""Sensitive data wrappers to keep card details out of logs and tracebacks."""

from typing import Any, Dict, Iterator, Optional


class SensitiveDict:
    """
    A dictionary wrapper that masks values in repr/str.

    Card details handed to the payment processor travel in one of these so a
    logged exception or a debug print never shows the PAN or CVC.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        """
        Initialize SensitiveDict with optional data.

        Args:
            data: Dictionary to wrap (copied internally)
        """
        self._data: Dict[str, Any] = dict(data) if data else {}

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Get item with default fallback."""
        return self._data.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __bool__(self) -> bool:
        return bool(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        """Return masked representation (safe for logs/traces)."""
        return f"SensitiveDict(keys={list(self._data.keys())}, ***MASKED***)"

    def __str__(self) -> str:
        return self.__repr__()

    def to_dict(self) -> Dict[str, Any]:
        """
        Explicitly unwrap to regular dict.

        Use this only at point-of-use when you need the actual values.

        Returns:
            Copy of internal dictionary
        """
        return dict(self._data)

    def wipe(self) -> None:
        """
        Best-effort wipe of internal data.

        Drops every reference held by the wrapper. Immutable ``str`` values
        may still linger in memory until garbage collected.
        """
        self._data.clear()
