from typing import Any, Optional

_MISSING = object()


def lookup(data: Any, path: Optional[str], default: Any = None) -> Any:
    """Read a field by exact key first, then by dotted path.

    Exact keys come first because some services put dots in key names
    (``odata.nextLink``).
    """
    if not path or not isinstance(data, dict):
        return default
    if path in data:
        return data[path]
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return default
    return current
