from typing import Any, Dict, Union

import orjson

from .diagram import Diagram


def _default(obj: Any) -> Any:
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


class ReportSerializer:
    @staticmethod
    def dumps(payload: Union[Dict[str, Any], Diagram], *, indent: bool = False) -> bytes:
        """
        Serialize a report dict or a diagram model to JSON bytes.
        Set indent=True for pretty-printing (adds newlines and spaces).
        """
        if isinstance(payload, Diagram):
            payload = payload.to_dict()
        options = 0
        if indent:
            options |= orjson.OPT_INDENT_2 | orjson.OPT_APPEND_NEWLINE | orjson.OPT_SORT_KEYS
        return orjson.dumps(payload, default=_default, option=options)

    @staticmethod
    def dump(payload: Union[Dict[str, Any], Diagram], path: str, *, indent: bool = True) -> None:
        """
        Serialize to a JSON file (UTF-8).
        Pretty-prints by default.
        """
        b = ReportSerializer.dumps(payload, indent=indent)
        with open(path, "wb") as f:
            f.write(b)
