from typing import Dict, Any, List, Optional, Mapping

from thinking_relay.domain.models.display_config import DEFAULT_TOOL_ARG_KEYS


ELLIPSIS = "…"


def escape_html(text: str) -> str:
    """Escape the characters reserved by the message markup"""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def _clip(value: str, max_length: int) -> str:
    return value[:max_length] + ELLIPSIS if len(value) > max_length else value


def extract_tool_args(
    name: str,
    args: Optional[Dict[str, Any]],
    max_length: int,
    arg_keys: Optional[Mapping[str, List[str]]] = None
) -> str:
    """Pick the single most representative argument of a tool call.

    The configured candidate keys for the tool are tried in order, then any
    string argument in mapping order. Blank strings never match.
    """
    if not args:
        return ""

    table = DEFAULT_TOOL_ARG_KEYS if arg_keys is None else arg_keys

    for key in table.get(name.lower(), []):
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return _clip(value.strip(), max_length)

    for value in args.values():
        if isinstance(value, str) and value.strip():
            return _clip(value.strip(), max_length)

    return ""
