import hashlib
import json
import logging

log = logging.getLogger(__name__)


def canon_args(obj) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def args_hash(obj, algo="sha256") -> str:
    s = canon_args(obj).encode("utf-8")
    return hashlib.new(algo, s).hexdigest()


def parse_tool_arguments(text: str, tool_name: str = "") -> dict:
    """Parse accumulated argument text; anything but a JSON object becomes {}."""
    if not text or not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        log.warning("Malformed arguments for tool %s (%s); using empty arguments", tool_name or "?", e)
        return {}
    if not isinstance(data, dict):
        log.warning("Arguments for tool %s are %s, not an object; using empty arguments", tool_name or "?", type(data).__name__)
        return {}
    return data
