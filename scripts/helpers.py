import json
import logging
import re

_LOG = logging.getLogger(__name__)

_FENCED = re.compile(r"```(?:json)?\s*({[\s\S]*?})\s*```")
_BARE = re.compile(r"{[\s\S]*}")


def extract_clean_json(raw: str | dict) -> dict:
    """Pull the first JSON object out of an LLM reply ({} when there is none)."""
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        return {}
    try:
        match = _FENCED.search(raw) or _BARE.search(raw)
        if not match:
            raise ValueError("No JSON object found in model response")

        json_str = match.group(1) if match.re is _FENCED else match.group(0)
        data = json.loads(json_str)
        return data if isinstance(data, dict) else {}
    except ValueError as e:
        _LOG.warning("Failed to extract JSON: %s", e)
        return {}
