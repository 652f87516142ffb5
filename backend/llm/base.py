import json
import re

EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "city": {"type": "string", "nullable": True},
        "country": {"type": "string", "nullable": True},
        "isPhD": {"type": "boolean"},
        "deadline": {"type": "string", "nullable": True},
        "requirements": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["isPhD"],
}


class LLMUnavailable(Exception):
    pass


class LLMError(Exception):
    pass


class LLMTimeout(Exception):
    pass


def extract_json(text: str) -> dict:
    """
    Models sometimes wrap JSON in prose or code fences. We recover the first {...} block.
    """
    text = (text or "").strip()
    try:
        obj = json.loads(text)
    except ValueError:
        m = re.search(r"\{.*\}", text, flags=re.S)
        if not m:
            raise ValueError("No JSON object found in model output")
        obj = json.loads(m.group(0))
    if not isinstance(obj, dict):
        raise ValueError(f"Expected JSON object, got {type(obj).__name__}")
    return obj
