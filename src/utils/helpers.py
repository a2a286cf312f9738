"""
Helper Functions for the document store
Id generation and dict merging shared by the engine and the API
"""

import copy
import random
import string
import time
from typing import Any, Dict, Mapping, Optional


_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_id(length: int = 11) -> str:
    timestamp = int(time.time() * 1000)
    token = ''.join(random.choice(_ID_ALPHABET) for _ in range(length))
    return f"{timestamp}-{token}"


def id_timestamp(doc_id: Any) -> Optional[int]:
    if not isinstance(doc_id, str):
        return None
    head = doc_id.split('-', 1)[0]
    try:
        return int(head)
    except ValueError:
        return None


def deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> Dict[str, Any]:
    output = copy.deepcopy(dict(target))
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(output.get(key), Mapping):
            output[key] = deep_merge(output[key], value)
        else:
            output[key] = copy.deepcopy(value)
    return output


def expand_dotted(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """{'address.city': 'Paris'} -> {'address': {'city': 'Paris'}}"""
    result: Dict[str, Any] = {}
    for path, value in fields.items():
        parts = path.split('.')
        node = result
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)
    return result
