"""Hash utilities with explicit canonicalization rules for stable hashing.

ContentHash and TreeHash must be identical across Python versions and
hosts, since they are compared against labels written by earlier runs.

Key rules:
- Object keys sorted recursively
- Arrays preserve order
- Floats BANNED (hard validation error)
- Strings normalized to NFC
- Non-JSON types forbidden
"""

import json
import hashlib
import unicodedata
from typing import Any, Mapping, Union

HASH_PREFIX = "sha256:"


class CanonicalizationError(ValueError):
    """Raised when an object cannot be canonicalized."""
    pass


def _normalize_string(s: str) -> str:
    """Normalize string to NFC (Unicode Normalization Form Canonical Composition)."""
    return unicodedata.normalize('NFC', s)


def _validate_json_type(obj: Any, path: str = "") -> None:
    """Validate that object contains only JSON-compatible types.

    Raises CanonicalizationError if non-JSON types are found.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return
    elif isinstance(obj, float):
        raise CanonicalizationError(
            f"Floats are not allowed in hashed payloads (at {path}). Use strings instead."
        )
    elif isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path}, got {type(key).__name__}"
                )
            _validate_json_type(value, f"{path}.{key}" if path else key)
    elif isinstance(obj, (list, tuple)):
        for i, item in enumerate(obj):
            _validate_json_type(item, f"{path}[{i}]" if path else f"[{i}]")
    else:
        raise CanonicalizationError(
            f"Non-JSON type at {path}: {type(obj).__name__}. "
            f"Only None, bool, int, str, dict, and list are allowed."
        )


def _canonicalize_value(obj: Any) -> Any:
    if isinstance(obj, str):
        return _normalize_string(obj)
    elif isinstance(obj, dict):
        return {
            _normalize_string(k): _canonicalize_value(v)
            for k, v in sorted(obj.items())
        }
    elif isinstance(obj, (list, tuple)):
        return [_canonicalize_value(item) for item in obj]
    return obj


def canonicalize_json(obj: Any) -> str:
    """Canonicalize a JSON-serializable object to a stable string representation.

    Raises:
        CanonicalizationError: If object contains floats or non-JSON types
    """
    _validate_json_type(obj)
    canonicalized = _canonicalize_value(obj)
    return json.dumps(canonicalized, sort_keys=True, ensure_ascii=False, separators=(',', ':'))


def _digest(data: bytes) -> str:
    return f"{HASH_PREFIX}{hashlib.sha256(data).hexdigest()}"


def hash_content(content: Union[str, bytes]) -> str:
    """Compute the ContentHash of a definition's raw script.

    Returns:
        SHA256 hash as hex string (prefixed with "sha256:")
    """
    if isinstance(content, str):
        content = content.encode('utf-8')
    return _digest(content)


def hash_tree(content_hash: str, dependency_trees: Mapping[str, str]) -> str:
    """Compute the TreeHash of a definition.

    Combines the definition's own ContentHash with the TreeHashes of its
    direct dependencies, keyed by dependency name. Because each dependency
    TreeHash already covers its own ancestors, a change anywhere upstream
    changes every descendant's TreeHash.

    Args:
        content_hash: ContentHash of the definition itself
        dependency_trees: dependency name -> TreeHash of that dependency

    Returns:
        SHA256 hash as hex string (prefixed with "sha256:")
    """
    payload = {
        "content": content_hash,
        "depends_on": dict(dependency_trees),
    }
    return _digest(canonicalize_json(payload).encode('utf-8'))
