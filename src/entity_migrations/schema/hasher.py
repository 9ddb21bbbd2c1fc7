"""Content-addressed model hashing.

The canonical form of a ``NormalizedModel`` is compact JSON with sorted
keys and ``None`` values dropped. Indexes are sorted by effective name, but
each index keeps its declared column order. The SHA-256 hex digest of that
text is the model's schema version.

Usage:
    from entity_migrations.schema.hasher import EMPTY_MODEL_HASH, compute_model_hash

    if compute_model_hash(model) == EMPTY_MODEL_HASH:
        print("nothing declared yet")
"""

import hashlib
import json
from typing import Any

from entity_migrations.schema.models import ModelHash, NormalizedModel


def _drop_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _drop_none(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_drop_none(v) for v in value]
    return value


def canonicalize(model: NormalizedModel) -> str:
    """Deterministic JSON text for a model.

    Example:
        >>> canonicalize(NormalizedModel())
        '{}'
    """
    document: dict[str, Any] = {}
    for name, entity in model.entities.items():
        data = entity.model_dump(mode="json", exclude={"indexes"})
        data["indexes"] = [
            {**index.model_dump(mode="json"), "name": index.effective_name(entity.table)}
            for index in sorted(entity.indexes, key=lambda i: i.effective_name(entity.table))
        ]
        document[name] = _drop_none(data)
    return json.dumps(document, sort_keys=True, separators=(",", ":"))


def compute_model_hash(model: NormalizedModel) -> str:
    """SHA-256 hex digest of ``canonicalize(model)``."""
    return hashlib.sha256(canonicalize(model).encode("utf-8")).hexdigest()


def hash_model(model: NormalizedModel) -> ModelHash:
    """Digest plus the canonical text it was computed from."""
    canonical = canonicalize(model)
    return ModelHash(
        digest=hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
        canonical=canonical,
    )


# from_model_hash of every project's first migration
EMPTY_MODEL_HASH: str = compute_model_hash(NormalizedModel())
