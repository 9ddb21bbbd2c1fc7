"""Entity model normalization, hashing, diffing, and live introspection.

Usage:
    from entity_migrations.schema import normalize_model, compute_model_hash, diff_models
    from entity_migrations.schema import validate_schema, SchemaIntrospector
"""

from entity_migrations.schema.comparator import (
    compare_live_schema,
    diff_models,
    expected_columns,
    validate_schema,
)
from entity_migrations.schema.hasher import EMPTY_MODEL_HASH, canonicalize, compute_model_hash, hash_model
from entity_migrations.schema.introspector import SchemaIntrospector
from entity_migrations.schema.models import (
    ColumnDiff,
    ColumnSchema,
    ConnectionResult,
    ConstraintSchema,
    DatabaseSchema,
    EntityDefinition,
    EntityField,
    IndexSchema,
    IndexSpec,
    ModelHash,
    NormalizedModel,
    Relation,
    SchemaValidationResult,
    TableSchema,
)
from entity_migrations.schema.normalizer import extract_entities, normalize_entity, normalize_model
from entity_migrations.schema.shorthand import parse_field_shorthand

__all__ = [
    "normalize_model",
    "normalize_entity",
    "extract_entities",
    "parse_field_shorthand",
    "canonicalize",
    "compute_model_hash",
    "hash_model",
    "EMPTY_MODEL_HASH",
    "diff_models",
    "expected_columns",
    "validate_schema",
    "compare_live_schema",
    "SchemaIntrospector",
    "NormalizedModel",
    "EntityDefinition",
    "EntityField",
    "Relation",
    "IndexSpec",
    "ModelHash",
    "SchemaValidationResult",
    "ColumnDiff",
    "ConnectionResult",
    "ColumnSchema",
    "ConstraintSchema",
    "IndexSchema",
    "TableSchema",
    "DatabaseSchema",
]
