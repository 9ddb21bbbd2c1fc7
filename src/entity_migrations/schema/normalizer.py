"""Model normalizer -- raw entity declarations to a ``NormalizedModel``.

Accepts the entity section of the configuration document, where each field
is a shorthand string or a structured mapping, and resolves it into frozen
``EntityDefinition`` values: inline relations become ``Relation`` entries,
every ``belongsTo`` gets its uuid foreign-key field, and no shorthand
remains.

Usage:
    from entity_migrations.schema.normalizer import normalize_model

    model = normalize_model({
        "Todo": {
            "table": "todos",
            "fields": {
                "id": "uuid!",
                "title": "string!",
                "completed": "boolean! = false",
            },
        },
    })
"""

import logging
import re
from collections.abc import Mapping
from typing import Any

from entity_migrations.errors import InvalidFieldDefinitionError, UnknownFieldTypeError
from entity_migrations.schema.models import (
    FIELD_TYPES,
    EntityDefinition,
    EntityField,
    ForeignKeyRef,
    IndexSpec,
    NormalizedModel,
    Relation,
    snake_case,
)
from entity_migrations.schema.shorthand import (
    EnumNode,
    RelationNode,
    ScalarNode,
    parse_default,
    parse_field_shorthand,
)

logger = logging.getLogger(__name__)

# Common spellings accepted for the canonical field types
TYPE_ALIASES: dict[str, str] = {
    "int": "integer",
    "bool": "boolean",
    "json": "jsonb",
    "datetime": "timestamp",
    "float": "number",
}

# camelCase keys of structured field objects -> EntityField attribute
_FIELD_KEY_ALIASES: dict[str, str] = {
    "enumValues": "enum_values",
    "enum": "enum_values",
    "dbColumn": "db_column",
    "maxLength": "max_length",
    "index": "indexed",
}

_FIELD_KEYS: frozenset[str] = frozenset(EntityField.model_fields) - {"foreign_key"}

_EXPLICIT_RELATION_RE = re.compile(
    r"^\s*(?P<type>belongsTo|hasOne|hasMany|manyToMany)\(\s*(?P<entity>\w+)"
    r"(?:\s*,\s*through:\s*(?P<through>\w+))?\s*\)\s*(?P<suffix>[!?])?"
    r"(?P<cascade>\s+cascade)?\s*$"
)


def extract_entities(document: Mapping[str, Any]) -> dict[str, Any]:
    """Return the raw entity map of a configuration document.

    Both ``schemas`` and ``entities`` top-level keys are accepted;
    ``schemas`` wins when both are present.
    """
    if "schemas" in document:
        if "entities" in document:
            logger.warning("Both 'schemas' and 'entities' present; using 'schemas'")
        return dict(document["schemas"] or {})
    return dict(document.get("entities") or {})


def default_table_name(entity_name: str, raw: Mapping[str, Any]) -> str:
    return raw.get("table") or snake_case(entity_name)


def normalize_model(
    raw_entities: Mapping[str, Any],
    strict: bool = False,
) -> NormalizedModel:
    """Normalize a raw entity map into a ``NormalizedModel``.

    Args:
        raw_entities: Entity name -> raw declaration (``table``, ``fields``,
            ``relations``, ``indexes``).
        strict: Raise ``UnknownFieldTypeError`` on unknown type tokens
            instead of defaulting them to ``string``.

    Returns:
        A frozen ``NormalizedModel``.

    Raises:
        UnknownFieldTypeError: Unknown type token in strict mode.
        InvalidFieldDefinitionError: Malformed shorthand or a field that is
            both required and nullable.
    """
    known = {name: default_table_name(name, raw or {}) for name, raw in raw_entities.items()}
    entities = {
        name: normalize_entity(name, raw or {}, known, strict=strict)
        for name, raw in raw_entities.items()
    }
    return NormalizedModel(entities=entities)


def normalize_entity(
    name: str,
    raw: Mapping[str, Any],
    known_entities: Mapping[str, str],
    strict: bool = False,
) -> EntityDefinition:
    """Normalize one entity declaration.

    Args:
        name: Entity name.
        raw: Raw declaration.
        known_entities: Entity name -> table name for every entity in the
            document (used to resolve relations).
        strict: See ``normalize_model``.
    """
    table = default_table_name(name, raw)
    fields: dict[str, EntityField] = {}
    relations: dict[str, Relation] = {}

    for field_name, spec in (raw.get("fields") or {}).items():
        if isinstance(spec, str):
            node = parse_field_shorthand(spec, known_entities)
            if isinstance(node, RelationNode):
                relations[field_name] = _relation_from_node(node)
            else:
                fields[field_name] = _field_from_node(name, field_name, node, strict)
        elif isinstance(spec, Mapping):
            if spec.get("type") in known_entities:
                relations[field_name] = _relation_from_mapping(
                    {**spec, "entity": spec["type"], "type": "belongsTo"}
                )
            else:
                fields[field_name] = _field_from_mapping(name, field_name, spec, strict)
        else:
            raise InvalidFieldDefinitionError(
                f"{name}.{field_name}: expected a shorthand string or a mapping"
            )

    # Explicit relations override inline ones of the same name
    for rel_name, spec in (raw.get("relations") or {}).items():
        if isinstance(spec, str):
            relations[rel_name] = _parse_explicit_relation(name, rel_name, spec)
        else:
            relations[rel_name] = _relation_from_mapping(spec)

    for rel_name, relation in list(relations.items()):
        if relation.type != "belongsTo":
            continue
        fk_name = relation.foreign_key or f"{rel_name}Id"
        target_table = known_entities.get(relation.entity)
        if target_table is None:
            raise InvalidFieldDefinitionError(
                f"{name}.{rel_name}: belongsTo references unknown entity {relation.entity!r}"
            )
        ref = ForeignKeyRef(
            entity=relation.entity,
            table=target_table,
            on_delete="CASCADE" if relation.cascade else None,
        )
        if fk_name in fields:
            fields[fk_name] = fields[fk_name].model_copy(update={"foreign_key": ref})
        else:
            fields[fk_name] = EntityField(
                type="uuid",
                required=relation.required,
                nullable=not relation.required,
                indexed=True,
                foreign_key=ref,
            )
        relations[rel_name] = relation.model_copy(update={"foreign_key": fk_name})

    for rel_name, relation in relations.items():
        if relation.entity not in known_entities:
            logger.warning(
                f"{name}.{rel_name}: relation target {relation.entity!r} is not a declared entity"
            )

    indexes = [_index_from_raw(name, spec) for spec in raw.get("indexes") or []]
    return EntityDefinition(table=table, fields=fields, relations=relations, indexes=indexes)


# ------------------------------------------------------------------
# Field construction
# ------------------------------------------------------------------


def _resolve_type(entity: str, field_name: str, token: str, strict: bool) -> str:
    lowered = token.lower()
    lowered = TYPE_ALIASES.get(lowered, lowered)
    if lowered in FIELD_TYPES:
        return lowered
    if strict:
        raise UnknownFieldTypeError(f"{entity}.{field_name}: unknown field type {token!r}")
    logger.warning(f"{entity}.{field_name}: unknown field type {token!r}, using 'string'")
    return "string"


def _nullability(required: bool, primary: bool) -> tuple[bool, bool]:
    """(required, nullable) pair; primary fields are always required."""
    if required or primary:
        return True, False
    return False, True


def _field_from_node(
    entity: str,
    field_name: str,
    node: ScalarNode | EnumNode,
    strict: bool,
) -> EntityField:
    mods = node.modifiers
    required, nullable = _nullability(node.required, mods.primary)
    if isinstance(node, EnumNode):
        field_type = "string"
        enum_values: list[str] | None = list(node.values)
    elif node.many:
        # Scalar arrays are stored as JSON documents
        field_type = "jsonb"
        enum_values = None
    else:
        field_type = _resolve_type(entity, field_name, node.type_name, strict)
        enum_values = None

    return EntityField(
        type=field_type,
        required=required,
        nullable=nullable,
        unique=mods.unique,
        indexed=mods.indexed,
        default=node.default if node.has_default else None,
        enum_values=enum_values,
        primary=mods.primary,
        generated=mods.generated,
        max_length=mods.length,
    )


def _field_from_mapping(
    entity: str,
    field_name: str,
    spec: Mapping[str, Any],
    strict: bool,
) -> EntityField:
    values: dict[str, Any] = {}
    for key, value in spec.items():
        key = _FIELD_KEY_ALIASES.get(key, key)
        if key in _FIELD_KEYS:
            values[key] = value
        else:
            logger.debug(f"{entity}.{field_name}: ignoring field option {key!r}")

    if values.get("required") and values.get("nullable"):
        raise InvalidFieldDefinitionError(
            f"{entity}.{field_name}: field is declared both required and nullable"
        )

    values["type"] = _resolve_type(entity, field_name, str(values.get("type", "string")), strict)
    required = bool(values.get("required")) or values.get("nullable") is False
    values["required"], values["nullable"] = _nullability(required, bool(values.get("primary")))
    if isinstance(values.get("default"), str):
        values["default"] = parse_default(values["default"])
    return EntityField(**values)


# ------------------------------------------------------------------
# Relations and indexes
# ------------------------------------------------------------------


def _relation_from_node(node: RelationNode) -> Relation:
    if node.many:
        rel_type = "manyToMany" if node.modifiers.through else "hasMany"
    elif node.required:
        rel_type = "belongsTo"
    else:
        rel_type = "hasOne"
    return Relation(
        type=rel_type,
        entity=node.target,
        through=node.modifiers.through,
        cascade=node.modifiers.cascade,
        required=node.required,
    )


def _parse_explicit_relation(entity: str, rel_name: str, spec: str) -> Relation:
    match = _EXPLICIT_RELATION_RE.match(spec)
    if match is None:
        raise InvalidFieldDefinitionError(
            f"{entity}.{rel_name}: invalid relation {spec!r}",
            hint="Use e.g. `belongsTo(User)` or `manyToMany(Tag, through:post_tags)`.",
        )
    return Relation(
        type=match.group("type"),
        entity=match.group("entity"),
        through=match.group("through"),
        cascade=bool(match.group("cascade")),
        required=match.group("suffix") == "!",
    )


def _relation_from_mapping(spec: Mapping[str, Any]) -> Relation:
    return Relation(
        type=spec.get("type", "belongsTo"),
        entity=spec.get("entity") or spec.get("target"),
        through=spec.get("through"),
        cascade=bool(spec.get("cascade") or spec.get("onDelete") == "cascade"),
        required=bool(spec.get("required")),
        foreign_key=spec.get("foreign_key") or spec.get("foreignKey"),
    )


def _index_from_raw(entity: str, spec: Any) -> IndexSpec:
    if isinstance(spec, str):
        return IndexSpec(fields=[spec])
    if isinstance(spec, list):
        return IndexSpec(fields=list(spec))
    if isinstance(spec, Mapping) and spec.get("fields"):
        return IndexSpec(
            fields=list(spec["fields"]),
            unique=bool(spec.get("unique", False)),
            name=spec.get("name"),
        )
    raise InvalidFieldDefinitionError(f"{entity}: invalid index declaration {spec!r}")
