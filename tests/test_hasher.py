"""Tests for canonical model hashing."""

import hashlib

from entity_migrations.schema.comparator import diff_models
from entity_migrations.schema.hasher import (
    EMPTY_MODEL_HASH,
    canonicalize,
    compute_model_hash,
    hash_model,
)
from entity_migrations.schema.models import NormalizedModel
from entity_migrations.schema.normalizer import normalize_model


class TestCanonicalize:
    """Canonical JSON text of a model."""

    def test_empty_model(self) -> None:
        assert canonicalize(NormalizedModel()) == "{}"

    def test_empty_hash_constant(self) -> None:
        assert EMPTY_MODEL_HASH == hashlib.sha256(b"{}").hexdigest()

    def test_compact_and_sorted(self, todo_model) -> None:
        text = canonicalize(todo_model)
        assert ": " not in text
        assert ", " not in text
        assert text.index('"fields"') < text.index('"table"')

    def test_none_values_dropped(self, todo_model) -> None:
        assert ":null" not in canonicalize(todo_model)

    def test_index_names_filled_in(self) -> None:
        model = normalize_model({"Post": {"fields": {"a": "string"}, "indexes": ["a"]}})
        assert '"name":"post_a_idx"' in canonicalize(model)


class TestComputeModelHash:
    """Equal models hash equal; any semantic change changes the hash."""

    def test_deterministic(self, todo_model, blog_entities) -> None:
        assert compute_model_hash(todo_model) == compute_model_hash(todo_model)
        blog = normalize_model(blog_entities)
        assert compute_model_hash(blog) == compute_model_hash(normalize_model(blog_entities))

    def test_hex_digest(self, todo_model) -> None:
        digest = compute_model_hash(todo_model)
        assert len(digest) == 64
        int(digest, 16)

    def test_entity_order_irrelevant(self, blog_entities) -> None:
        reordered = dict(reversed(list(blog_entities.items())))
        assert compute_model_hash(normalize_model(blog_entities)) == compute_model_hash(
            normalize_model(reordered)
        )

    def test_field_order_irrelevant(self) -> None:
        first = normalize_model({"Todo": {"fields": {"id": "uuid! primary", "title": "string!"}}})
        second = normalize_model({"Todo": {"fields": {"title": "string!", "id": "uuid! primary"}}})
        assert compute_model_hash(first) == compute_model_hash(second)

    def test_index_order_irrelevant(self) -> None:
        fields = {"a": "string", "b": "string"}
        first = normalize_model({"Post": {"fields": fields, "indexes": ["a", "b"]}})
        second = normalize_model({"Post": {"fields": fields, "indexes": ["b", "a"]}})
        assert compute_model_hash(first) == compute_model_hash(second)

    def test_index_column_order_matters(self) -> None:
        fields = {"a": "string", "b": "string"}
        first = normalize_model({"Post": {"fields": fields, "indexes": [{"fields": ["a", "b"], "name": "ab"}]}})
        second = normalize_model({"Post": {"fields": fields, "indexes": [{"fields": ["b", "a"], "name": "ab"}]}})
        assert compute_model_hash(first) != compute_model_hash(second)

    def test_nullability_change_changes_hash(self) -> None:
        required = normalize_model({"Todo": {"fields": {"title": "string!"}}})
        optional = normalize_model({"Todo": {"fields": {"title": "string?"}}})
        assert compute_model_hash(required) != compute_model_hash(optional)

    def test_has_many_changes_hash_without_ddl(self) -> None:
        entities = {
            "Post": {"table": "posts", "fields": {"id": "uuid! primary"}},
            "Note": {"table": "notes", "fields": {"id": "uuid! primary"}},
        }
        before = normalize_model(entities)
        after = normalize_model({**entities, "Post": {"table": "posts", "fields": {"id": "uuid! primary", "notes": "Note[]"}}})

        assert after.entities["Post"].relations["notes"].type == "hasMany"
        assert compute_model_hash(before) != compute_model_hash(after)
        assert diff_models(before, after) == []

    def test_enum_values_change_hash_without_ddl(self) -> None:
        before = normalize_model({"Post": {"fields": {"status": "enum[draft, published]!"}}})
        after = normalize_model({"Post": {"fields": {"status": "enum[draft, published, archived]!"}}})
        assert compute_model_hash(before) != compute_model_hash(after)
        assert diff_models(before, after) == []

    def test_non_empty_differs_from_empty(self, todo_model) -> None:
        assert compute_model_hash(todo_model) != EMPTY_MODEL_HASH


class TestHashModel:
    def test_digest_matches_canonical(self, todo_model) -> None:
        result = hash_model(todo_model)
        assert result.digest == compute_model_hash(todo_model)
        assert result.canonical == canonicalize(todo_model)
        assert str(result) == result.digest
