"""Field shorthand parser.

Turns strings such as ``"string! unique"``, ``"User!"``,
``"Tag[] through:post_tags"`` or ``"boolean! = false"`` into a small tagged
AST: ``ScalarNode``, ``EnumNode`` or ``RelationNode``.

Grammar::

    field      := type_expr modifier* ( "=" default )?
    type_expr  := "enum[" value ("," value)* "]" suffix? | IDENT suffix?
    suffix     := "!" | "?" | "[]" ( "!" | "?" )?
    modifier   := "unique" | "index" | "indexed" | "primary" | "generated"
                | "cascade" | "through:" IDENT | "length:" INT

Usage:
    from entity_migrations.schema.shorthand import parse_field_shorthand

    node = parse_field_shorthand("User!", known_entities={"User"})
    # RelationNode(target='User', many=False, required=True, ...)
"""

import re
from collections.abc import Collection
from dataclasses import dataclass, field
from typing import Any

from entity_migrations.errors import InvalidFieldDefinitionError


_TOKEN_RE = re.compile(
    r"""
    (?P<enum>enum\[(?P<values>[^\]]*)\])
  | (?P<many>\[\])
  | (?P<bang>!)
  | (?P<question>\?)
  | (?P<keyed>(?P<key>[A-Za-z_]+):(?P<arg>[\w.-]+))
  | (?P<ident>[A-Za-z_]\w*)
  | (?P<equals>=)
  | (?P<ws>\s+)
    """,
    re.VERBOSE,
)

FLAG_MODIFIERS: frozenset[str] = frozenset(
    {"unique", "index", "indexed", "primary", "generated", "cascade"}
)


@dataclass(frozen=True)
class Token:
    kind: str  # enum, many, bang, question, keyed, ident, default
    text: str
    key: str | None = None
    arg: str | None = None


@dataclass(frozen=True)
class Modifiers:
    """Modifiers that follow the type expression."""

    unique: bool = False
    indexed: bool = False
    primary: bool = False
    generated: bool = False
    cascade: bool = False
    through: str | None = None
    length: int | None = None


@dataclass(frozen=True)
class ScalarNode:
    type_name: str
    required: bool = False
    nullable: bool = False
    many: bool = False
    modifiers: Modifiers = field(default_factory=Modifiers)
    has_default: bool = False
    default: Any = None


@dataclass(frozen=True)
class EnumNode:
    values: tuple[str, ...]
    required: bool = False
    nullable: bool = False
    modifiers: Modifiers = field(default_factory=Modifiers)
    has_default: bool = False
    default: Any = None


@dataclass(frozen=True)
class RelationNode:
    target: str
    many: bool = False
    required: bool = False
    nullable: bool = False
    modifiers: Modifiers = field(default_factory=Modifiers)


FieldNode = ScalarNode | EnumNode | RelationNode


def tokenize(text: str) -> list[Token]:
    """Split a shorthand string into tokens.

    Everything after the first ``=`` becomes a single ``default`` token.

    Raises:
        InvalidFieldDefinitionError: On a character the grammar does not allow.
    """
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise InvalidFieldDefinitionError(
                f"Invalid field shorthand {text!r} at position {pos}",
                hint="Shorthand looks like `string! unique` or `boolean! = false`.",
            )
        kind = match.lastgroup
        pos = match.end()

        if kind == "ws":
            continue
        if kind == "equals":
            tokens.append(Token("default", text[pos:].strip()))
            break
        if kind == "enum":
            tokens.append(Token("enum", match.group("values")))
        elif kind == "keyed":
            tokens.append(
                Token("keyed", match.group(0), key=match.group("key"), arg=match.group("arg"))
            )
        else:
            tokens.append(Token(kind, match.group(0)))
    return tokens


def parse_default(text: str) -> Any:
    """Parse a default literal.

    Example:
        >>> parse_default("false"), parse_default("42"), parse_default("'draft'")
        (False, 42, 'draft')
        >>> parse_default("now")
        'now()'
    """
    value = text.strip()
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    if lowered in ("now", "now()"):
        return "now()"
    if re.fullmatch(r"-?\d+", value):
        return int(value)
    if re.fullmatch(r"-?\d+\.\d+", value):
        return float(value)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


class _Parser:
    def __init__(self, text: str, tokens: list[Token], known_entities: Collection[str]) -> None:
        self._text = text
        self._tokens = tokens
        self._pos = 0
        self._known = known_entities

    def _peek(self) -> Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _next(self) -> Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _error(self, message: str) -> InvalidFieldDefinitionError:
        return InvalidFieldDefinitionError(
            f"Invalid field shorthand {self._text!r}: {message}",
            hint="Shorthand looks like `string! unique` or `boolean! = false`.",
        )

    def parse(self) -> FieldNode:
        head = self._peek()
        if head is None or head.kind not in ("enum", "ident"):
            raise self._error("expected a type")
        self._next()

        many, required, nullable = self._suffix()
        modifiers = self._modifiers()

        has_default = False
        default: Any = None
        token = self._peek()
        if token is not None and token.kind == "default":
            self._next()
            has_default = True
            default = parse_default(token.text)

        if head.kind == "enum":
            values = tuple(v.strip().strip("'\"") for v in head.text.split(",") if v.strip())
            if not values:
                raise self._error("enum needs at least one value")
            return EnumNode(values, required, nullable, modifiers, has_default, default)

        if head.text in self._known and head.text[0].isupper():
            if has_default:
                raise self._error("relations cannot have a default")
            return RelationNode(head.text, many, required, nullable, modifiers)

        return ScalarNode(head.text, required, nullable, many, modifiers, has_default, default)

    def _suffix(self) -> tuple[bool, bool, bool]:
        many = required = nullable = False
        token = self._peek()
        if token is not None and token.kind == "many":
            self._next()
            many = True
            token = self._peek()
        if token is not None and token.kind == "bang":
            self._next()
            required = True
        elif token is not None and token.kind == "question":
            self._next()
            nullable = True
        return many, required, nullable

    def _modifiers(self) -> Modifiers:
        values: dict[str, Any] = {}
        while (token := self._peek()) is not None and token.kind in ("ident", "keyed"):
            self._next()
            if token.kind == "ident":
                if token.text not in FLAG_MODIFIERS:
                    raise self._error(f"unknown modifier {token.text!r}")
                name = "indexed" if token.text == "index" else token.text
                values[name] = True
            elif token.key == "through":
                values["through"] = token.arg
            elif token.key == "length" and token.arg.isdigit():
                values["length"] = int(token.arg)
            else:
                raise self._error(f"unknown modifier {token.text!r}")

        token = self._peek()
        if token is not None and token.kind != "default":
            raise self._error(f"unexpected {token.text!r}")
        return Modifiers(**values)


def parse_field_shorthand(text: str, known_entities: Collection[str] = ()) -> FieldNode:
    """Parse one shorthand field declaration.

    Args:
        text: The shorthand string (e.g. ``"string! unique"``).
        known_entities: Entity names; a capitalized type token naming one of
            them is parsed as an inline relation.

    Returns:
        ``ScalarNode``, ``EnumNode`` or ``RelationNode``.

    Raises:
        InvalidFieldDefinitionError: If the string does not match the grammar.

    Examples:
        >>> parse_field_shorthand("enum[draft, published]!").values
        ('draft', 'published')
        >>> parse_field_shorthand("Tag[] through:post_tags", {"Tag"}).many
        True
    """
    return _Parser(text, tokenize(text), known_entities).parse()
