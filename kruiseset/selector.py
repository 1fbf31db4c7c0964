"""The ``set selector`` operation: replace the selector of a Service."""

from __future__ import annotations

import copy
import re
import sys
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Optional, TextIO

from kruiseset.image import Patcher
from kruiseset.manifest import (
    DryRunStrategy,
    SetError,
    merge_patch,
    object_name,
    print_object,
)

_SPECIAL = frozenset("=!(),<>")
_DOUBLE_SYMBOLS = ("!=", "==")
_KEYWORDS = ("in", "notin")

_NAME_PART = re.compile(r"^[A-Za-z0-9]([-A-Za-z0-9_.]*[A-Za-z0-9])?$")
_DNS_SUBDOMAIN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$")
_LABEL_VALUE = re.compile(r"^(([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?$")
_MAX_NAME_LENGTH = 63
_MAX_PREFIX_LENGTH = 253

_DRY_RUN_SUFFIX = {
    DryRunStrategy.NONE: "",
    DryRunStrategy.CLIENT: " (dry run)",
    DryRunStrategy.SERVER: " (server dry run)",
}


@dataclass
class LabelSelectorRequirement:
    """A single set-based requirement of a label selector."""

    key: str
    operator: str
    values: list[str] = field(default_factory=list)


@dataclass
class LabelSelector:
    """Labels that must match exactly, plus set-based requirements."""

    match_labels: dict[str, str] = field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = field(default_factory=list)


class _Token(NamedTuple):
    kind: str
    text: str


_END = _Token("end", "")


def _lex(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(text)
    while pos < length:
        char = text[pos]
        if char.isspace():
            pos += 1
            continue
        if char in _SPECIAL:
            pair = text[pos:pos + 2]
            symbol = pair if pair in _DOUBLE_SYMBOLS else char
            tokens.append(_Token(symbol, symbol))
            pos += len(symbol)
            continue
        end = pos
        while end < length and not text[end].isspace() and text[end] not in _SPECIAL:
            end += 1
        word = text[pos:end]
        tokens.append(_Token(word if word in _KEYWORDS else "ident", word))
        pos = end
    return tokens


def _validate_key(key: str) -> None:
    prefix, slash, name = key.rpartition("/")
    problems: list[str] = []
    if slash:
        if not prefix:
            problems.append("prefix part must be non-empty")
        elif len(prefix) > _MAX_PREFIX_LENGTH or not _DNS_SUBDOMAIN.match(prefix):
            problems.append("prefix part must be a lowercase DNS subdomain")
    if not name:
        problems.append("name part must be non-empty")
    elif len(name) > _MAX_NAME_LENGTH:
        problems.append(f"name part must be no more than {_MAX_NAME_LENGTH} characters")
    elif not _NAME_PART.match(name):
        problems.append(
            "name part must consist of alphanumeric characters, '-', '_' or '.', "
            "and must start and end with an alphanumeric character"
        )
    if problems:
        raise SetError(f"key: Invalid value: {key!r}: " + "; ".join(problems))


def _validate_value(value: str) -> None:
    if len(value) > _MAX_NAME_LENGTH or not _LABEL_VALUE.match(value):
        raise SetError(
            f"values[0][{value}]: Invalid value: {value!r}: a valid label must be an empty "
            "string or consist of alphanumeric characters, '-', '_' or '.', and must start "
            f"and end with an alphanumeric character, at most {_MAX_NAME_LENGTH} characters"
        )


class _Parser:
    def __init__(self, text: str) -> None:
        self._tokens = _lex(text)
        self._pos = 0

    def _peek(self) -> _Token:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else _END

    def _next(self) -> _Token:
        token = self._peek()
        if token is not _END:
            self._pos += 1
        return token

    def parse(self) -> list[tuple[str, str, list[str]]]:
        requirements: list[tuple[str, str, list[str]]] = []
        if self._peek() is _END:
            return requirements
        while True:
            requirements.append(self._requirement())
            token = self._next()
            if token is _END:
                break
            if token.kind != ",":
                raise SetError(f"found '{token.text}', expected: ',' or 'end of string'")
            if self._peek() is _END:
                raise SetError("found '', expected: identifier after ','")
        requirements.sort(key=lambda requirement: requirement[0])
        return requirements

    def _key(self) -> str:
        token = self._next()
        if token.kind != "ident":
            raise SetError(f"found '{token.text}', expected: identifier")
        _validate_key(token.text)
        return token.text

    def _at_boundary(self) -> bool:
        return self._peek().kind in ("end", ",")

    def _requirement(self) -> tuple[str, str, list[str]]:
        token = self._peek()
        if token.kind == "!":
            self._next()
            key = self._key()
            if not self._at_boundary():
                raise SetError(
                    f"found '{self._peek().text}', expected: ',' or 'end of string'"
                )
            return key, "!", []
        if token.kind != "ident":
            raise SetError(f"found '{token.text}', expected: !, identifier, or 'end of string'")
        key = self._key()
        if self._at_boundary():
            return key, "exists", []
        operator = self._next()
        if operator.kind in ("=", "==", "!="):
            return key, operator.kind, [self._exact_value()]
        if operator.kind in ("<", ">"):
            value = self._next()
            if value.kind != "ident" or not re.fullmatch(r"[+-]?\d+", value.text):
                raise SetError("for 'gt', 'lt' operators, the value must be an integer")
            return key, operator.kind, [value.text]
        if operator.kind in _KEYWORDS:
            values = self._value_set()
            if not values:
                raise SetError("for 'in', 'notin' operators, values set can't be empty")
            return key, operator.kind, values
        raise SetError(
            f"found '{operator.text}', expected: "
            "in, notin, =, ==, !=, gt, lt"
        )

    def _exact_value(self) -> str:
        if self._at_boundary():
            value = ""
        else:
            token = self._next()
            if token.kind != "ident":
                raise SetError(f"found '{token.text}', expected: identifier")
            value = token.text
        _validate_value(value)
        return value

    def _value_set(self) -> list[str]:
        token = self._next()
        if token.kind != "(":
            raise SetError(f"found '{token.text}', expected: '('")
        values: set[str] = set()
        expect_value = True
        while True:
            token = self._next()
            if token.kind == ")":
                if not expect_value or values:
                    if expect_value:
                        values.add("")
                break
            if token.kind == ",":
                if expect_value:
                    values.add("")
                expect_value = True
                continue
            if token.kind == "ident" and expect_value:
                _validate_value(token.text)
                values.add(token.text)
                expect_value = False
                continue
            raise SetError(f"found '{token.text}', expected: ',', ')' or identifier")
        return sorted(values)


_UNSUPPORTED_NAMES = {"!=": "!=", "<": "lt", ">": "gt"}
_EXPRESSION_OPERATORS = {"in": "In", "notin": "NotIn", "exists": "Exists", "!": "DoesNotExist"}


def parse_to_label_selector(text: str) -> LabelSelector:
    """Parse a selector expression such as ``a=b,c in (d,e)``."""
    selector = LabelSelector()
    for key, operator, values in _Parser(text).parse():
        if operator in ("=", "=="):
            selector.match_labels[key] = values[0]
        elif operator in _UNSUPPORTED_NAMES:
            raise SetError(f'"{_UNSUPPORTED_NAMES[operator]}" isn\'t supported in label selectors')
        else:
            selector.match_expressions.append(
                LabelSelectorRequirement(key, _EXPRESSION_OPERATORS[operator], list(values))
            )
    return selector


def get_resources_and_selector(
    args: list[str],
) -> tuple[list[str], Optional[LabelSelector]]:
    """Split arguments into resources and the selector given last."""
    if not args:
        return [], None
    return list(args[:-1]), parse_to_label_selector(args[-1])


def update_selector_for_object(obj: dict[str, Any], selector: LabelSelector) -> None:
    """Replace the selector of a Service; other kinds raise SetError."""
    if obj.get("kind") != "Service":
        raise SetError("setting a selector is only supported for Services")
    if selector.match_expressions:
        raise SetError(
            f"match expression {selector.match_expressions} not supported on this object"
        )
    spec = obj.get("spec")
    if not isinstance(spec, dict):
        spec = obj["spec"] = {}
    spec["selector"] = dict(selector.match_labels)


@dataclass
class SelectorOptions:
    """What to change and how, for setting the selector of a resource."""

    resources: list[str] = field(default_factory=list)
    selector: Optional[LabelSelector] = None
    resource_version: str = ""
    local: bool = False
    dry_run: DryRunStrategy = DryRunStrategy.NONE
    output: str = ""
    out: TextIO = field(default_factory=lambda: sys.stdout)
    patcher: Optional[Patcher] = None

    @property
    def write_to_server(self) -> bool:
        return not (self.local or self.dry_run is DryRunStrategy.CLIENT)

    def validate(self) -> None:
        """Raise SetError if no selector was given."""
        if self.selector is None:
            raise SetError("one selector is required")

    def _print(self, obj: dict[str, Any]) -> None:
        if self.output:
            print_object(obj, self.output, self.out)
        else:
            suffix = _DRY_RUN_SUFFIX[self.dry_run]
            self.out.write(f"{object_name(obj)} selector updated{suffix}\n")

    def run(self, objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Set the selector on each object, stopping at the first error."""
        self.validate()
        assert self.selector is not None
        results: list[dict[str, Any]] = []
        for obj in objects:
            if self.resource_version:
                metadata = obj.get("metadata")
                if not isinstance(metadata, dict):
                    metadata = obj["metadata"] = {}
                metadata.pop("resourceVersion", None)
            original = copy.deepcopy(obj)
            if self.resource_version:
                obj["metadata"]["resourceVersion"] = self.resource_version
            update_selector_for_object(obj, self.selector)
            patch = merge_patch(original, obj)

            if not self.write_to_server:
                self._print(obj)
                results.append(obj)
                continue
            if self.patcher is None:
                raise SetError("no server connection configured")
            try:
                result = self.patcher(obj, patch, self.dry_run is DryRunStrategy.SERVER)
            except SetError:
                raise
            except Exception as exc:  # the patcher talks to an outside server
                raise SetError(str(exc)) from exc
            self._print(result)
            results.append(result)
        return results