"""
Filter Engine for the chat-backed document store
Evaluates MongoDB-style predicates against schema-less documents
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
import re

from .errors import QueryError


class _Missing:
    def __repr__(self) -> str:
        return 'MISSING'

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


class Operator(Enum):
    GT = '$gt'
    GTE = '$gte'
    LT = '$lt'
    LTE = '$lte'
    NE = '$ne'
    IN = '$in'
    NIN = '$nin'
    REGEX = '$regex'
    EXISTS = '$exists'


_ORDERING = {
    Operator.GT: lambda a, b: a > b,
    Operator.GTE: lambda a, b: a >= b,
    Operator.LT: lambda a, b: a < b,
    Operator.LTE: lambda a, b: a <= b,
}


def resolve_path(document: Mapping[str, Any], path: str) -> Any:
    current: Any = document
    for key in path.split('.'):
        if not isinstance(current, Mapping) or key not in current:
            return MISSING
        current = current[key]
    return current


def strict_equals(left: Any, right: Any) -> bool:
    if left is MISSING or right is MISSING:
        return False
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(strict_equals(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(strict_equals(a, b) for a, b in zip(left, right))
    return left == right


def _contains(values: List[Any], value: Any) -> bool:
    return any(strict_equals(value, candidate) for candidate in values)


@dataclass
class Condition:
    operator: Operator
    value: Any = None
    _pattern: Optional[re.Pattern] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.operator in (Operator.IN, Operator.NIN):
            if not isinstance(self.value, (list, tuple)):
                raise QueryError(f"{self.operator.value} requires a list, got {type(self.value).__name__}")
        elif self.operator == Operator.REGEX:
            if not isinstance(self.value, str):
                raise QueryError("$regex requires a pattern string")
            try:
                self._pattern = re.compile(self.value)
            except re.error as e:
                raise QueryError(f"Invalid $regex pattern {self.value!r}: {e}") from e
        elif self.operator == Operator.EXISTS:
            if not isinstance(self.value, bool):
                raise QueryError("$exists requires a boolean")

    def evaluate(self, field_value: Any) -> bool:
        if self.operator in _ORDERING:
            if field_value is MISSING or field_value is None or self.value is None:
                return False
            try:
                return bool(_ORDERING[self.operator](field_value, self.value))
            except TypeError:
                return False

        if self.operator == Operator.NE:
            return not strict_equals(field_value, self.value)
        if self.operator == Operator.IN:
            return _contains(self.value, field_value)
        if self.operator == Operator.NIN:
            return not _contains(self.value, field_value)
        if self.operator == Operator.REGEX:
            if not isinstance(field_value, str):
                return False
            return self._pattern.search(field_value) is not None
        if self.operator == Operator.EXISTS:
            present = field_value is not MISSING and field_value is not None
            return present == self.value

        return False


@dataclass
class Literal:
    value: Any

    def evaluate(self, field_value: Any) -> bool:
        return strict_equals(field_value, self.value)


@dataclass
class Membership:
    values: List[Any]

    def evaluate(self, field_value: Any) -> bool:
        return _contains(self.values, field_value)


@dataclass
class Operators:
    conditions: List[Condition]

    def evaluate(self, field_value: Any) -> bool:
        return all(c.evaluate(field_value) for c in self.conditions)


FieldTest = Union[Literal, Membership, Operators]


@dataclass
class FieldFilter:
    path: str
    test: FieldTest

    def evaluate(self, document: Mapping[str, Any]) -> bool:
        if self.path == 'id':
            # identity lookups never go through operator handling
            return strict_equals(document.get('id', MISSING), self.test.value)
        return self.test.evaluate(resolve_path(document, self.path))


def parse_value(value: Any) -> FieldTest:
    if isinstance(value, Mapping):
        keys = list(value.keys())
        operator_keys = [k for k in keys if isinstance(k, str) and k.startswith('$')]
        if not operator_keys:
            return Literal(dict(value))
        if len(operator_keys) != len(keys):
            raise QueryError(f"Cannot mix operators and fields in one predicate: {keys}")

        conditions = []
        for key in keys:
            try:
                operator = Operator(key)
            except ValueError:
                raise QueryError(f"Unknown operator: {key}") from None
            conditions.append(Condition(operator=operator, value=value[key]))
        return Operators(conditions)

    if isinstance(value, (list, tuple)):
        return Membership(list(value))

    return Literal(value)


@dataclass
class QueryFilter:
    fields: List[FieldFilter] = field(default_factory=list)

    @classmethod
    def parse(cls, predicate: Optional[Mapping[str, Any]]) -> 'QueryFilter':
        if predicate is None:
            return cls()
        if not isinstance(predicate, Mapping):
            raise QueryError(f"Predicate must be a mapping, got {type(predicate).__name__}")

        fields = []
        for path, value in predicate.items():
            if path == 'id':
                # the raw value, even when it looks like an operator object
                fields.append(FieldFilter(path='id', test=Literal(value)))
            else:
                fields.append(FieldFilter(path=path, test=parse_value(value)))
        return cls(fields)

    def evaluate(self, document: Mapping[str, Any]) -> bool:
        return all(f.evaluate(document) for f in self.fields)

    def literal_fields(self) -> Optional[Dict[str, Any]]:
        """Field/value pairs when every field is a plain literal, else None."""
        literals = {}
        for f in self.fields:
            if not isinstance(f.test, Literal):
                return None
            literals[f.path] = f.test.value
        return literals


def matches(document: Mapping[str, Any], predicate: Union[Mapping[str, Any], QueryFilter, None]) -> bool:
    if not isinstance(predicate, QueryFilter):
        predicate = QueryFilter.parse(predicate)
    return predicate.evaluate(document)
