"""
Label selectors as used in ``kubectl -l ...`` and in the K8s API.

Both the equality-based and the set-based requirements are supported:

* ``key=value``, ``key==value``, ``key!=value``;
* ``key in (v1, v2)``, ``key notin (v1, v2)``;
* ``key`` (the label is present), ``!key`` (the label is absent).

Multiple requirements are comma-separated and must all match (logical AND).
An empty selector matches everything.
"""
import dataclasses
import enum
import re
from typing import FrozenSet, Iterator, List, Mapping, Optional, Tuple


class SelectorError(ValueError):
    """ Raised when a label selector cannot be parsed. """


class Operator(enum.Enum):
    EQUALS = '='
    NOT_EQUALS = '!='
    IN = 'in'
    NOT_IN = 'notin'
    EXISTS = 'exists'
    NOT_EXISTS = '!'


@dataclasses.dataclass(frozen=True)
class Requirement:
    key: str
    operator: Operator
    values: FrozenSet[str] = frozenset()

    def matches(self, labels: Mapping[str, str]) -> bool:
        if self.operator is Operator.EXISTS:
            return self.key in labels
        elif self.operator is Operator.NOT_EXISTS:
            return self.key not in labels
        elif self.operator in (Operator.EQUALS, Operator.IN):
            return self.key in labels and labels[self.key] in self.values
        elif self.operator in (Operator.NOT_EQUALS, Operator.NOT_IN):
            return self.key not in labels or labels[self.key] not in self.values
        else:
            raise RuntimeError(f"Unsupported selector operator: {self.operator!r}")

    def __str__(self) -> str:
        if self.operator is Operator.EXISTS:
            return self.key
        elif self.operator is Operator.NOT_EXISTS:
            return f"!{self.key}"
        elif self.operator in (Operator.EQUALS, Operator.NOT_EQUALS):
            value, = self.values
            return f"{self.key}{self.operator.value}{value}"
        else:
            values = ','.join(sorted(self.values))
            return f"{self.key} {self.operator.value} ({values})"


@dataclasses.dataclass(frozen=True)
class Selector:
    requirements: Tuple[Requirement, ...] = ()

    def __iter__(self) -> Iterator[Requirement]:
        return iter(self.requirements)

    def __bool__(self) -> bool:
        return bool(self.requirements)

    def __str__(self) -> str:
        return ','.join(str(requirement) for requirement in self.requirements)

    def matches(self, labels: Optional[Mapping[str, str]]) -> bool:
        labels = labels if labels is not None else {}
        return all(requirement.matches(labels) for requirement in self.requirements)


# A label key: an optional DNS prefix with a slash, then a name. Values are names or empty.
_KEY = r'(?:[a-z0-9A-Z.\-]+/)?[a-zA-Z0-9](?:[a-zA-Z0-9_.\-]*[a-zA-Z0-9])?'
_VALUE = r'(?:[a-zA-Z0-9](?:[a-zA-Z0-9_.\-]*[a-zA-Z0-9])?)?'
_SET_RE = re.compile(rf'^({_KEY})\s+(in|notin)\s+\(([^()]*)\)$')
_EQ_RE = re.compile(rf'^({_KEY})\s*(==|=|!=)\s*({_VALUE})$')
_EXISTS_RE = re.compile(rf'^(!?)\s*({_KEY})$')
_VALUE_RE = re.compile(rf'^{_VALUE}$')


def parse_selector(text: Optional[str]) -> Selector:
    """
    Parse a textual label selector into a structured & matchable one.
    """
    requirements: List[Requirement] = []
    for chunk in _split(text or ''):
        requirements.append(_parse_requirement(chunk))
    return Selector(tuple(requirements))


def _split(text: str) -> Iterator[str]:
    # Commas inside the parentheses of set-based requirements do not split.
    depth = 0
    start = 0
    for index, char in enumerate(text):
        if char == '(':
            depth += 1
        elif char == ')':
            depth -= 1
            if depth < 0:
                raise SelectorError(f"Unbalanced parentheses in the selector: {text!r}")
        elif char == ',' and depth == 0:
            chunk = text[start:index].strip()
            if not chunk:
                raise SelectorError(f"Empty requirement in the selector: {text!r}")
            yield chunk
            start = index + 1
    if depth != 0:
        raise SelectorError(f"Unbalanced parentheses in the selector: {text!r}")
    tail = text[start:].strip()
    if tail:
        yield tail
    elif start > 0:
        raise SelectorError(f"Empty requirement in the selector: {text!r}")


def _parse_requirement(chunk: str) -> Requirement:
    match = _SET_RE.match(chunk)
    if match:
        key, op, raw_values = match.groups()
        values = frozenset(value.strip() for value in raw_values.split(',') if value.strip())
        if not values:
            raise SelectorError(f"No values in the set-based requirement: {chunk!r}")
        for value in values:
            if not _VALUE_RE.match(value):
                raise SelectorError(f"Invalid label value {value!r} in: {chunk!r}")
        return Requirement(key=key, operator=Operator(op), values=values)

    match = _EQ_RE.match(chunk)
    if match:
        key, op, value = match.groups()
        operator = Operator.NOT_EQUALS if op == '!=' else Operator.EQUALS
        return Requirement(key=key, operator=operator, values=frozenset([value]))

    match = _EXISTS_RE.match(chunk)
    if match:
        negation, key = match.groups()
        operator = Operator.NOT_EXISTS if negation else Operator.EXISTS
        return Requirement(key=key, operator=operator)

    raise SelectorError(f"Cannot parse the label selector requirement: {chunk!r}")
