"""
Syntax-neutral predicate model.

A criteria object is compiled into an ordered list of terms that are AND-ed
together. A term is one of:

- ``Predicate``: attribute compared to a string, exact or prefix match
- ``BooleanPredicate``: attribute compared to a boolean literal
- ``AnyOf``: a nested OR-group of terms
- ``RawTerm``: caller-supplied filter text, emitted verbatim

Nothing here produces target-language punctuation. The OData and LDAP
emitters turn the same term list into their own syntax.
"""

import logging
import re
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

WILDCARD = "*"

# RFC 4512 attribute descriptor or numeric OID, optionally with options (;binary)
_ATTRIBUTE_NAME = re.compile(r"^(?:[A-Za-z][A-Za-z0-9-]*|\d+(?:\.\d+)*)(?:;[A-Za-z0-9-]+)*$")

# Criteria fields that are not mapped through a field map
_UNMAPPED_FIELDS = ("custom_attributes", "custom_filter")


class MatchKind(Enum):
    EQUALS = "equals"
    STARTS_WITH = "starts_with"


class FieldKind(Enum):
    TEXT = "text"
    BOOLEAN = "boolean"
    ANY_OF = "any_of"


@dataclass(frozen=True)
class FieldSpec:
    """How one criteria field maps onto backend attributes."""

    attributes: Tuple[str, ...]
    wildcard: bool = False
    kind: FieldKind = FieldKind.TEXT


def text(*attributes: str, wildcard: bool = False) -> FieldSpec:
    """A string field. Several attributes compile to an OR-group."""
    return FieldSpec(tuple(attributes), wildcard=wildcard)


def boolean(attribute: str) -> FieldSpec:
    return FieldSpec((attribute,), kind=FieldKind.BOOLEAN)


def any_of(attribute: str) -> FieldSpec:
    """A list field whose values are OR-ed against a single attribute."""
    return FieldSpec((attribute,), kind=FieldKind.ANY_OF)


FieldMap = Dict[str, FieldSpec]


@dataclass(frozen=True)
class Predicate:
    attribute: str
    value: str
    match_kind: MatchKind = MatchKind.EQUALS


@dataclass(frozen=True)
class BooleanPredicate:
    attribute: str
    value: bool


@dataclass(frozen=True)
class AnyOf:
    alternatives: Tuple["Term", ...]


@dataclass(frozen=True)
class RawTerm:
    text: str


Term = Union[Predicate, BooleanPredicate, AnyOf, RawTerm]


def parse_value(value: str, wildcard: bool) -> Optional[Tuple[str, MatchKind]]:
    """
    Split a raw criteria value into its literal and match kind.

    For wildcard-enabled fields any ``*`` turns the value into a prefix
    match on the literal text before the first ``*``. Text after the first
    marker cannot be expressed as a prefix and is dropped with a warning.
    For other fields ``*`` is ordinary data.

    Args:
        value: Raw value from the criteria object.
        wildcard: Whether the field honours ``*``.

    Returns:
        Optional[Tuple[str, MatchKind]]: ``None`` when the value places no
        constraint (empty, or only wildcard markers).
    """
    if not value:
        return None
    if not wildcard or WILDCARD not in value:
        return value, MatchKind.EQUALS

    prefix, _, remainder = value.partition(WILDCARD)
    if remainder.replace(WILDCARD, ""):
        logger.warning(
            f"Wildcard value '{value}' has text after the first '*'; "
            f"matching on prefix '{prefix}' only"
        )
    if not prefix:
        return None
    return prefix, MatchKind.STARTS_WITH


def _text_term(spec: FieldSpec, value: str) -> Optional[Term]:
    parsed = parse_value(value, spec.wildcard)
    if parsed is None:
        return None
    literal, match_kind = parsed
    leaves = tuple(Predicate(attribute, literal, match_kind) for attribute in spec.attributes)
    if len(leaves) == 1:
        return leaves[0]
    return AnyOf(leaves)


def _any_of_term(spec: FieldSpec, values: List[str]) -> Optional[Term]:
    leaves = tuple(
        Predicate(spec.attributes[0], value) for value in values if value
    )
    if not leaves:
        return None
    return AnyOf(leaves)


def validate_attribute_name(name: str) -> str:
    """
    Reject attribute names that could change the shape of a filter.

    Raises:
        ValueError: If the name is not a plain attribute descriptor or OID.
    """
    if not _ATTRIBUTE_NAME.match(name or ""):
        raise ValueError(f"Invalid attribute name: {name!r}")
    return name


def compile_predicates(
    criteria: Any,
    field_map: FieldMap,
    include_custom_attributes: bool = True,
) -> List[Term]:
    """
    Compile a criteria object into an ordered list of AND-ed terms.

    Fields are visited in field-map order. Unset fields produce nothing. A
    set field the backend has no mapping for is ignored with a warning.
    Custom attributes come next, then the raw custom filter last.

    Args:
        criteria: A User/Group/ComputerSearchCriteria instance.
        field_map: Backend field map, criteria field name to FieldSpec.
        include_custom_attributes: Whether custom attributes can be queried.

    Returns:
        List[Term]: Terms to be AND-ed by an emitter.
    """
    terms: List[Term] = []

    for criteria_field in fields(criteria):
        name = criteria_field.name
        if name in _UNMAPPED_FIELDS or name in field_map:
            continue
        value = getattr(criteria, name)
        if value is not None and value != [] and value != "":
            logger.warning(f"Criteria field '{name}' is not searchable on this backend; ignoring")

    for name, spec in field_map.items():
        value = getattr(criteria, name, None)
        if value is None:
            continue

        if spec.kind == FieldKind.BOOLEAN:
            term = BooleanPredicate(spec.attributes[0], bool(value))
        elif spec.kind == FieldKind.ANY_OF:
            term = _any_of_term(spec, value)
        else:
            term = _text_term(spec, value)

        if term is not None:
            terms.append(term)

    custom_attributes = getattr(criteria, "custom_attributes", None) or {}
    if custom_attributes and not include_custom_attributes:
        logger.warning("Custom attribute criteria are not searchable on this backend; ignoring")
    elif custom_attributes:
        for attribute, value in custom_attributes.items():
            term = _text_term(text(validate_attribute_name(attribute), wildcard=True), value)
            if term is not None:
                terms.append(term)

    custom_filter = getattr(criteria, "custom_filter", None)
    if custom_filter:
        terms.append(RawTerm(custom_filter))

    return terms
