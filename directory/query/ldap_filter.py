"""
RFC 4515 filter emitter and the three LDAP escapers.

Filter values and DN components have different escaping rules. They are
kept as separate functions and must not be swapped.
"""

import logging
from typing import Iterable, Optional

from ldap3.utils.dn import escape_rdn

from .predicates import AnyOf, BooleanPredicate, MatchKind, Predicate, RawTerm, Term

logger = logging.getLogger(__name__)


def escape_ldap_filter(value: str) -> str:
    """Escape a filter assertion value. ``*`` is treated as data."""
    return (
        value.replace("\\", "\\5c")
        .replace("*", "\\2a")
        .replace("(", "\\28")
        .replace(")", "\\29")
        .replace("\0", "\\00")
    )


def escape_ldap_filter_with_wildcard(value: str) -> str:
    """Escape a filter assertion value, leaving ``*`` as the match-any token."""
    return (
        value.replace("\\", "\\5c")
        .replace("(", "\\28")
        .replace(")", "\\29")
        .replace("\0", "\\00")
    )


def escape_dn(value: str) -> str:
    """
    Escape a single RDN value for callers composing a DN, e.g. a bind DN
    built as ``f"uid={escape_dn(name)},ou=people,{base_dn}"``.

    The adapters never build DNs from input; they resolve every DN by
    search. Never use this for filter values.
    """
    return escape_rdn(value)


def _emit_term(term: Term) -> str:
    if isinstance(term, Predicate):
        if term.match_kind == MatchKind.STARTS_WITH:
            return f"({term.attribute}={escape_ldap_filter_with_wildcard(term.value)}*)"
        return f"({term.attribute}={escape_ldap_filter(term.value)})"
    if isinstance(term, BooleanPredicate):
        return f"({term.attribute}={'TRUE' if term.value else 'FALSE'})"
    if isinstance(term, AnyOf):
        alternatives = "".join(_emit_term(alternative) for alternative in term.alternatives)
        if len(term.alternatives) == 1:
            return alternatives
        return f"(|{alternatives})"
    if isinstance(term, RawTerm):
        text = term.text.strip()
        if not text.startswith("("):
            text = f"({text})"
        return text
    raise TypeError(f"Unknown term type: {type(term).__name__}")


def emit_ldap_filter(terms: Iterable[Term], object_class: Optional[str] = None) -> str:
    """
    Render AND-ed terms as an LDAP filter wrapped in ``(&...)``.

    Args:
        terms: Terms from ``compile_predicates``.
        object_class: Entity object class, emitted first as the base term.

    Returns:
        str: For example ``(&(objectClass=person)(uid=jdoe))``.
    """
    parts = []
    if object_class:
        parts.append(f"(objectClass={escape_ldap_filter(object_class)})")
    parts.extend(_emit_term(term) for term in terms)
    rendered = "(&" + "".join(parts) + ")"
    logger.debug(f"LDAP filter: {rendered}")
    return rendered
