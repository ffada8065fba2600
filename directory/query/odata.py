"""OData ``$filter`` emitter for Microsoft Graph."""

import logging
from typing import Iterable

from .predicates import AnyOf, BooleanPredicate, MatchKind, Predicate, RawTerm, Term

logger = logging.getLogger(__name__)


def escape_odata_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted OData string literal."""
    return value.replace("'", "''")


def _emit_term(term: Term) -> str:
    if isinstance(term, Predicate):
        literal = escape_odata_literal(term.value)
        if term.match_kind == MatchKind.STARTS_WITH:
            return f"startsWith({term.attribute}, '{literal}')"
        return f"{term.attribute} eq '{literal}'"
    if isinstance(term, BooleanPredicate):
        return f"{term.attribute} eq {'true' if term.value else 'false'}"
    if isinstance(term, AnyOf):
        alternatives = [_emit_term(alternative) for alternative in term.alternatives]
        if len(alternatives) == 1:
            return alternatives[0]
        return "(" + " or ".join(alternatives) + ")"
    if isinstance(term, RawTerm):
        return term.text
    raise TypeError(f"Unknown term type: {type(term).__name__}")


def emit_odata_filter(terms: Iterable[Term]) -> str:
    """
    Render AND-ed terms as an OData filter.

    Returns an empty string when there are no terms, meaning no ``$filter``
    should be sent. Raw terms are emitted verbatim and not validated.
    """
    rendered = " and ".join(_emit_term(term) for term in terms)
    logger.debug(f"OData filter: {rendered!r}")
    return rendered
