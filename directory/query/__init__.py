from .ldap_filter import (
    emit_ldap_filter,
    escape_dn,
    escape_ldap_filter,
    escape_ldap_filter_with_wildcard,
)
from .odata import emit_odata_filter, escape_odata_literal
from .predicates import (
    AnyOf,
    BooleanPredicate,
    FieldSpec,
    MatchKind,
    Predicate,
    RawTerm,
    compile_predicates,
)

__all__ = [
    'AnyOf',
    'BooleanPredicate',
    'FieldSpec',
    'MatchKind',
    'Predicate',
    'RawTerm',
    'compile_predicates',
    'emit_ldap_filter',
    'emit_odata_filter',
    'escape_dn',
    'escape_ldap_filter',
    'escape_ldap_filter_with_wildcard',
    'escape_odata_literal',
]
