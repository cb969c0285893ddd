"""
Lookup columns: match a value in this row against a key column of another
module and surface one of that record's columns.

Keys are compared as display text ("42" matches 42 and 42.0), so values
typed into a form and values imported from CSV line up.
"""

from formula.values import to_text, truthy
from engine.aggregation import stored_value
from store.models import RelationshipMetadata


def _relationship(rel) -> RelationshipMetadata:
    if isinstance(rel, RelationshipMetadata):
        return rel
    return RelationshipMetadata.from_dict(rel)


def resolve_lookup(source, relationship, source_value):
    """Display value of the first target record whose key equals
    source_value, or None. Falsy source values never match."""
    if not truthy(source_value):
        return None
    rel = _relationship(relationship)
    wanted = to_text(source_value)
    for record in source.fetch_all(rel.target_module_name):
        key = stored_value(record, rel.target_column_key)
        if key is not None and to_text(key) == wanted:
            return stored_value(record, rel.display_column_key)
    return None


def resolve_lookup_options(source, relationship) -> list:
    """Choices for a lookup column: [{"value", "label"}].

    One option per distinct key; a later record with the same key replaces
    the earlier option's label but keeps its position. The label falls back
    to the key when the display column is empty.
    """
    rel = _relationship(relationship)
    options = {}
    for record in source.fetch_all(rel.target_module_name):
        value = stored_value(record, rel.target_column_key)
        if value is None or value == "":
            continue
        display = stored_value(record, rel.display_column_key)
        label = to_text(display if truthy(display) else value)
        options[_option_key(value)] = {"value": value, "label": label}
    return list(options.values())


def _option_key(value):
    try:
        hash(value)
    except TypeError:
        return to_text(value)
    return value
