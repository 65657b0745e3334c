"""Shared input helpers for service-level validation.

clean_text:  free-text field → stripped str or None; non-strings are a ValidationError
is_choice:   membership test that tolerates unhashable JSON values (lists, objects)

Request bodies arrive as arbitrary JSON, so a field documented as a string
may be a number, a list or an object.  Both helpers turn that into a 422
instead of an AttributeError/TypeError escaping as a 500.
"""

from certflow.core.exceptions import ValidationError


def clean_text(value, field):
    """Strip a free-text input.  None and blank strings become None.

    Raises:
        ValidationError: value is present but not a string.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={field: "must be a string"})
    return value.strip() or None


def is_choice(value, choices):
    """True when *value* is a string member of *choices*."""
    return isinstance(value, str) and value in choices
