"""Contact records for the per-user ``CONTACTS`` table.

A :class:`ContactRecord` only accepts the fields declared in
:data:`CONTACT_FIELDS`. The same declaration generates the column list of
every ``CONTACTS`` table, so the record's schema is the table's schema.

Example::

    >>> record = ContactRecord()
    >>> record.set("surname", "O'Neill").ok
    True
    >>> str(record.set("firstname", "Colin").value)
    "(FIRSTNAME, SURNAME) values ('Colin', 'O''Neill')"
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .errors import Result, UnknownField, ValidationError
from .validators import escape_quotes, validate_name, validate_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContactField:
    """Column declaration for one piece of contact information."""

    name: str
    max_length: int
    validator: Callable[[str], bool]
    rule: str

    @property
    def sql_type(self) -> str:
        return f"VARCHAR({self.max_length})"


#: Ordered field schema shared by records and the ``CONTACTS`` table.
CONTACT_FIELDS = {
    f.name: f
    for f in (
        ContactField(
            "FIRSTNAME",
            40,
            validate_name,
            "name fields can only contain letters, spaces, dashes (-) and apostrophes (')",
        ),
        ContactField(
            "SURNAME",
            40,
            validate_name,
            "name fields can only contain letters, spaces, dashes (-) and apostrophes (')",
        ),
        ContactField(
            "PHONE",
            16,
            validate_phone,
            "phone numbers can only contain digits and one leading '+' sign",
        ),
    )
}


def column_definitions() -> str:
    """Return the ``CONTACTS`` column list, e.g. ``FIRSTNAME VARCHAR(40), ...``."""
    return ", ".join(f"{f.name} {f.sql_type}" for f in CONTACT_FIELDS.values())


class ContactRecord:
    """
    Validated, in-memory contact.

    Values are stored already escaped for use inside single-quoted SQL
    literals; :meth:`get` returns them in that form.
    """

    def __init__(self):
        self._values: dict[str, Optional[str]] = {name: None for name in CONTACT_FIELDS}

    @classmethod
    def from_fields(cls, **fields: Optional[str]) -> Result["ContactRecord"]:
        """
        Build a record from keyword arguments, stopping at the first rejection.

        Args:
            **fields: Field names (case-insensitive) mapped to raw values.

        Returns:
            Result[ContactRecord]: The populated record, or the first error.
        """
        record = cls()
        for key, value in fields.items():
            result = record.set(key, value)
            if not result:
                return result
        return Result.success(record)

    @staticmethod
    def fields() -> dict[str, str]:
        """Map each field name to its SQL type."""
        return {name: f.sql_type for name, f in CONTACT_FIELDS.items()}

    def _lookup(self, key: Optional[str]) -> ContactField:
        if not isinstance(key, str) or not key.strip():
            raise UnknownField("null, empty, or all-whitespace keys not allowed", "set")
        field = CONTACT_FIELDS.get(key.strip().upper())
        if field is None:
            raise UnknownField(f"Contact doesn't contain key '{key}'", "set")
        return field

    def get(self, key: str) -> Result[Optional[str]]:
        """Return the stored (escaped) value of ``key``."""
        try:
            field = self._lookup(key)
        except UnknownField as exc:
            logger.error("get() : %s", exc.message)
            return Result.failure(exc)
        return Result.success(self._values[field.name])

    def set(self, key: str, value: Optional[str]) -> Result["ContactRecord"]:
        """
        Validate and store ``value`` under ``key``.

        ``None``, empty and all-whitespace values clear the field. A rejected
        value leaves the record unchanged.

        Args:
            key (str): Field name, case-insensitive.
            value (str | None): Raw value.

        Returns:
            Result[ContactRecord]: This record on success; ``UnknownField``
            or ``ValidationError`` otherwise.
        """
        try:
            field = self._lookup(key)
        except UnknownField as exc:
            logger.error("set() : %s", exc.message)
            return Result.failure(exc)

        if value is not None and not isinstance(value, str):
            error = ValidationError(f"{field.name} must be a string", "set")
            logger.error("set() : %s", error.message)
            return Result.failure(error)

        if value is None or not value.strip():
            self._values[field.name] = None
            return Result.success(self)

        if not field.validator(value):
            error = ValidationError(field.rule, "set")
            logger.error("set() : %s", error.message)
            return Result.failure(error)

        if len(value) > field.max_length:
            error = ValidationError(
                f"{field.name} cannot be longer than {field.max_length} characters", "set"
            )
            logger.error("set() : %s", error.message)
            return Result.failure(error)

        self._values[field.name] = escape_quotes(value)
        return Result.success(self)

    def projection(self) -> Optional[tuple[list[str], list[str]]]:
        """
        Return the non-null column names and their escaped values, in order.

        Returns ``None`` when every field is null.
        """
        pairs = [(k, v) for k, v in self._values.items() if v is not None]
        if not pairs:
            return None
        return [k for k, _ in pairs], [v for _, v in pairs]

    def assignments(self) -> str:
        """Return a full-replace ``SET`` list; cleared fields become ``NULL``."""
        return ", ".join(
            f"{k} = NULL" if v is None else f"{k} = '{v}'" for k, v in self._values.items()
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, ContactRecord):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        return f"ContactRecord({self})"

    def __str__(self) -> str:
        projection = self.projection()
        if projection is None:
            return ""
        columns, values = projection
        quoted = ", ".join(f"'{v}'" for v in values)
        return f"({', '.join(columns)}) values ({quoted})"


#: Range of a signed 64-bit SQLite INTEGER.
SQLITE_INTEGER_MIN = -(2**63)
SQLITE_INTEGER_MAX = 2**63 - 1


def check_contact_ids(ids: Iterable[int], operation: str) -> list[int]:
    """
    Return ``ids`` as a list after checking each one is an integer that
    fits a SQLite ``INTEGER``.

    Raises:
        ValidationError: If ``ids`` is empty or holds a non-integer or an
            out-of-range integer.
    """
    ids = list(ids)
    if not ids:
        raise ValidationError("no contact IDs given", operation)
    for contact_id in ids:
        if isinstance(contact_id, bool) or not isinstance(contact_id, int):
            raise ValidationError(f"contact ID {contact_id!r} is not an integer", operation)
        if not SQLITE_INTEGER_MIN <= contact_id <= SQLITE_INTEGER_MAX:
            raise ValidationError(f"contact ID {contact_id} is out of range", operation)
    return ids
