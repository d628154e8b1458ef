"""Field-level validation errors and API status errors."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Iterable, Optional, Union


class ErrorType(Enum):
    """The kind of problem a field error describes."""

    NOT_FOUND = "FieldValueNotFound"
    REQUIRED = "FieldValueRequired"
    DUPLICATE = "FieldValueDuplicate"
    INVALID = "FieldValueInvalid"
    FORBIDDEN = "FieldValueForbidden"
    INTERNAL = "InternalError"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ErrorType.NOT_FOUND: "Not found",
    ErrorType.REQUIRED: "Required value",
    ErrorType.DUPLICATE: "Duplicate value",
    ErrorType.INVALID: "Invalid value",
    ErrorType.FORBIDDEN: "Forbidden",
    ErrorType.INTERNAL: "Internal error",
}

# Error types whose message never shows the offending value.
_VALUELESS = {ErrorType.REQUIRED, ErrorType.FORBIDDEN, ErrorType.INTERNAL}


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class FieldPath:
    """An immutable path to a field inside an object, such as ``spec.containers[0]``."""

    __slots__ = ("_parts",)

    def __init__(self, *names: str) -> None:
        self._parts: tuple = tuple(names)

    @classmethod
    def _from_parts(cls, parts: tuple) -> "FieldPath":
        path = cls()
        path._parts = parts
        return path

    def child(self, *args: str) -> "FieldPath":
        """Return a new path with the given field names appended."""
        return FieldPath._from_parts(self._parts + tuple(args))

    def index(self, i: int) -> "FieldPath":
        """Return a new path that addresses element ``i`` of this field."""
        return FieldPath._from_parts(self._parts + (int(i),))

    def __str__(self) -> str:
        out: list[str] = []
        for part in self._parts:
            if isinstance(part, int):
                out.append(f"[{part}]")
            else:
                if out:
                    out.append(".")
                out.append(part)
        return "".join(out)

    def __repr__(self) -> str:
        return f"FieldPath({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldPath):
            return NotImplemented
        return self._parts == other._parts

    def __hash__(self) -> int:
        return hash(self._parts)


PathLike = Union[FieldPath, str, None]


def _field_name(path: PathLike) -> str:
    return "" if path is None else str(path)


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, (bool, int, float)):
        return str(value).lower() if isinstance(value, bool) else str(value)
    if isinstance(value, BaseException):
        return str(value)
    return repr(value)


class FieldError(Exception):
    """A problem with one field of an object. Its attributes may be adjusted after creation."""

    def __init__(
        self,
        error_type: ErrorType,
        field: PathLike,
        bad_value: Any = None,
        detail: str = "",
    ) -> None:
        super().__init__()
        self.type = error_type
        self.field = _field_name(field)
        self.bad_value = bad_value
        self.detail = detail

    def body(self) -> str:
        """The message without the field name."""
        if self.type in _VALUELESS:
            text = self.type.description
        else:
            text = f"{self.type.description}: {_format_value(self.bad_value)}"
        if self.detail:
            text += f": {self.detail}"
        return text

    def __str__(self) -> str:
        return f"{self.field}: {self.body()}"

    def __repr__(self) -> str:
        return (
            f"FieldError(type={self.type}, field={self.field!r}, "
            f"bad_value={self.bad_value!r}, detail={self.detail!r})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldError):
            return NotImplemented
        return (self.type, self.field, self.bad_value, self.detail) == (
            other.type,
            other.field,
            other.bad_value,
            other.detail,
        )

    __hash__ = None  # type: ignore[assignment]


def duplicate(path: PathLike, value: Any) -> FieldError:
    return FieldError(ErrorType.DUPLICATE, path, value)


def invalid(path: PathLike, value: Any, detail: str) -> FieldError:
    return FieldError(ErrorType.INVALID, path, value, detail)


def required(path: PathLike, detail: str) -> FieldError:
    return FieldError(ErrorType.REQUIRED, path, "", detail)


def not_found(path: PathLike, value: Any) -> FieldError:
    return FieldError(ErrorType.NOT_FOUND, path, value)


def forbidden(path: PathLike, detail: str) -> FieldError:
    return FieldError(ErrorType.FORBIDDEN, path, "", detail)


def internal_error(path: PathLike, err: BaseException) -> FieldError:
    return FieldError(ErrorType.INTERNAL, path, None, str(err))


class AggregateError(Exception):
    """Several errors reported together."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__(str(self))

    def __str__(self) -> str:
        messages: list[str] = []
        for err in self.errors:
            message = str(err)
            if message not in messages:
                messages.append(message)
        if len(messages) == 1:
            return messages[0]
        return "[" + ", ".join(messages) + "]"


def aggregate(errors: Iterable[BaseException]) -> Optional[AggregateError]:
    """Combine errors into one, or return None when there are none."""
    errors = list(errors)
    if not errors:
        return None
    return AggregateError(errors)


def _qualified(name: str, group: str) -> str:
    return f"{name}.{group}" if group else name


class StatusError(Exception):
    """An API error carrying a status reason, an HTTP code and details."""

    def __init__(
        self,
        message: str,
        reason: str,
        code: int,
        group: str = "",
        kind: str = "",
        name: str = "",
        causes: Optional[list] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.code = code
        self.group = group
        self.kind = kind
        self.name = name
        self.causes = list(causes or [])

    def __str__(self) -> str:
        return self.message


class NotFoundError(StatusError):
    """A named resource does not exist."""

    def __init__(self, group: str, resource: str, name: str) -> None:
        super().__init__(
            f"{_qualified(resource, group)} {_quote(name)} not found",
            "NotFound",
            404,
            group=group,
            kind=resource,
            name=name,
        )


class InvalidError(StatusError):
    """An object failed validation."""

    def __init__(self, group: str, kind: str, name: str, errors: Iterable[FieldError]) -> None:
        errors = list(errors)
        message = f"{_qualified(kind, group)} {_quote(name)} is invalid"
        combined = aggregate(errors)
        if combined is not None:
            message += f": {combined}"
        super().__init__(
            message, "Invalid", 422, group=group, kind=kind, name=name, causes=errors
        )


class ForbiddenError(StatusError):
    """An operation on a resource is not allowed."""

    def __init__(self, group: str, resource: str, name: str, err: BaseException) -> None:
        qualified = _qualified(resource, group)
        if not qualified:
            message = f"forbidden: {err}"
        elif not name:
            message = f"{qualified} is forbidden: {err}"
        else:
            message = f"{qualified} {_quote(name)} is forbidden: {err}"
        super().__init__(message, "Forbidden", 403, group=group, kind=resource, name=name)


def _has_reason(err: Optional[BaseException], reason: str) -> bool:
    return isinstance(err, StatusError) and err.reason == reason


def is_not_found(err: Optional[BaseException]) -> bool:
    return _has_reason(err, "NotFound")


def is_invalid(err: Optional[BaseException]) -> bool:
    return _has_reason(err, "Invalid")


def is_forbidden(err: Optional[BaseException]) -> bool:
    return _has_reason(err, "Forbidden")