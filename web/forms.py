"""
web/forms.py -- Pydantic models for the HTML form contracts.

Each form posted to web/routes.py is turned into a plain dict by
form_to_dict() and validated by one of the models below through
parse_form(), which converts pydantic's error list into a
core.errors.ValidationError keyed by form field name. Routes then re-render
the form with those messages and a 400 status. Nothing is written to a store
until parse_form() has returned.

These models are the transport contract only. Route handlers map them onto
the domain dataclasses in inventory/models.py and auth/models.py.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from starlette.datastructures import FormData

from auth.credentials import MAX_PASSWORD_BYTES
from auth.models import Role
from core.errors import ValidationError
from inventory.models import VehicleStatus

M = TypeVar("M", bound=BaseModel)

_Text = Annotated[str, Field(min_length=1, max_length=100)]

# Integer columns are signed 64-bit in SQLite; larger values cannot be bound.
SQLITE_INT_MAX = 2**63 - 1
MIN_YEAR = 1886
MAX_YEAR = 2100

VEHICLE_FIELDS = (
    "manufacturer",
    "model",
    "year",
    "price",
    "color",
    "engine_type",
    "vin",
    "mileage",
    "fuel_type",
    "transmission_type",
    "images",
    "status",
)

# ---------------------------------------------------------------------------
# Form plumbing
# ---------------------------------------------------------------------------


def _split_images(values: list[str]) -> list[str]:
    """Flatten repeated image fields and newline/comma separated textareas."""
    urls: list[str] = []
    for value in values:
        for part in value.replace(",", "\n").splitlines():
            part = part.strip()
            if part:
                urls.append(part)
    return urls


def form_to_dict(form: FormData, fields: tuple[str, ...]) -> dict[str, Any]:
    """Pick the named fields out of submitted form data.

    Only fields that were actually submitted appear in the result, so a
    partial update form yields a partial dict. images may be repeated or a
    single textarea and always becomes a list.
    """
    data: dict[str, Any] = {}
    for name in fields:
        if name not in form:
            continue
        if name == "images":
            data[name] = _split_images([str(v) for v in form.getlist(name)])
        else:
            data[name] = str(form.get(name))
    return data


_FRIENDLY: dict[str, str] = {
    "missing": "This field is required.",
    "int_parsing": "Must be a whole number.",
    "int_from_float": "Must be a whole number.",
    "float_parsing": "Must be a number.",
    "enum": "Choose one of the listed values.",
}


def _message(error: dict) -> str:
    kind = error.get("type", "")
    if kind in _FRIENDLY:
        return _FRIENDLY[kind]
    if kind == "string_too_short":
        min_length = (error.get("ctx") or {}).get("min_length", 1)
        return "This field is required." if min_length <= 1 else f"Must be at least {min_length} characters."
    if kind in ("greater_than_equal", "less_than_equal"):
        limit = next(iter((error.get("ctx") or {}).values()), None)
        word = "at least" if kind == "greater_than_equal" else "at most"
        return f"Must be {word} {limit}."
    msg = str(error.get("msg", "Invalid value."))
    # Custom validators raise ValueError("...") which pydantic prefixes.
    return msg.removeprefix("Value error, ")


def parse_form(model: type[M], data: dict[str, Any]) -> M:
    """Validate data against model; raise ValidationError with per-field messages."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        field_errors: dict[str, str] = {}
        for error in exc.errors():
            loc = error.get("loc") or ("__all__",)
            field_errors.setdefault(str(loc[0]), _message(error))
        raise ValidationError(field_errors) from exc


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ---------------------------------------------------------------------------
# Vehicle forms
# ---------------------------------------------------------------------------


class VehicleForm(BaseModel):
    """Full vehicle record as submitted by the add form."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    manufacturer: _Text
    model: _Text
    year: int = Field(ge=MIN_YEAR, le=MAX_YEAR)
    price: float = Field(ge=0)
    color: _Text
    engine_type: _Text
    vin: int = Field(ge=0, le=SQLITE_INT_MAX)
    mileage: int = Field(ge=0, le=SQLITE_INT_MAX)
    fuel_type: _Text
    transmission_type: _Text
    images: list[str] = Field(default_factory=list)
    status: VehicleStatus = VehicleStatus.AVAILABLE


class VehiclePatch(BaseModel):
    """Any subset of vehicle fields, as submitted by the update form.

    A field that is submitted is held to the same rules as on the add form;
    a field that is not submitted is left untouched. Use
    model_dump(exclude_unset=True) to get only the submitted fields.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    manufacturer: Optional[_Text] = None
    model: Optional[_Text] = None
    year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    price: Optional[float] = Field(default=None, ge=0)
    color: Optional[_Text] = None
    engine_type: Optional[_Text] = None
    vin: Optional[int] = Field(default=None, ge=0, le=SQLITE_INT_MAX)
    mileage: Optional[int] = Field(default=None, ge=0, le=SQLITE_INT_MAX)
    fuel_type: Optional[_Text] = None
    transmission_type: Optional[_Text] = None
    images: Optional[list[str]] = None
    status: Optional[VehicleStatus] = None

    @field_validator("*", mode="before")
    @classmethod
    def reject_explicit_none(cls, value: Any) -> Any:
        # Submitted fields arrive as strings; None only reaches here if a
        # caller passes it explicitly, which would null a NOT NULL column.
        if value is None:
            raise ValueError("This field is required.")
        return value


# ---------------------------------------------------------------------------
# Search form
# ---------------------------------------------------------------------------

SEARCH_FIELDS = ("manufacturer", "model", "min_year", "max_year", "min_price", "max_price")


class SearchForm(BaseModel):
    """Search filters. Blank inputs become None and are left out of the query."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    manufacturer: Optional[str] = None
    model: Optional[str] = None
    min_year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    max_year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)

    @field_validator("*", mode="before")
    @classmethod
    def blanks_are_absent(cls, value: Any) -> Any:
        return _blank_to_none(value)


# ---------------------------------------------------------------------------
# Registration form
# ---------------------------------------------------------------------------

REGISTRATION_FIELDS = ("first_name", "last_name", "email", "password", "role")


class RegistrationForm(BaseModel):
    """Public self-registration.

    role may be left blank (unassigned) or set to salesperson. Admin accounts
    are issued out of band with `python main.py create-admin`.

    The password is kept exactly as typed, surrounding spaces included,
    because login checks it unmodified.
    """

    model_config = ConfigDict(extra="ignore")

    first_name: _Text
    last_name: _Text
    email: EmailStr
    password: str = Field(min_length=8)
    role: Role = Role.UNASSIGNED

    @field_validator("first_name", "last_name", "email", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
        return value

    @field_validator("role", mode="before")
    @classmethod
    def only_self_assignable_roles(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return Role.UNASSIGNED
        if isinstance(value, str):
            value = value.strip().lower()
        if value == Role.ADMIN.value:
            raise ValueError("Admin accounts cannot be self-registered.")
        if value not in (Role.SALESPERSON.value, Role.UNASSIGNED.value):
            raise ValueError("Unknown role.")
        return value
