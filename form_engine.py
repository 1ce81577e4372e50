"""
Dynamic form engine

Turns a tenant-authored list of field descriptors into a pydantic validator,
a set of default values and a render plan for a generic form.

Descriptors are accepted in either of the shapes found in stored data:

    {"name": "size", "kind": "select", "options": ["S", "M"]}
    {"key": "size", "type": "select", "options": "S, M", "validation": {"minLength": 1}}

Compiled validators are cached by schema value, so calling compile_schema on
every render is cheap.
"""
import re
from functools import lru_cache
from typing import Annotated, Any, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    create_model,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

FieldKind = Literal["text", "number", "email", "phone", "select", "textarea", "checkbox"]

KIND_ALIASES = {"tel": "phone"}


class SchemaError(ValueError):
    """Raised when a form schema cannot be compiled."""


def parse_tags(raw: str) -> List[str]:
    """Split comma separated text into trimmed, non-empty tokens, keeping order."""
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


# -----------------
# Descriptor models
# -----------------

class FieldOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    label: str

    @model_validator(mode="before")
    @classmethod
    def _from_plain_value(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"value": data, "label": data}
        if isinstance(data, dict) and "label" not in data and "value" in data:
            return {**data, "label": data["value"]}
        return data


class FieldConstraints(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("min_length", "minLength"))
    max_length: Optional[int] = Field(None, ge=0, validation_alias=AliasChoices("max_length", "maxLength"))
    pattern: Optional[str] = None


class FieldDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, validation_alias=AliasChoices("name", "key"))
    kind: FieldKind = Field("text", validation_alias=AliasChoices("kind", "type"))
    label: str = ""
    required: bool = False
    placeholder: Optional[str] = None
    options: Tuple[FieldOption, ...] = ()
    constraints: FieldConstraints = Field(
        default_factory=FieldConstraints,
        validation_alias=AliasChoices("constraints", "validation"),
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        return KIND_ALIASES.get(value, value)

    @field_validator("options", mode="before")
    @classmethod
    def _split_option_text(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            return parse_tags(value)
        return value

    @field_validator("constraints", mode="before")
    @classmethod
    def _empty_constraints(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="before")
    @classmethod
    def _default_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label"):
            return {**data, "label": data.get("name") or data.get("key") or ""}
        return data

    @property
    def option_values(self) -> Tuple[str, ...]:
        return tuple(option.value for option in self.options)


FormSchema = Tuple[FieldDescriptor, ...]

_schema_adapter = TypeAdapter(List[FieldDescriptor])

SchemaInput = Union[Iterable[Union[FieldDescriptor, Mapping[str, Any]]], Mapping[str, Any]]


def load_schema(fields: SchemaInput) -> FormSchema:
    """Normalize raw descriptor data (or a {"fields": [...]} config) into a FormSchema."""
    if isinstance(fields, Mapping):
        fields = fields.get("fields") or []
    items = list(fields)
    if all(isinstance(item, FieldDescriptor) for item in items):
        return tuple(items)
    raw = [item.model_dump() if isinstance(item, FieldDescriptor) else item for item in items]
    try:
        return tuple(_schema_adapter.validate_python(raw))
    except ValidationError as exc:
        raise SchemaError(f"Invalid field descriptor: {exc.errors()[0]['msg']}") from exc


def check_schema(schema: FormSchema) -> None:
    seen = set()
    for field in schema:
        if field.name in seen:
            raise SchemaError(f"Duplicate field name '{field.name}'")
        seen.add(field.name)
        if field.kind == "select" and field.required and not field.options:
            raise SchemaError(f"Required select field '{field.name}' has no options")
        if field.constraints.pattern is not None:
            try:
                re.compile(field.constraints.pattern)
            except re.error as exc:
                raise SchemaError(f"Invalid pattern for field '{field.name}': {exc}") from exc


def validate_attribute_schema(fields: SchemaInput) -> FormSchema:
    """Authoring-time check for category attribute schemas.

    Stricter than compile_schema: every select attribute must list at least one
    option, required or not.
    """
    schema = load_schema(fields)
    check_schema(schema)
    for field in schema:
        if field.kind == "select" and not field.options:
            raise SchemaError(f"Select attribute '{field.name}' needs at least one option")
    return schema


# ------------------
# Per-kind field rules
# ------------------

def _required_message(label: str) -> PydanticCustomError:
    return PydanticCustomError("required", "{label} is required", {"label": label})


def _text_checks(field: FieldDescriptor):
    pattern = re.compile(field.constraints.pattern) if field.constraints.pattern else None
    min_length = field.constraints.min_length
    max_length = field.constraints.max_length

    def check(value: str) -> str:
        if field.required and not value:
            raise _required_message(field.label)
        if min_length is not None and len(value) < min_length:
            raise PydanticCustomError(
                "string_too_short",
                "{label} should have at least {min_length} characters",
                {"label": field.label, "min_length": min_length},
            )
        if max_length is not None and len(value) > max_length:
            raise PydanticCustomError(
                "string_too_long",
                "{label} should have at most {max_length} characters",
                {"label": field.label, "max_length": max_length},
            )
        if pattern is not None and not pattern.search(value):
            raise PydanticCustomError(
                "pattern_mismatch", "{label} has an invalid format", {"label": field.label}
            )
        return value

    return check


def _number_rule(field: FieldDescriptor):
    annotation = Annotated[float, Field(ge=field.constraints.min, le=field.constraints.max)]
    return annotation, field.required


def _email_rule(field: FieldDescriptor):
    return EmailStr, field.required


def _checkbox_rule(field: FieldDescriptor):
    return bool, True


def _select_rule(field: FieldDescriptor):
    if not field.options:
        return str, field.required
    return Literal[field.option_values], field.required


def _text_rule(field: FieldDescriptor):
    annotation = Annotated[str, AfterValidator(_text_checks(field))]
    return annotation, field.required


FIELD_RULES = {
    "number": _number_rule,
    "email": _email_rule,
    "checkbox": _checkbox_rule,
    "select": _select_rule,
    "text": _text_rule,
    "textarea": _text_rule,
    "phone": _text_rule,
}


# ---------
# Validator
# ---------

class ValidationResult(BaseModel):
    success: bool
    data: Optional[Dict[str, Any]] = None
    errors: Dict[str, List[str]] = Field(default_factory=dict)


class Validator:
    """Aggregate validator for one FormSchema. Build through compile_schema."""

    def __init__(self, schema: FormSchema):
        self.schema = schema
        self._labels = {field.name: field.label for field in schema}
        definitions = {}
        for index, field in enumerate(schema):
            annotation, required = FIELD_RULES[field.kind](field)
            if required:
                definitions[f"f{index}"] = (annotation, Field(..., alias=field.name))
            else:
                definitions[f"f{index}"] = (Optional[annotation], Field(None, alias=field.name))
        # positional aliases keep tenant field names from clashing with BaseModel attributes
        self.model = create_model(
            "DynamicForm",
            __config__=ConfigDict(extra="ignore"),
            **definitions,
        )

    def validate(self, data: Mapping[str, Any]) -> ValidationResult:
        try:
            instance = self.model.model_validate(dict(data))
        except ValidationError as exc:
            return ValidationResult(success=False, errors=self._collect(exc))
        return ValidationResult(success=True, data=instance.model_dump(by_alias=True, exclude_unset=True))

    def _collect(self, exc: ValidationError) -> Dict[str, List[str]]:
        errors: Dict[str, List[str]] = {}
        for error in exc.errors():
            name = str(error["loc"][0]) if error["loc"] else "__all__"
            if error["type"] == "missing":
                message = f"{self._labels.get(name, name)} is required"
            else:
                message = error["msg"]
            errors.setdefault(name, []).append(message)
        return errors

    @property
    def defaults(self) -> Dict[str, Any]:
        return form_defaults(self.schema)


@lru_cache(maxsize=256)
def _compile(schema: FormSchema) -> Validator:
    check_schema(schema)
    return Validator(schema)


def compile_schema(fields: SchemaInput) -> Validator:
    return _compile(load_schema(fields))


@lru_cache(maxsize=256)
def _defaults(schema: FormSchema) -> Tuple[Tuple[str, Any], ...]:
    values = []
    for field in schema:
        if field.kind == "number":
            values.append((field.name, 0))
        elif field.kind == "checkbox":
            values.append((field.name, False))
        else:
            values.append((field.name, ""))
    return tuple(values)


def form_defaults(fields: SchemaInput) -> Dict[str, Any]:
    return dict(_defaults(load_schema(fields)))


# ---------
# Rendering
# ---------

WIDGETS = {
    "text": ("text", "text"),
    "phone": ("text", "tel"),
    "email": ("email", "email"),
    "number": ("number", "number"),
    "select": ("select", None),
    "textarea": ("textarea", None),
    "checkbox": ("checkbox", "checkbox"),
}


class RenderedField(BaseModel):
    id: str
    name: str
    label: str
    widget: Literal["text", "number", "email", "select", "textarea", "checkbox"]
    input_type: Optional[str] = None
    required: bool = False
    placeholder: Optional[str] = None
    options: List[FieldOption] = Field(default_factory=list)
    error: Optional[str] = None


def render_fields(
    fields: SchemaInput, errors: Optional[Mapping[str, List[str]]] = None
) -> List[RenderedField]:
    errors = errors or {}
    rendered = []
    for field in load_schema(fields):
        widget, input_type = WIDGETS[field.kind]
        messages = errors.get(field.name) or []
        rendered.append(
            RenderedField(
                id=f"field-{field.name}",
                name=field.name,
                label=field.label,
                widget=widget,
                input_type=input_type,
                required=field.required,
                placeholder=field.placeholder,
                options=list(field.options),
                error=messages[0] if messages else None,
            )
        )
    return rendered
