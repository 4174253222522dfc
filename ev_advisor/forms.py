"""
Normalizers for the agent's parameter form and for inbound chat requests.

The agent describes its input form in a loosely-shaped structure (two field
layouts, localized labels as strings or dicts). Everything here coerces that
into the flat shape the chat front end consumes.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SUPPORTED_TYPES = (
    "text-input",
    "secret-input",
    "paragraph",
    "number",
    "select",
    "options",
    "radio",
    "switch",
)
OPTION_TYPES = {"select", "options", "radio"}
LOCALE_PREFERENCE = ("zh_Hans", "zh_CN", "zh", "en_US", "en")

InputValue = Union[str, int, float, bool, None]


class FormOption(BaseModel):
    label: str
    value: str


class FormField(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    label: str
    variable: str
    required: bool = False
    default_value: Union[bool, str] = Field("", alias="defaultValue")
    options: Optional[List[FormOption]] = None
    max_length: Optional[int] = Field(None, alias="maxLength")
    placeholder: Optional[str] = None


class ParametersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_input_form: List[FormField] = Field(default_factory=list, alias="userInputForm")
    opening_statement: Optional[str] = Field(None, alias="openingStatement")


class DifyChatPayload(BaseModel):
    query: str
    inputs: Dict[str, InputValue] = Field(default_factory=dict)
    response_mode: str = "streaming"
    conversation_id: str = ""
    user: str = "web-user"


# -----------------------------
# Parameter form
# -----------------------------
def localize_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if not isinstance(value, dict):
        return ""

    for key in LOCALE_PREFERENCE:
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate.strip():
            return candidate

    for item in value.values():
        if isinstance(item, str):
            return item
    return ""


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def normalize_options(raw: Any) -> List[FormOption]:
    if not isinstance(raw, list):
        return []

    options = []
    for item in raw:
        if isinstance(item, str):
            options.append(FormOption(label=item, value=item))
            continue
        if not isinstance(item, dict) or not _is_scalar(item.get("value")):
            continue
        value = _stringify(item["value"])
        options.append(FormOption(label=localize_text(item.get("label")) or value, value=value))
    return options


def normalize_default_value(field_type: str, value: Any) -> Union[bool, str]:
    if field_type == "switch":
        return bool(value)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return _stringify(value)
    return ""


def normalize_field(raw: Any) -> Optional[FormField]:
    """One form entry, either `{"type": ..., ...}` or `{"<type>": {...}}`."""
    if not isinstance(raw, dict):
        return None

    if isinstance(raw.get("type"), str):
        field_type, config = raw["type"], raw
    else:
        found = next(
            ((k, v) for k, v in raw.items() if k in SUPPORTED_TYPES and isinstance(v, dict)),
            None,
        )
        if found is None:
            return None
        field_type, config = found

    if field_type not in SUPPORTED_TYPES:
        return None

    variable = config.get("variable")
    if variable is None:
        variable = config.get("name")
    if not isinstance(variable, str) or not variable.strip():
        return None

    max_length = None
    for key in ("max_length", "maxLength"):
        candidate = config.get(key)
        if isinstance(candidate, (int, float)) and not isinstance(candidate, bool):
            max_length = candidate if candidate > 0 else None
            break

    return FormField(
        type=field_type,
        label=localize_text(config.get("label")) or variable,
        variable=variable,
        required=bool(config.get("required")),
        default_value=normalize_default_value(field_type, config.get("default")),
        options=normalize_options(config.get("options")) if field_type in OPTION_TYPES else None,
        max_length=int(max_length) if max_length is not None else None,
        placeholder=localize_text(config.get("placeholder")) or None,
    )


def normalize_parameters(payload: Any) -> ParametersResponse:
    if not isinstance(payload, dict):
        payload = {}
    raw_form = payload.get("user_input_form")
    fields = [f for f in map(normalize_field, raw_form if isinstance(raw_form, list) else []) if f]
    opening = payload.get("opening_statement")
    return ParametersResponse(
        user_input_form=fields,
        opening_statement=opening if isinstance(opening, str) else None,
    )


# -----------------------------
# Inbound chat request
# -----------------------------
def normalize_inputs(value: Any) -> Dict[str, InputValue]:
    if not isinstance(value, dict):
        return {}
    return {str(k): v if v is None or _is_scalar(v) else str(v) for k, v in value.items()}


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def build_chat_payload(body: Any) -> DifyChatPayload:
    """Validate a front-end chat request. Raises ValueError without a query."""
    if not isinstance(body, dict):
        body = {}
    query = _clean_str(body.get("query"))
    if not query:
        raise ValueError("query is required")

    return DifyChatPayload(
        query=query,
        inputs=normalize_inputs(body.get("inputs")),
        conversation_id=_clean_str(body.get("conversationId")),
        user=_clean_str(body.get("user")) or "web-user",
    )
