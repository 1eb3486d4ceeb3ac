"""Typed template models for automation runs."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

VariableValue = Union[bool, int, float, str]

DEFAULT_STEP_TIMEOUT_MS = 10_000
DEFAULT_HUMAN_DELAY_MS: Tuple[int, int] = (2_000, 5_000)


class TemplateVariable(BaseModel):
    """Declared input of a template."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    type: Literal["string", "number", "boolean"] = "string"
    required: bool = False
    default: Optional[VariableValue] = None
    description: str = ""

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("variable name must not be empty")
        return value


class TemplateMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: str = ""
    description: str = ""
    platform: str = "Other"
    author: str = ""
    tags: List[str] = Field(default_factory=list)


class Step(BaseModel):
    """Single declarative automation step.

    ``action`` is kept as a free string so that templates written for newer
    engines still load; actions this engine does not know are skipped when
    the step runs.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    action: str
    description: str = ""
    order: Optional[int] = None
    selector: Optional[str] = None
    fallback_selectors: List[str] = Field(
        default_factory=list,
        alias="fallbackSelectors",
        validation_alias=AliasChoices("fallbackSelectors", "fallback_selectors"),
    )
    url: Optional[str] = None
    value: Optional[str] = None
    js_expression: Optional[str] = Field(
        default=None,
        alias="jsExpression",
        validation_alias=AliasChoices("jsExpression", "js_expression"),
    )
    wait_ms: Optional[int] = Field(
        default=None,
        ge=0,
        alias="waitMs",
        validation_alias=AliasChoices("waitMs", "wait_ms"),
    )
    wait_for_selector: Optional[str] = Field(
        default=None,
        alias="waitForSelector",
        validation_alias=AliasChoices("waitForSelector", "wait_for_selector"),
    )
    timeout: int = Field(default=DEFAULT_STEP_TIMEOUT_MS, ge=0)
    human_delay: Tuple[int, int] = Field(
        default=DEFAULT_HUMAN_DELAY_MS,
        alias="humanDelay",
        validation_alias=AliasChoices("humanDelay", "human_delay"),
    )
    iterations: Optional[int] = Field(default=None, ge=0)

    @field_validator("action")
    @classmethod
    def _normalise_action(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("value", mode="before")
    @classmethod
    def _coerce_value(cls, value: Any) -> Any:
        # Authoring tools sometimes emit numbers for typed values.
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("human_delay")
    @classmethod
    def _validate_human_delay(cls, value: Tuple[int, int]) -> Tuple[int, int]:
        low, high = value
        if low < 0 or high < low:
            raise ValueError("humanDelay must be [min, max] with 0 <= min <= max")
        return value

    def candidate_selectors(self) -> List[str]:
        """Primary selector followed by the fallbacks, without duplicates."""

        ordered: List[str] = []
        for candidate in [self.selector, *self.fallback_selectors]:
            if candidate and candidate not in ordered:
                ordered.append(candidate)
        return ordered


class Template(BaseModel):
    """Immutable automation template consumed by the engine."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str
    title: str = ""
    version: str = "1.0"
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)
    steps: List[Step] = Field(default_factory=list)
    variables: List[TemplateVariable] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _coerce_document(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        data = dict(value)
        if not data.get("title"):
            metadata = data.get("metadata")
            if isinstance(metadata, dict) and metadata.get("title"):
                data["title"] = metadata["title"]
            elif isinstance(metadata, TemplateMetadata) and metadata.title:
                data["title"] = metadata.title
        return data

    @field_validator("variables")
    @classmethod
    def _unique_variables(cls, value: List[TemplateVariable]) -> List[TemplateVariable]:
        seen = set()
        for variable in value:
            if variable.name in seen:
                raise ValueError(f"duplicate variable '{variable.name}'")
            seen.add(variable.name)
        return value

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def resolve_variables(self, supplied: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Merge declared defaults with caller supplied values (caller wins)."""

        merged: Dict[str, Any] = {}
        for variable in self.variables:
            if variable.default is not None:
                merged[variable.name] = variable.default
        for name, value in (supplied or {}).items():
            merged[name] = value
        return merged

    def missing_required(self, bindings: Dict[str, Any]) -> List[str]:
        return [
            variable.name
            for variable in self.variables
            if variable.required and bindings.get(variable.name) in (None, "")
        ]
