"""
Step vocabulary - one typed model per atomic browser action.

Field names in persisted documents are camelCase (``storeKey``,
``credentialId``); Python attributes are snake_case. A few fields keep the
document's historical names: navigate/type/wait store their payload under
``value`` and extractWithLogic stores its operator under ``condition``.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel


ComparisonOp = Literal["equals", "contains", "greaterThan", "lessThan"]
COMPARISON_OPS: tuple[str, ...] = ("equals", "contains", "greaterThan", "lessThan")

HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]
ScrollType = Literal["toElement", "byAmount"]
VariableOperation = Literal["replace", "append", "prepend", "increment", "decrement"]


class StepBase(BaseModel):
    """Fields shared by every step."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    id: str
    description: str = ""

    def credential_refs(self) -> list[str]:
        """Credential references this step resolves at dispatch time."""
        return []


class NavigateStep(StepBase):
    type: Literal["navigate"] = "navigate"
    url: str = Field(default="", alias="value")


class ClickStep(StepBase):
    type: Literal["click"] = "click"
    selector: str = ""


class TypeStep(StepBase):
    """Type text into a field. A linked credential replaces the literal text."""
    type: Literal["type"] = "type"
    selector: str = ""
    text: str = Field(default="", alias="value")
    credential_id: Optional[str] = None

    def credential_refs(self) -> list[str]:
        return [self.credential_id] if self.credential_id else []


class WaitStep(StepBase):
    type: Literal["wait"] = "wait"
    duration: str = Field(default="1", alias="value")

    @field_validator("duration", mode="before")
    @classmethod
    def _duration_as_text(cls, value: Any) -> Any:
        # Parsed at dispatch; keep whatever the editor stored.
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ScreenshotStep(StepBase):
    type: Literal["screenshot"] = "screenshot"
    save_path: Optional[str] = None


class ExtractStep(StepBase):
    type: Literal["extract"] = "extract"
    selector: str = ""
    store_key: Optional[str] = None


class ExtractWithLogicStep(StepBase):
    type: Literal["extractWithLogic"] = "extractWithLogic"
    selector: str = ""
    comparison_op: ComparisonOp = Field(default="equals", alias="condition")
    expected_value: str = ""


class ApiCallStep(StepBase):
    type: Literal["apiCall"] = "apiCall"
    method: HttpMethod = "GET"
    url: str = ""
    body: Optional[str] = None
    headers: dict[str, str] = Field(default_factory=dict)
    store_key: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class ScrollStep(StepBase):
    type: Literal["scroll"] = "scroll"
    scroll_type: ScrollType = "byAmount"
    selector: Optional[str] = None
    scroll_amount: Optional[int] = None


class SelectOptionStep(StepBase):
    type: Literal["selectOption"] = "selectOption"
    selector: str = ""
    option_value: Optional[str] = None
    option_index: Optional[int] = None


class FileUploadStep(StepBase):
    type: Literal["fileUpload"] = "fileUpload"
    selector: str = ""
    file_path: str = ""


class HoverStep(StepBase):
    type: Literal["hover"] = "hover"
    selector: str = ""


class SetVariableStep(StepBase):
    type: Literal["setVariable"] = "setVariable"
    variable_name: str = ""
    value: str = ""


class ModifyVariableStep(StepBase):
    """Update an existing variable in place (numeric ops treat missing as 0)."""
    type: Literal["modifyVariable"] = "modifyVariable"
    variable_name: str = ""
    operation: VariableOperation = "replace"
    value: str = ""


AutomationStep = Annotated[
    Union[
        NavigateStep,
        ClickStep,
        TypeStep,
        WaitStep,
        ScreenshotStep,
        ExtractStep,
        ExtractWithLogicStep,
        ApiCallStep,
        ScrollStep,
        SelectOptionStep,
        FileUploadStep,
        HoverStep,
        SetVariableStep,
        ModifyVariableStep,
    ],
    Field(discriminator="type"),
]

_STEP_ADAPTER: TypeAdapter = TypeAdapter(AutomationStep)

STEP_LABELS: dict[str, str] = {
    "navigate": "Navigate",
    "click": "Click",
    "type": "Type",
    "wait": "Wait",
    "screenshot": "Screenshot",
    "extract": "Extract",
    "extractWithLogic": "Extract With Logic",
    "apiCall": "API Call",
    "scroll": "Scroll",
    "selectOption": "Select Option",
    "fileUpload": "File Upload",
    "hover": "Hover",
    "setVariable": "Set Variable",
    "modifyVariable": "Modify Variable",
}

STEP_TYPES: tuple[str, ...] = tuple(STEP_LABELS)

# Steps that act on a page element and default to "body" when created.
ELEMENT_STEP_TYPES = frozenset({
    "click", "type", "extract", "extractWithLogic",
    "selectOption", "fileUpload", "hover",
})


def parse_step(data: Any) -> AutomationStep:
    """Validate a raw step mapping into its typed model."""
    return _STEP_ADAPTER.validate_python(data)


def default_step(step_type: str, step_id: str) -> AutomationStep:
    """Build a new step the way the editor seeds it."""
    if step_type not in STEP_LABELS:
        raise ValueError(f"Unknown step type: {step_type}")

    data: dict[str, Any] = {
        "id": step_id,
        "type": step_type,
        "description": f"{STEP_LABELS[step_type]} step",
    }
    if step_type == "navigate":
        data["value"] = "https://"
    elif step_type in ELEMENT_STEP_TYPES:
        data["selector"] = "body"
    return parse_step(data)
