# gallery/schemas.py
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from jsonschema import validate, ValidationError

from gallery.errors import SchemaValidationError

OutputType = Literal["text", "image"]

# Persisted contract for prompts.result_json (NULL means pending)
RESULT_SCHEMA = {
    "oneOf": [
        {
            "type": "object",
            "properties": {
                "type": {"const": "text"},
                "value": {"type": "string"},
            },
            "required": ["type", "value"],
            "additionalProperties": False,
        },
        {
            "type": "object",
            "properties": {
                "type": {"const": "image"},
                "value": {"type": "string", "minLength": 1},
            },
            "required": ["type", "value"],
            "additionalProperties": False,
        },
    ]
}


def validate_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Strictly validate a terminal result before it is written."""
    try:
        validate(instance=result, schema=RESULT_SCHEMA)
    except ValidationError as e:
        raise SchemaValidationError(f"Invalid prompt result: {e.message}") from e
    return result


class SubmitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    # empty prompts are accepted; the UI is what keeps them out
    prompt: str
    output_type: OutputType = Field(default="text", alias="outputType")


class TextResultView(BaseModel):
    type: Literal["text"] = "text"
    value: str


class ImageResultView(BaseModel):
    type: Literal["image"] = "image"
    # resolved URL, or None once the blob has been deleted
    value: Optional[str] = None


class PromptView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    session_id: str = Field(alias="sessionId")
    prompt: str
    result: Optional[Union[TextResultView, ImageResultView]] = None
    creation_time: str = Field(alias="creationTime")
    hue: int


class PromptList(BaseModel):
    prompts: List[PromptView]
