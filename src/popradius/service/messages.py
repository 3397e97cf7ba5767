from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Message(BaseModel):
    # Wire names are camelCase; Python code uses the snake_case attribute names.
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Center(_Message):
    lng: float
    lat: float


class InitRequest(_Message):
    type: Literal["init"] = "init"
    dataset_location: str | None = Field(default=None, alias="datasetLocation")


class ComputeRequest(_Message):
    type: Literal["compute"] = "compute"
    job_id: int = Field(alias="jobId")
    center: Center
    # None means "use the selected year's reference population".
    target_value: float | None = Field(default=None, alias="targetValue")
    attribute_selector: str = Field(alias="attributeSelector")
    include_circle: bool = Field(default=False, alias="includeCircle")


class ReadyMessage(_Message):
    type: Literal["ready"] = "ready"
    regions: int
    years: list[str] = Field(default_factory=list)


class ResultMessage(_Message):
    type: Literal["result"] = "result"
    job_id: int = Field(alias="jobId")
    radius_km: float = Field(alias="radiusKm")
    total_value: float = Field(alias="totalValue")
    total_area: float = Field(alias="totalArea")
    ids: list[str]
    count: int
    year: str
    target_value: float = Field(alias="targetValue")
    circle: dict[str, Any] | None = None


class ErrorMessage(_Message):
    type: Literal["error"] = "error"
    job_id: int | None = Field(default=None, alias="jobId")
    message: str
    error_type: str = Field(alias="errorType")
    fatal: bool = False


ResponseMessage = ReadyMessage | ResultMessage | ErrorMessage


def response_from_wire(data: dict[str, Any]) -> ResponseMessage:
    kind = data.get("type")
    if kind == "ready":
        return ReadyMessage.model_validate(data)
    if kind == "result":
        return ResultMessage.model_validate(data)
    if kind == "error":
        return ErrorMessage.model_validate(data)
    raise ValueError(f"Unknown response type: {kind!r}")
