from typing import Any

from pydantic import BaseModel, Field


class Request(BaseModel):
    id: int | str | None = None
    method: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class Response(BaseModel):
    id: int | str | None = None
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_wire(self) -> dict:
        body: dict[str, Any] = {"error": self.error} if self.error is not None else {"result": self.result}
        if self.id is not None:
            body["id"] = self.id
        return body


class PushEnvelope(BaseModel):
    kind: str
    payload: Any = None
