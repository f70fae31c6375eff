from typing import Any, Optional, Union
from pydantic import BaseModel
from framework.pagination import Page, Slice

class ResponseModel(BaseModel):
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None

    @staticmethod
    def success(data: Any = None):
        return {"code": 200, "message": "success", "data": data}

    @staticmethod
    def paged(chunk: Union[Page, Slice]):
        """Envelope for a page or slice: content plus its navigation metadata."""
        return {"code": 200, "message": "success", "data": chunk.model_dump(mode="json")}

    @staticmethod
    def fail(code: int = 400, message: str = "error", data: Any = None):
        return {"code": code, "message": message, "data": data}
