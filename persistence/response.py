from typing import Any, Optional
from pydantic import BaseModel

class ResponseModel(BaseModel):
    code: int = 200
    message: str = "success"
    data: Optional[Any] = None

    @staticmethod
    def success(data: Any = None):
        return {"code": 200, "message": "success", "data": data}

    @staticmethod
    def paged(items: list, total: int, page: int, page_size: int):
        """Envelope for a page of records plus its position in the full result."""
        return {
            "code": 200,
            "message": "success",
            "data": {"items": items, "total": total, "page": page, "page_size": page_size},
        }

    @staticmethod
    def fail(code: int = 400, message: str = "error", data: Any = None):
        return {"code": code, "message": message, "data": data}
