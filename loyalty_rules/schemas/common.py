from pydantic import BaseModel, ConfigDict


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    count: int
    has_next: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "total": 12,
                "limit": 50,
                "offset": 0,
                "count": 12,
                "has_next": False,
            }
        }
    )


class ErrorFieldOut(BaseModel):
    field: str
    message: str
    type: str | None = None


class ErrorDetailOut(BaseModel):
    code: str
    message: str
    request_id: str
    path: str
    details: list[ErrorFieldOut] | None = None


class ErrorOut(BaseModel):
    error: ErrorDetailOut
