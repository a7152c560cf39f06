from src.shared.schemas.base import (
    ApiResponse,
    BaseSchema,
    DocumentSchema,
    PaginatedResponse,
    SuccessResponse,
    ErrorResponse,
    ErrorDetail,
)

__all__ = [
    "ApiResponse",
    "BaseSchema",
    "DocumentSchema",
    "PaginatedResponse",
    "SuccessResponse",
    "ErrorResponse",
    "ErrorDetail",
]
