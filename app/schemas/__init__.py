"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.chat import (
    ChatCreatedData,
    CompanyMemberData,
    HistoryResponseData,
    IdentityClaim,
    MessageData,
    UserProfileData,
)

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()

__all__ = [
    "ApiResponse",
    "ChatCreatedData",
    "CompanyMemberData",
    "HistoryResponseData",
    "IdentityClaim",
    "MessageData",
    "UserProfileData",
]
