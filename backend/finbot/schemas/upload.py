from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UploadExtractResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    extracted_data: dict[str, Any]
    document_text: str
    file_name: Optional[str] = None
    file_size: int
    suggestions: List[str] = Field(default_factory=list)
    auto_created: bool = False
    invoice: Optional[dict[str, Any]] = None
    auto_create_error: Optional[str] = None


class SupportedTypesResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    supported_types: List[str]
    max_file_size: str
    description: str = "Supported file types for invoice processing"
