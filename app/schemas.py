from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class FileType(str, Enum):
    IMAGE = "IMAGE"
    ARTICLE = "ARTICLE"
    VIDEO = "VIDEO"


class AnalysisResult(CamelModel):
    licensing_info: str
    licensing_summary: str
    risk_score: int

    @field_validator("risk_score")
    @classmethod
    def clamp_score(cls, v: int) -> int:
        return max(0, min(100, v))


class AnalysisOut(AnalysisResult):
    id: str
    upload_id: str
    created_at: datetime
    updated_at: datetime


class AnalysisBrief(CamelModel):
    id: str
    licensing_summary: str
    risk_score: int
    created_at: datetime


class UploadOut(CamelModel):
    id: str
    file_type: FileType
    file_name: str
    content_type: Optional[str] = None
    size: int
    created_at: datetime
    updated_at: datetime
    analysis: Optional[AnalysisBrief] = None


class UploadBrief(CamelModel):
    id: str
    file_name: str
    file_type: FileType


class LegalQuestionIn(CamelModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    question: str = Field(min_length=5)
    upload_id: Optional[str] = None


class LegalRequestOut(CamelModel):
    id: str
    question: str
    answer: str
    upload_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    upload: Optional[UploadBrief] = None


class UploadEnvelope(CamelModel):
    upload: UploadOut


class UploadList(CamelModel):
    uploads: List[UploadOut]


class AnalysisList(CamelModel):
    analyses: List[AnalysisOut]


class LegalRequestEnvelope(CamelModel):
    message: Optional[str] = None
    request: LegalRequestOut


class LegalRequestList(CamelModel):
    requests: List[LegalRequestOut]
