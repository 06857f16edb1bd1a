from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

DEFAULT_OPTIONS = ["A", "B", "C", "D"]


class Question(BaseModel):
    """
    문제은행의 객관식 문제 모델
    Pydantic v2 적용
    """
    id: Union[int, str] = Field(
        ...,
        description="문제 고유 식별자"
    )
    text: str = Field(
        default="",
        description="문제 본문 (이미지 문제는 빈 문자열일 수 있음)"
    )
    subject: Optional[str] = Field(
        None,
        description="과목명"
    )
    chapter: Optional[str] = Field(
        None,
        description="단원명"
    )
    correct_answer: Optional[str] = Field(
        None,
        description="정답 보기 (예: 'B'). 미입력 문제는 None"
    )
    image_url: Optional[str] = Field(
        None,
        description="문제 이미지 URL"
    )
    options: List[str] = Field(
        default_factory=lambda: list(DEFAULT_OPTIONS),
        description="보기 리스트"
    )

    @field_validator('options')
    @classmethod
    def validate_options_length(cls, v: List[str]) -> List[str]:
        """보기는 최소 2개 이상이어야 한다."""
        if len(v) < 2:
            raise ValueError("보기(options)는 최소 2개 이상의 항목이 필요합니다.")
        return v

    @property
    def key(self) -> str:
        """답안지 키로 쓰는 문자열 ID."""
        return str(self.id)

    def public_dict(self) -> dict:
        """정답을 제외한 응시자용 표현."""
        return self.model_dump(exclude={"correct_answer"})


class Chapter(BaseModel):
    id: str
    name: str


class Subject(BaseModel):
    id: str
    name: str
    chapters: List[Chapter] = Field(default_factory=list)
