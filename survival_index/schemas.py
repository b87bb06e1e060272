"""Pydantic request schemas for the Survival Index API.

Bodies use camelCase on the wire; ``to_columns()`` returns the
snake_case column names the service layer works with.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _ProjectFields(_CamelModel):
    name: str | None = None
    type: str | None = None
    category: str | None = None
    description: str | None = None
    url: str | None = None
    github_url: str | None = None
    logo: str | None = None
    tags: str | None = None
    year_created: int | None = None
    self_hostable: bool | None = None
    license: str | None = None
    tech_stack: str | None = None
    alternative_to: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def tags_as_text(cls, v: Any) -> Any:
        if isinstance(v, list):
            return ", ".join(str(t).strip() for t in v if str(t).strip())
        return v

    def to_columns(self) -> dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class ProjectCreate(_ProjectFields):
    pass


class ProjectUpdate(_ProjectFields):
    pass


class SubmissionCreate(_ProjectFields):
    submitted_by: str | None = None
    submitter_email: str | None = None


class UserRatingCreate(_CamelModel):
    project_id: int
    # Range checks happen in the service so they report as 400.
    insight_compression: Any = None
    substrate_efficiency: Any = None
    broad_utility: Any = None
    awareness: Any = None
    agent_friction: Any = None
    human_coefficient: Any = None
    user_id: str | None = None

    def scores(self) -> dict[str, Any]:
        """Lever scores keyed by camelCase lever name, omitting missing ones."""
        return self.model_dump(
            by_alias=True, exclude={"project_id", "user_id"}, exclude_none=True,
        )


class ApproveBody(_CamelModel):
    review_notes: str | None = None
    reviewed_by: str | None = None
    trigger_ai_evaluation: bool = Field(
        default=False, alias="triggerAIEvaluation",
    )


class RejectBody(_CamelModel):
    rejection_reason: str | None = None
    review_notes: str | None = None
    reviewed_by: str | None = None


class BatchEvaluateRequest(_CamelModel):
    project_ids: list[int] = Field(default_factory=list)
