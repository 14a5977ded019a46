"""Request bodies for marketing content (services, case studies, testimonials)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Metric(ContentModel):
    title: str
    value: str
    description: Optional[str] = None


class ServiceIn(ContentModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    description: str = Field(min_length=1)
    image: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    tools: List[str] = Field(default_factory=list)
    timeline: Optional[str] = None
    results: List[str] = Field(default_factory=list)


class CaseStudyIn(ContentModel):
    title: str = Field(min_length=1)
    category: str = Field(min_length=1)
    image: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    metrics: List[Metric] = Field(default_factory=list)
    testimonial: Optional[str] = None
    process: List[str] = Field(default_factory=list)
    gallery: List[str] = Field(default_factory=list)


class TestimonialIn(ContentModel):
    client_name: str = Field(min_length=1)
    role: Optional[str] = None
    company: Optional[str] = None
    quote: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    metrics: List[Metric] = Field(default_factory=list)
    icon: Optional[str] = None


SERVICE = "service"
CASE_STUDY = "case_study"
TESTIMONIAL = "testimonial"

KINDS = (SERVICE, CASE_STUDY, TESTIMONIAL)

MODEL_FOR_KIND = {
    SERVICE: ServiceIn,
    CASE_STUDY: CaseStudyIn,
    TESTIMONIAL: TestimonialIn,
}
