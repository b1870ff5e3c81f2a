"""Response schemas for model output."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class RecommendationResponse(BaseModel):
    """A code replacement suggested alongside an analysis."""

    description: str
    new_code: str = Field(alias="newCode")
    reasoning: str = ""

    model_config = {"populate_by_name": True}


class AnalysisResponse(BaseModel):
    """Expected shape of an analysis answer."""

    root_cause: str = Field(alias="rootCause")
    problem_description: str = Field(default="", alias="problemDescription")
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    complexity: Literal["simple", "medium", "complex"]
    confidence: float = Field(ge=0.0, le=1.0)
    recommendation: Optional[RecommendationResponse] = None

    model_config = {"populate_by_name": True}


class FixResponse(BaseModel):
    """Expected shape of a fix generation answer."""

    fixed_code: str = Field(alias="fixedCode", min_length=1)
    description: str
    reasoning: str = ""
    test_cases: list[str] = Field(default_factory=list, alias="testCases")
    risk_level: Literal["low", "medium", "high"] = Field(default="medium", alias="riskLevel")

    model_config = {"populate_by_name": True}
