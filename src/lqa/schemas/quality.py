from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class Severity(BaseModel):
    id: str
    label: str
    weight: float
    description: str = ""


class ErrorSubcategory(BaseModel):
    id: str
    label: str
    description: str = ""


class ErrorCategory(BaseModel):
    id: str
    label: str
    description: str = ""
    subcategories: List[ErrorSubcategory] = Field(default_factory=list)


class QualityModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    version: str = ""
    description: str = ""
    severities: List[Severity] = Field(default_factory=list)
    error_categories: List[ErrorCategory] = Field(default_factory=list, alias="errorCategories")

    def severity_weight(self, severity_id: str) -> float:
        for sev in self.severities:
            if sev.id == severity_id:
                return sev.weight
        return 0.0
