from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Segment(BaseModel):
    """On-page geometry of one translated string. `g` joins it to a unit guid."""

    model_config = ConfigDict(extra="allow")

    x: float
    y: float
    width: float
    height: float
    text: str = ""
    g: Optional[str] = None


class Page(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    page_id: str = Field(alias="pageId")
    original_url: Optional[str] = Field(default=None, alias="originalUrl")
    image_file: str = Field(alias="imageFile")
    segments: List[Segment] = Field(default_factory=list)


class FlowData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    flow_name: str = Field(default="", alias="flowName")
    pages: List[Page] = Field(default_factory=list)

    def guids_by_page(self) -> Dict[str, List[str]]:
        return {
            page.page_id: [seg.g for seg in page.segments if seg.g]
            for page in self.pages
        }
