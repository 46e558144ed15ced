from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# A normalized item is either plain text or a placeholder mapping such as
# {"t": "bx", "v": "<b>"}. Placeholders stay plain dicts so equality and copies
# are ordinary Python semantics.
NormalizedItem = Union[str, Dict[str, Any]]
Normalized = List[NormalizedItem]

PLACEHOLDER_KINDS = {"bx", "ex", "x"}


def _check_items(items: Optional[List[Any]]) -> Optional[List[Any]]:
    if items is None:
        return None
    for item in items:
        if isinstance(item, str):
            continue
        if item.get("t") not in PLACEHOLDER_KINDS:
            raise ValueError(f"placeholder kind must be one of bx/ex/x, got {item.get('t')!r}")
        if not isinstance(item.get("v"), str):
            raise ValueError("placeholder value 'v' must be a string")
    return items


class TranslationUnit(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    guid: str
    nsrc: Normalized = Field(default_factory=list)
    ntgt: Optional[Normalized] = None
    candidates: Optional[List[Normalized]] = None
    candidate_selected: Optional[bool] = Field(default=None, alias="candidateSelected")
    qa: Optional[Dict[str, Any]] = None

    @field_validator("nsrc", "ntgt")
    @classmethod
    def _valid_items(cls, v: Optional[Normalized]) -> Optional[Normalized]:
        return _check_items(v)

    @field_validator("candidates")
    @classmethod
    def _valid_candidates(cls, v: Optional[List[Normalized]]) -> Optional[List[Normalized]]:
        if v is None:
            return None
        for cand in v:
            _check_items(cand)
        return v

    def target(self) -> Normalized:
        return self.ntgt or []


class JobData(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    source_lang: Optional[str] = Field(default=None, alias="sourceLang")
    target_lang: Optional[str] = Field(default=None, alias="targetLang")
    tus: List[TranslationUnit] = Field(default_factory=list)
    instructions: Optional[str] = None
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    translation_provider: Optional[str] = Field(default=None, alias="translationProvider")
    job_guid: Optional[str] = Field(default=None, alias="jobGuid")

    def unit_map(self) -> Dict[str, TranslationUnit]:
        return {tu.guid: tu for tu in self.tus}

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
