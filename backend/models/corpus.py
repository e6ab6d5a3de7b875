"""Corpus data models.

`HelpRecord` mirrors the help API payload and is validated when records
enter the system; everything downstream works with `CorpusUnit`.
"""
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


@dataclass
class CorpusUnit:
    """One logical document: a markdown page or one help API record."""
    unit_id: str
    display_name: str
    text: str
    partition: str
    change_token: Optional[str] = None


class HelpModule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    id_text: str = ""
    url: str = ""
    name: str = ""

    @field_validator("id_text", "url", "name", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class HelpHeader(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""

    @field_validator("name", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class HelpItem(BaseModel):
    """A single FAQ question/answer inside a help record."""
    model_config = ConfigDict(extra="ignore")

    id_order: int = 0
    header: str = ""
    description: str = ""

    @field_validator("header", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value


class HelpLocalization(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id_lang: str
    header: HelpHeader
    items: Optional[List[HelpItem]] = None


class HelpRecord(BaseModel):
    """A record returned by the help API for one audience type."""
    model_config = ConfigDict(extra="ignore")

    id: int
    id_order: int = 0
    id_type: int
    module: HelpModule
    data: List[HelpLocalization]
