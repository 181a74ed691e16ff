from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class LinkCreate(BaseModel):
    name: str
    original: str
    category: Optional[str] = None


class LinkUpdate(BaseModel):
    name: Optional[str] = None
    original: Optional[str] = None
    category: Optional[str] = None


class BulkDelete(BaseModel):
    ids: List[str]


class CategoryIn(BaseModel):
    name: str


class CategoryRename(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_name: str = Field(alias="oldName")
    new_name: str = Field(alias="newName")


class ReplaceIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_text: str = Field(alias="searchText")
    replace_text: str = Field(alias="replaceText")


class UpdateSelected(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link_ids: List[str] = Field(alias="linkIds")
    m3u_content: str = Field(alias="m3uContent")


class ImportIn(BaseModel):
    content: str
    category: Optional[str] = None
