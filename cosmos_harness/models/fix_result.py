"""
Fix Result Models
=================
Structured-output shapes emitted by the generator / fix pass, and the records
produced once those shapes land on disk.

Response Shapes (tagged by ``kind``):
    replace  — whole-file replacement: path + content
    edits    — ordered search/replace edits: path + [{old_string, new_string}]
    delete   — remove the file: path

Applied Records:
    FileSnapshot  — (path, old_content) captured once, before the first edit
    AppliedFix    — (path, new_content, edit_kind) after an edit lands
"""
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Response shapes
# ---------------------------------------------------------------------------
class EditOp(BaseModel):
    old_string: str
    new_string: str


class ReplaceFileChange(BaseModel):
    kind: Literal["replace"]
    path: str
    content: str


class EditListChange(BaseModel):
    kind: Literal["edits"]
    path: str
    edits: List[EditOp]

    @field_validator("edits")
    @classmethod
    def _at_least_one_edit(cls, value: List[EditOp]) -> List[EditOp]:
        if not value:
            raise ValueError("no edits provided")
        return value


class DeleteFileChange(BaseModel):
    kind: Literal["delete"]
    path: str


FileChange = Annotated[
    Union[ReplaceFileChange, EditListChange, DeleteFileChange],
    Field(discriminator="kind"),
]

ContentChange = Annotated[
    Union[ReplaceFileChange, EditListChange],
    Field(discriminator="kind"),
]


class GenerationResponse(BaseModel):
    """Multi-file response for the initial generation and syntax repairs."""
    description: str = ""
    files: List[FileChange]

    @field_validator("files")
    @classmethod
    def _at_least_one_file(cls, value):
        if not value:
            raise ValueError("no file edits provided")
        return value


class FixResponse(BaseModel):
    """Single-file response for a focused fix pass."""
    description: str = ""
    change: ContentChange


# ---------------------------------------------------------------------------
# Applied records
# ---------------------------------------------------------------------------
class EditKind(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class FileSnapshot(BaseModel):
    path: str
    old_content: Optional[str] = None   # None = file did not exist


class AppliedFix(BaseModel):
    path: str
    new_content: Optional[str] = None   # None = file deleted
    edit_kind: EditKind
