from __future__ import annotations

from enum import Enum
from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from app.errors import FailureReason


class Encoding(str, Enum):
    utf8 = "utf8"
    base64 = "base64"


class AddOrReplace(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Literal["add"] = "add"
    path: str = Field(examples=["outstatic/content/posts/hello.md"])
    content: str = Field(examples=["# Hello"], default="")
    encoding: Encoding = Encoding.utf8


class Delete(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: Literal["delete"] = "delete"
    path: str = Field(examples=["outstatic/content/posts/hello.md"])


FileOperation = Annotated[Union[AddOrReplace, Delete], Field(discriminator="action")]


class HeadRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    owner: str = Field(examples=["octocat"])
    repository_name: str = Field(
        examples=["blog"], serialization_alias="repositoryName"
    )
    branch: str = Field(examples=["main"])
    oid: str = Field(examples=["4a0a978e478a50feccd9ab38572b1..."])


class CommittableBranch(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    repository_name_with_owner: str = Field(
        examples=["octocat/blog"], alias="repositoryNameWithOwner"
    )
    branch_name: str = Field(examples=["main"], alias="branchName")


class FileAddition(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    # always base64 on the wire
    contents: str


class FileDeletion(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str


class FileChanges(BaseModel):
    model_config = ConfigDict(frozen=True)

    additions: List[FileAddition] = []
    deletions: List[FileDeletion] = []


class CommitInput(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    branch: CommittableBranch
    message: str = Field(examples=["feat(content): create posts"])
    file_changes: FileChanges = Field(alias="fileChanges")
    expected_head_oid: str = Field(alias="expectedHeadOid")

    def to_variables(self) -> dict:
        """Variables of the createCommitOnBranch mutation.

        The message is split into a headline (first line) and a body.
        """
        headline, _, body = self.message.strip().partition("\n")
        message = {"headline": headline.strip()}
        if body.strip():
            message["body"] = body.strip()

        return {
            "input": {
                "branch": self.branch.model_dump(by_alias=True),
                "message": message,
                "fileChanges": self.file_changes.model_dump(),
                "expectedHeadOid": self.expected_head_oid,
            }
        }


class CommitState(str, Enum):
    idle = "idle"
    resolving = "resolving"
    compiling = "compiling"
    submitting = "submitting"
    succeeded = "succeeded"
    conflicted = "conflicted"
    failed = "failed"


TERMINAL_STATES = (CommitState.succeeded, CommitState.conflicted, CommitState.failed)


class CommitSucceeded(BaseModel):
    status: Literal["succeeded"] = "succeeded"
    new_oid: str = Field(serialization_alias="newOid")


class CommitConflicted(BaseModel):
    status: Literal["conflicted"] = "conflicted"
    stale_oid: str = Field(serialization_alias="staleOid")


class CommitFailed(BaseModel):
    status: Literal["failed"] = "failed"
    reason: FailureReason
    message: str = ""


CommitResult = Annotated[
    Union[CommitSucceeded, CommitConflicted, CommitFailed],
    Field(discriminator="status"),
]
