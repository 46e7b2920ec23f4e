from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.github.commit import Encoding


class operationContent(BaseModel):
    action: str = Field(examples=["add"], pattern="^(add|delete)$")
    path: str = Field(examples=["posts/hello.md"], min_length=1)
    content: str = Field(examples=["# Hello"], default="")
    encoding: Encoding = Encoding.utf8


class commitContent(BaseModel):
    operations: List[operationContent] = Field(min_length=1)
    message: str = Field(examples=["feat(posts): hello"], min_length=1)
    branch: Optional[str] = Field(examples=["main"], default=None)


class collectionContent(BaseModel):
    name: str = Field(examples=["Posts"], min_length=1)
    branch: Optional[str] = Field(examples=["main"], default=None)


class documentContent(BaseModel):
    collection: str = Field(examples=["posts"], pattern="^[a-zA-Z0-9]+$")
    slug: str = Field(
        examples=["hello-world"],
        pattern="^[a-z0-9]+(?:-[a-z0-9]+)*$",
        max_length=200,
    )
    content: str = Field(examples=["---\ntitle: Hello\n---\n\n# Hello"])
    message: str = Field(examples=["feat(posts): hello-world"], default="")
    branch: Optional[str] = Field(examples=["main"], default=None)

    @field_validator("slug")
    @classmethod
    def slugIsNotNew(cls, slug: str) -> str:
        if slug == "new":
            raise ValueError('The word "new" is not a valid slug.')
        return slug


class RepoSettings(BaseModel):
    owner: str = Field(examples=["octocat"])
    name: str = Field(examples=["blog"])
    branch: str = Field(examples=["main"], default="main")
    content_path: str = Field(examples=["outstatic/content"], default="outstatic/content")
    monorepo_path: str = Field(examples=["apps/web"], default="")
