import base64
import hashlib
from typing import override

import pytest
from fastapi.testclient import TestClient

from app.api.endpoints.repository import getClient
from app.errors import CommitError, ConflictError, NotFoundError
from app.github_client import ClientInterface
from app.models.github.commit import CommitInput
from main import app


class MockClient(ClientInterface):
    """In-memory github: one repository, branches pointing at oids, a flat file map."""

    def __init__(self, oid: str = "abc123", files: dict[str, str] | None = None):
        self.branches: dict[str, str] = {"main": oid}
        self.files: dict[str, str] = dict(files or {})
        self.commits: list[CommitInput] = []
        self.fail_with: CommitError | None = None

    def push(self, branch: str = "main") -> str:
        """Simulate a commit by someone else."""
        self.branches[branch] = hashlib.sha1(
            f"{self.branches[branch]}-external".encode()
        ).hexdigest()
        return self.branches[branch]

    @override
    def fetch_head_oid(self, owner: str, name: str, branch: str) -> str:
        if branch not in self.branches:
            raise NotFoundError(f"Branch {branch} was not found in {owner}/{name}!")
        return self.branches[branch]

    @override
    def create_commit(self, commit_input: CommitInput) -> str:
        if self.fail_with is not None:
            raise self.fail_with

        branch = commit_input.branch.branch_name
        if branch not in self.branches:
            raise NotFoundError(f"Branch {branch} was not found!")

        head = self.branches[branch]
        if head != commit_input.expected_head_oid:
            raise ConflictError(
                f'Expected branch to point to "{commit_input.expected_head_oid}" '
                "but it did not. Pull and try again.",
                expected_oid=commit_input.expected_head_oid,
            )

        for addition in commit_input.file_changes.additions:
            self.files[addition.path] = base64.b64decode(addition.contents).decode()
        for deletion in commit_input.file_changes.deletions:
            self.files.pop(deletion.path, None)

        new_oid = hashlib.sha1(
            f"{head}-{commit_input.model_dump_json()}".encode()
        ).hexdigest()
        self.branches[branch] = new_oid
        self.commits.append(commit_input)
        return new_oid

    @override
    def fetch_full_tree(
        self, owner: str, name: str, branch: str, path: str = ""
    ) -> list[str]:
        if branch not in self.branches:
            raise NotFoundError(f"Branch {branch} was not found!")
        prefix = path.rstrip("/") + "/" if path else ""
        files = sorted(file for file in self.files if file.startswith(prefix))
        if path and not files:
            raise NotFoundError(f"Path {path} does not exist on {branch}!")
        return files


@pytest.fixture
def mock_client() -> MockClient:
    return MockClient()


@pytest.fixture
def client(mock_client, monkeypatch):
    monkeypatch.setenv("OST_REPO_OWNER", "octocat")
    monkeypatch.setenv("OST_REPO_SLUG", "blog")
    monkeypatch.setenv("OST_REPO_BRANCH", "main")
    monkeypatch.setenv("OST_CONTENT_PATH", "content")
    monkeypatch.setenv("OST_MONOREPO_PATH", "")

    app.dependency_overrides[getClient] = lambda: mock_client
    yield TestClient(app, headers={"Authorization": "Bearer test-token"})
    app.dependency_overrides.clear()
