import base64

import pytest
from fastapi.encoders import jsonable_encoder
from fastapi.testclient import TestClient

from app.errors import RemoteRejectedError, RequestTimeout
from app.models.github.input import commitContent, operationContent
from main import app

routerPrefix = "/contentmanager/api/v1/repository"


def test_headOid(client):
    response = client.get(f"{routerPrefix}/headOid")

    assert response.status_code == 200
    assert response.json() == {
        "owner": "octocat",
        "repositoryName": "blog",
        "branch": "main",
        "oid": "abc123",
    }


def test_headOid_missing_branch(client):
    response = client.get(f"{routerPrefix}/headOid", params={"branch": "missing"})

    assert response.status_code == 404


def test_headOid_needs_token():
    # no client override: the bearer token is required before github is asked
    response = TestClient(app).get(f"{routerPrefix}/headOid")

    assert response.status_code in (401, 403)


def test_headOid_unconfigured(client, monkeypatch):
    monkeypatch.delenv("OST_REPO_SLUG")

    response = client.get(f"{routerPrefix}/headOid")

    assert response.status_code == 500


def test_commit(client, mock_client):
    mock_client.files["content/posts/old.md"] = "old"
    body = commitContent(
        operations=[
            operationContent(action="add", path="posts/hello.md", content="# Hello"),
            operationContent(
                action="add",
                path="posts/logo.png",
                content=base64.b64encode(b"png").decode(),
                encoding="base64",
            ),
            operationContent(action="delete", path="posts/old.md"),
        ],
        message="feat(posts): hello",
    )

    response = client.post(f"{routerPrefix}/commit", json=jsonable_encoder(body))

    assert response.status_code == 201
    assert response.json()["status"] == "succeeded"
    assert response.json()["newOid"] == mock_client.branches["main"]
    assert mock_client.files == {
        "content/posts/hello.md": "# Hello",
        "content/posts/logo.png": "png",
    }
    # one logical action, one commit
    assert len(mock_client.commits) == 1


def test_commit_stays_in_content_root(client, mock_client):
    response = client.post(
        f"{routerPrefix}/commit",
        json={
            "operations": [
                {"action": "add", "path": ".github/workflows/x.yml", "content": "x"}
            ],
            "message": "update",
            "raw": True,
        },
    )

    assert response.status_code == 201
    assert mock_client.files == {"content/.github/workflows/x.yml": "x"}


@pytest.mark.parametrize(
    "path", ["../README.md", "../.github/workflows/x.yml", "posts/../../README.md"]
)
def test_commit_outside_content_root(client, mock_client, path):
    body = commitContent(
        operations=[operationContent(action="add", path=path, content="x")],
        message="update",
    )

    response = client.post(f"{routerPrefix}/commit", json=jsonable_encoder(body))

    assert response.status_code == 422
    assert mock_client.commits == []
    assert mock_client.files == {}


def test_commit_conflict(client, mock_client, monkeypatch):
    originalCreate = mock_client.create_commit

    # somebody else commits right before ours arrives
    def createAfterPush(commitInput):
        mock_client.push()
        return originalCreate(commitInput)

    monkeypatch.setattr(mock_client, "create_commit", createAfterPush)
    body = commitContent(
        operations=[operationContent(action="add", path="posts/a.md", content="x")],
        message="update",
    )

    response = client.post(f"{routerPrefix}/commit", json=jsonable_encoder(body))

    assert response.status_code == 409
    assert response.json() == {"status": "conflicted", "staleOid": "abc123"}
    assert mock_client.files == {}


def test_commit_empty(client):
    response = client.post(
        f"{routerPrefix}/commit", json={"operations": [], "message": "update"}
    )

    assert response.status_code == 422


def test_commit_remote_rejected(client, mock_client):
    mock_client.fail_with = RemoteRejectedError("Protected branch update failed")
    body = commitContent(
        operations=[operationContent(action="add", path="posts/a.md", content="x")],
        message="update",
    )

    response = client.post(f"{routerPrefix}/commit", json=jsonable_encoder(body))

    assert response.status_code == 403


def test_commit_timeout(client, mock_client):
    mock_client.fail_with = RequestTimeout("read timed out")
    body = commitContent(
        operations=[operationContent(action="delete", path="posts/a.md")],
        message="update",
    )

    response = client.post(f"{routerPrefix}/commit", json=jsonable_encoder(body))

    assert response.status_code == 504


def test_tree(client, mock_client):
    mock_client.files.update({"content/posts/a.md": "a", "content/docs/b.md": "b"})

    response = client.get(f"{routerPrefix}/tree", params={"path": "content/posts"})

    assert response.status_code == 200
    assert response.json() == ["content/posts/a.md"]

    missing = client.get(f"{routerPrefix}/tree", params={"path": "content/pages"})

    assert missing.status_code == 404
