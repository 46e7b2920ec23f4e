from fastapi.encoders import jsonable_encoder

from app.models.github.input import documentContent

routerPrefix = "/contentmanager/api/v1/documents"


def test_saveDocument(client, mock_client):
    body = documentContent(
        collection="posts", slug="hello-world", content="---\ntitle: Hello\n---\n"
    )

    response = client.put(f"{routerPrefix}/saveDocument", json=jsonable_encoder(body))

    assert response.status_code == 201
    assert response.json()["status"] == "succeeded"
    assert mock_client.files == {"content/posts/hello-world.md": "---\ntitle: Hello\n---\n"}
    assert mock_client.commits[0].message == "feat(posts): hello-world"


def test_saveDocument_twice(client, mock_client):
    for text in ("first", "second"):
        response = client.put(
            f"{routerPrefix}/saveDocument",
            json={"collection": "posts", "slug": "hello", "content": text, "message": "edit <b>"},
        )
        assert response.status_code == 201

    # the head is resolved again for every commit
    assert mock_client.commits[1].expected_head_oid != "abc123"
    assert mock_client.commits[1].message == "edit &lt;b&gt;"
    assert mock_client.files == {"content/posts/hello.md": "second"}


def test_saveDocument_invalid_slug(client, mock_client):
    for slug in ("new", "Hello World", "-hello", "a" * 201):
        response = client.put(
            f"{routerPrefix}/saveDocument",
            json={"collection": "posts", "slug": slug, "content": "x"},
        )
        assert response.status_code == 422

    assert mock_client.commits == []


def test_deleteDocument(client, mock_client):
    mock_client.files["content/posts/hello.md"] = "# Hello"

    response = client.delete(
        f"{routerPrefix}/deleteDocument", params={"collection": "posts", "slug": "hello"}
    )

    assert response.status_code == 200
    assert mock_client.files == {}
    assert mock_client.commits[0].message == "feat(posts): delete hello"


def test_saveDocument_lone_surrogate(client, mock_client):
    # valid json, but the content cannot be encoded as utf-8
    response = client.put(
        f"{routerPrefix}/saveDocument",
        content=b'{"collection": "posts", "slug": "hello", "content": "a\\ud800b"}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 422
    assert mock_client.commits == []
