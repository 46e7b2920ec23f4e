import logging
import re
import time
import unicodedata
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Response, status
from starlette.concurrency import run_in_threadpool

from app.api.endpoints.repository import (
    commonClient,
    commonSettings,
    failRequest,
    newBuilder,
    runCommit,
    writeLogJson,
)
from app.commit_api import ChangeSetBuilder, normalize_path
from app.errors import CommitError, NotFoundError
from app.github_client import ClientInterface
from app.models.github.commit import CommitConflicted, CommitSucceeded
from app.models.github.input import RepoSettings, collectionContent

router = APIRouter()


# turn the display name into the folder name of the collection (only a-zA-Z0-9 is kept)
def collectionSlug(name: str) -> str:
    plain = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    return re.sub("[^a-zA-Z0-9]", "", plain)


# physical path of the content root (with the monorepo path in front)
def contentRoot(settings: RepoSettings) -> str:
    return normalize_path(settings.monorepo_path, settings.content_path)


# returns the names of all collections found in the content root
async def getCollections(
    client: ClientInterface, settings: RepoSettings, branch: str
) -> list[str]:
    root = contentRoot(settings)
    try:
        files = await run_in_threadpool(
            client.fetch_full_tree, settings.owner, settings.name, branch, root
        )
    except NotFoundError:
        # a missing repository or branch is still reported
        await run_in_threadpool(
            client.fetch_head_oid, settings.owner, settings.name, branch
        )
        # no content root yet means no collections
        return []

    collections = []
    for file in files:
        relative = file.removeprefix(root + "/").split("/")
        if len(relative) > 1 and relative[0] not in collections:
            collections.append(relative[0])
    return collections


@router.get(
    "/getCollections",
    summary="Lists the collections",
    description="Lists the names of all collections (folders) in the content root.",
    response_description="Array of collection names.",
)
async def listCollections(
    client: commonClient, settings: commonSettings, branch: str | None = None
) -> list[str]:
    startTime = time.time()
    try:
        collections = await getCollections(client, settings, branch or settings.branch)
    except CommitError as e:
        failRequest("getCollections", startTime, e.reason, e.message)

    writeLogJson("getCollections", 200, startTime)
    return collections


@router.post(
    "/createCollection",
    summary="Creates a new collection",
    status_code=status.HTTP_201_CREATED,
    description="Creates the folder of the collection in the content root by committing an empty .gitkeep file.",
    response_description="The new head oid or the stale oid on conflict.",
)
async def createCollection(
    content: collectionContent,
    client: commonClient,
    settings: commonSettings,
    response: Response,
) -> CommitSucceeded | CommitConflicted:
    startTime = time.time()
    branch = content.branch or settings.branch

    collection = collectionSlug(content.name)
    if collection == "":
        writeLogJson("createCollection", 422, startTime, "Empty collection name")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Collection name must contain letters or numbers!",
        )

    try:
        existing = await getCollections(client, settings, branch)
    except CommitError as e:
        failRequest("createCollection", startTime, e.reason, e.message)

    if collection.lower() in [entry.lower() for entry in existing]:
        logging.warning(f"Collection {collection} already exists!")
        writeLogJson(
            "createCollection", 409, startTime, f"{collection} is already taken."
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{collection} is already taken.",
        )

    builder = newBuilder(settings).add_or_replace(f"{collection}/.gitkeep", "")

    logging.debug(f"Creating collection {collection} on {branch}")
    return await runCommit(
        "createCollection",
        startTime,
        client,
        settings,
        branch,
        builder.build(),
        f"feat(content): create {collection}",
        response,
    )


# deletes every file of the collection in one commit
@router.delete(
    "/deleteCollection",
    summary="Deletes the collection",
    description="Deletes every file below the collection folder in one large commit.",
    response_description="The new head oid or the stale oid on conflict.",
)
async def deleteCollection(
    name: Annotated[str, Query(pattern="^[a-zA-Z0-9]+$")],
    client: commonClient,
    settings: commonSettings,
    response: Response,
    branch: str | None = None,
) -> CommitSucceeded | CommitConflicted:
    startTime = time.time()
    branch = branch or settings.branch

    try:
        path = normalize_path(contentRoot(settings), name)
        files = await run_in_threadpool(
            client.fetch_full_tree, settings.owner, settings.name, branch, path
        )
    except CommitError as e:
        failRequest("deleteCollection", startTime, e.reason, e.message)

    if not files:
        failRequest(
            "deleteCollection",
            startTime,
            NotFoundError.reason,
            f"Collection {name} has no files",
        )

    # the tree returns full repository paths
    builder = ChangeSetBuilder()
    for file in files:
        builder.delete(file)

    return await runCommit(
        "deleteCollection",
        startTime,
        client,
        settings,
        branch,
        builder.build(),
        f"feat(content): delete {name}",
        response,
    )
