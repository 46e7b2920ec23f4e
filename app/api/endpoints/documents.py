import logging
import time
from typing import Annotated

from fastapi import APIRouter, Query, Response, status

from app.api.endpoints.repository import (
    commonClient,
    commonSettings,
    failRequest,
    newBuilder,
    runCommit,
    sanitizeInput,
)
from app.errors import CommitError
from app.models.github.commit import CommitConflicted, CommitSucceeded
from app.models.github.input import documentContent

router = APIRouter()


@router.put(
    "/saveDocument",
    summary="Saves the document",
    status_code=status.HTTP_201_CREATED,
    description="Writes the markdown of the document to <collection>/<slug>.md in the content root. Creating and updating are the same operation.",
    response_description="The new head oid or the stale oid on conflict.",
)
async def saveDocument(
    content: documentContent,
    client: commonClient,
    settings: commonSettings,
    response: Response,
) -> CommitSucceeded | CommitConflicted:
    startTime = time.time()

    try:
        builder = newBuilder(settings).add_or_replace(
            f"{content.collection}/{content.slug}.md", content.content
        )
    except CommitError as e:
        failRequest("saveDocument", startTime, e.reason, e.message)

    message = f"feat({content.collection}): {content.slug}"
    if content.message != "":
        message = sanitizeInput(content.message)

    logging.debug(f"Saving {content.collection}/{content.slug}")
    return await runCommit(
        "saveDocument",
        startTime,
        client,
        settings,
        content.branch or settings.branch,
        builder.build(),
        message,
        response,
    )


@router.delete(
    "/deleteDocument",
    summary="Deletes the document",
    description="Deletes <collection>/<slug>.md from the content root.",
    response_description="The new head oid or the stale oid on conflict.",
)
async def deleteDocument(
    collection: Annotated[str, Query(pattern="^[a-zA-Z0-9]+$")],
    slug: Annotated[str, Query(pattern="^[a-z0-9]+(?:-[a-z0-9]+)*$")],
    client: commonClient,
    settings: commonSettings,
    response: Response,
    branch: str | None = None,
) -> CommitSucceeded | CommitConflicted:
    startTime = time.time()

    builder = newBuilder(settings).delete(f"{collection}/{slug}.md")

    return await runCommit(
        "deleteDocument",
        startTime,
        client,
        settings,
        branch or settings.branch,
        builder.build(),
        f"feat({collection}): delete {slug}",
        response,
    )
