import json
import logging
import os
import time
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from app.commit_api import (
    ChangeSet,
    ChangeSetBuilder,
    CommitAttempt,
    LoggingObserver,
    resolve_head,
)
from app.errors import CommitError, FailureReason
from app.github_client import ClientInterface, GithubClient
from app.models.github.commit import (
    CommitConflicted,
    CommitFailed,
    CommitSucceeded,
    HeadRef,
)
from app.models.github.input import RepoSettings, commitContent

router = APIRouter()

bearer = HTTPBearer()

# http status returned to the frontend for every failed commit attempt
REASON_STATUS = {
    FailureReason.not_found: status.HTTP_404_NOT_FOUND,
    FailureReason.auth: status.HTTP_401_UNAUTHORIZED,
    FailureReason.validation: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureReason.remote_rejected: status.HTTP_403_FORBIDDEN,
    FailureReason.network: status.HTTP_504_GATEWAY_TIMEOUT,
    FailureReason.timeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


# the access token is handed to github as it is
def getToken(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer)],
) -> str:
    return credentials.credentials


commonToken = Annotated[str, Depends(getToken)]


def getClient(token: commonToken) -> ClientInterface:
    return GithubClient(token)


commonClient = Annotated[ClientInterface, Depends(getClient)]


# read the repository the content lives in from the .env
def getSettings() -> RepoSettings:
    owner = os.environ.get("OST_REPO_OWNER")
    name = os.environ.get("OST_REPO_SLUG")
    if not owner or not name:
        logging.error("OST_REPO_OWNER or OST_REPO_SLUG is missing in the environment!")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The content repository is not configured!",
        )

    return RepoSettings(
        owner=owner,
        name=name,
        branch=os.environ.get("OST_REPO_BRANCH") or "main",
        content_path=os.environ.get("OST_CONTENT_PATH", "outstatic/content"),
        monorepo_path=os.environ.get("OST_MONOREPO_PATH", ""),
    )


commonSettings = Annotated[RepoSettings, Depends(getSettings)]


# writes the log entry into the json log file
def writeLogJson(endpoint: str, status: int, startTime: float, error=None):
    try:
        with open("log.json", "r") as log:
            jsonLog = json.load(log)

        jsonLog.append(
            {
                "endpoint": endpoint,
                "status": status,
                "error": str(error),
                "date": time.strftime("%d/%m/%Y - %H:%M:%S", time.localtime()),
                "response_time": time.time() - startTime,
            }
        )

        with open("log.json", "w") as logWrite:
            json.dump(jsonLog, logWrite, indent=4, separators=(",", ": "))
    except (OSError, ValueError):
        logging.warning("Error while logging to log json!")


# sanitize input
def sanitizeInput(input: str) -> str:
    return input.replace("<", "&lt;").replace(">", "&gt;")


# log the failure and send it to the client with the matching status code
def failRequest(endpoint: str, startTime: float, reason: FailureReason, message: str):
    statusCode = REASON_STATUS[reason]
    logging.error(f"{endpoint} failed ({reason.value})! ERROR: {message}")
    writeLogJson(endpoint, statusCode, startTime, message)
    raise HTTPException(status_code=statusCode, detail=f"{reason.value}: {message}")


def newBuilder(settings: RepoSettings) -> ChangeSetBuilder:
    return ChangeSetBuilder(
        content_path=settings.content_path, monorepo_path=settings.monorepo_path
    )


# resolves the head, compiles and submits the change set as one commit
async def runCommit(
    endpoint: str,
    startTime: float,
    client: ClientInterface,
    settings: RepoSettings,
    branch: str,
    changeSet: ChangeSet,
    message: str,
    response: Response,
) -> CommitSucceeded | CommitConflicted:
    attempt = CommitAttempt(
        client,
        settings.owner,
        settings.name,
        branch,
        observers=[LoggingObserver()],
    )
    result = await attempt.run(changeSet, message)

    match result:
        case CommitFailed():
            failRequest(endpoint, startTime, result.reason, result.message)
        case CommitConflicted():
            # the frontend can refetch the head and retry
            logging.warning(f"{endpoint}: {branch} has moved on since {result.stale_oid}")
            writeLogJson(endpoint, 409, startTime, f"Stale head {result.stale_oid}")
            response.status_code = status.HTTP_409_CONFLICT
        case CommitSucceeded():
            writeLogJson(endpoint, 201, startTime)

    return result


@router.get(
    "/headOid",
    summary="Get the current head of the branch",
    description="Returns the oid of the latest commit on the branch. The oid is only a snapshot and has to be fetched again before every commit.",
    response_description="Owner, repository, branch and oid of the branch tip.",
)
async def headOid(
    client: commonClient,
    settings: commonSettings,
    branch: str | None = None,
) -> HeadRef:
    startTime = time.time()
    branch = branch or settings.branch
    try:
        head = await resolve_head(client, settings.owner, settings.name, branch)
    except CommitError as e:
        failRequest("headOid", startTime, e.reason, e.message)

    writeLogJson("headOid", 200, startTime)
    return head


@router.get(
    "/tree",
    summary="Lists all files below the path",
    description="Retrieve the full paths of all files below the given path (recursively).",
    response_description="Array of file paths.",
)
async def repoTree(
    client: commonClient,
    settings: commonSettings,
    path: Annotated[str, Query()] = "",
    branch: str | None = None,
) -> list[str]:
    startTime = time.time()
    try:
        files = await run_in_threadpool(
            client.fetch_full_tree,
            settings.owner,
            settings.name,
            branch or settings.branch,
            path,
        )
    except CommitError as e:
        failRequest("tree", startTime, e.reason, e.message)

    writeLogJson("tree", 200, startTime)
    return files


@router.post(
    "/commit",
    summary="Commits a batch of file changes",
    status_code=status.HTTP_201_CREATED,
    description="Adds, replaces and deletes all given files in one atomic commit. Paths are relative to the content root and must stay inside it. If the branch moved on in the meantime, the response has status 409 and nothing was committed.",
    response_description="The new head oid or the stale oid on conflict.",
)
async def commit(
    content: commitContent,
    client: commonClient,
    settings: commonSettings,
    response: Response,
) -> CommitSucceeded | CommitConflicted:
    startTime = time.time()
    builder = newBuilder(settings)

    try:
        for operation in content.operations:
            if operation.action == "delete":
                builder.delete(operation.path)
            else:
                builder.add_or_replace(
                    operation.path, operation.content, operation.encoding
                )
    except CommitError as e:
        failRequest("commit", startTime, e.reason, e.message)

    return await runCommit(
        "commit",
        startTime,
        client,
        settings,
        content.branch or settings.branch,
        builder.build(),
        sanitizeInput(content.message),
        response,
    )
