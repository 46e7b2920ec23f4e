from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any, override

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from app.errors import (
    AuthError,
    ConflictError,
    NetworkError,
    NotFoundError,
    RemoteRejectedError,
    RequestTimeout,
)
from app.models.github.commit import CommitInput

GITHUB_GRAPHQL_URL = "https://api.github.com/graphql"

GET_OID = """
query GetOid($owner: String!, $name: String!, $branch: String!) {
  repository(owner: $owner, name: $name) {
    object(expression: $branch) {
      ... on Commit {
        oid
      }
    }
  }
}
"""

GET_TREE = """
query GetTree($owner: String!, $name: String!, $expression: String!) {
  repository(owner: $owner, name: $name) {
    object(expression: $expression) {
      ... on Tree {
        entries {
          path
          type
        }
      }
    }
  }
}
"""

CREATE_COMMIT = """
mutation CreateCommit($input: CreateCommitOnBranchInput!) {
  createCommitOnBranch(input: $input) {
    commit {
      oid
    }
  }
}
"""

# message returned by github when expectedHeadOid is stale
STALE_HEAD_MESSAGE = "expected branch to point to"


def buildSession() -> requests.Session:
    """Session that only retries connection establishment.

    Reads and error statuses are never retried, a mutation that reached the
    server is never sent twice.
    """
    retry = Retry(
        total=3,
        connect=3,
        read=0,
        status=0,
        other=0,
        backoff_factor=1,
        allowed_methods=["POST"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)

    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


# shared by all clients, only the token differs per request
defaultSession = buildSession()


class ClientInterface(ABC):
    """Interface for the remote used by the commit core."""

    @abstractmethod
    def fetch_head_oid(self, owner: str, name: str, branch: str) -> str:
        pass

    @abstractmethod
    def create_commit(self, commit_input: CommitInput) -> str:
        pass

    @abstractmethod
    def fetch_full_tree(
        self, owner: str, name: str, branch: str, path: str = ""
    ) -> list[str]:
        pass


class GithubClient(ClientInterface):
    def __init__(
        self,
        token: str,
        url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url or os.environ.get("GITHUB_GRAPHQL_URL", GITHUB_GRAPHQL_URL)
        self.timeout = timeout or float(os.environ.get("GITHUB_TIMEOUT", 30))
        self.session = session or defaultSession
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _request(self, query: str, variables: dict) -> dict[str, Any]:
        """Send a GraphQL request and return its `data`.

        Raises:
            RequestTimeout: If github did not answer within the timeout.
            NetworkError: On any other transport failure or a 5xx status.
            AuthError: On 401/403 or a FORBIDDEN error.
            NotFoundError: On 404 or a NOT_FOUND error.
            ConflictError: If the expected head oid is stale.
            RemoteRejectedError: On any other error returned by github.
        """
        try:
            response = self.session.post(
                self.url,
                headers=self.headers,
                json={"query": query, "variables": variables},
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logging.error(f"Github request timed out! ERROR: {e}")
            raise RequestTimeout(f"Github did not answer in time: {e}") from e
        except requests.RequestException as e:
            logging.error(f"Github request failed! ERROR: {e}")
            raise NetworkError(f"Couldn't reach github: {e}") from e

        if response.status_code in (401, 403):
            logging.warning(f"Github refused the credential: {response.status_code}")
            raise AuthError("Token is invalid or expired! Please login again!")
        if response.status_code == 404:
            raise NotFoundError(f"Github endpoint {self.url} was not found!")
        if response.status_code >= 500:
            raise NetworkError(
                f"Github answered with {response.status_code}: {response.content}"
            )
        if not response.ok:
            raise RemoteRejectedError(
                f"Github rejected the request ({response.status_code}): {response.content}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteRejectedError(f"Github answered with invalid json: {e}") from e

        errors = body.get("errors")
        if errors:
            raise classifyError(errors[0], variables)

        return body.get("data") or {}

    @override
    def fetch_head_oid(self, owner: str, name: str, branch: str) -> str:
        """Fetch the oid of the latest commit on the branch.

        Raises:
            NotFoundError: If the repository or the branch does not exist.
        """
        data = self._request(GET_OID, {"owner": owner, "name": name, "branch": branch})

        repository = data.get("repository")
        if repository is None:
            raise NotFoundError(f"Repository {owner}/{name} was not found!")
        target = repository.get("object")
        if not target or not target.get("oid"):
            raise NotFoundError(f"Branch {branch} was not found in {owner}/{name}!")

        return target["oid"]

    @override
    def create_commit(self, commit_input: CommitInput) -> str:
        """Submit the commit and return the oid of the new branch tip."""
        data = self._request(CREATE_COMMIT, commit_input.to_variables())

        try:
            return data["createCommitOnBranch"]["commit"]["oid"]
        except (KeyError, TypeError):
            raise RemoteRejectedError(f"Github did not return a commit: {data}")

    @override
    def fetch_full_tree(
        self, owner: str, name: str, branch: str, path: str = ""
    ) -> list[str]:
        """Fetch every file below the path.

        Args:
            owner: Owner of the repository.
            name: Name of the repository.
            branch: Branch to read from.
            path: Path to start fetching. Default: "" for starting at the root.

        Returns:
            List of the full paths of all files.

        Raises:
            NotFoundError: If the repository or the path does not exist.
        """
        data = self._request(
            GET_TREE,
            {"owner": owner, "name": name, "expression": f"{branch}:{path}"},
        )

        repository = data.get("repository")
        if repository is None:
            raise NotFoundError(f"Repository {owner}/{name} was not found!")
        tree = repository.get("object")
        if not tree:
            raise NotFoundError(f"Path {path} does not exist on {branch}!")

        files: list[str] = []
        for entry in tree.get("entries", []):
            if entry["type"] == "tree":
                # recurse into subdirectory
                files.extend(self.fetch_full_tree(owner, name, branch, entry["path"]))
            elif entry["type"] == "blob":
                files.append(entry["path"])

        return files


def classifyError(error: dict, variables: dict) -> Exception:
    """Map a GraphQL error entry onto the error taxonomy."""
    message = error.get("message", "")
    kind = error.get("type", "")

    if kind == "STALE_DATA" or STALE_HEAD_MESSAGE in message.lower():
        expected = variables.get("input", {}).get("expectedHeadOid", "")
        return ConflictError(message, expected_oid=expected)
    if kind == "NOT_FOUND":
        return NotFoundError(message)
    if kind == "FORBIDDEN":
        return AuthError(message)
    return RemoteRejectedError(message or str(error))
