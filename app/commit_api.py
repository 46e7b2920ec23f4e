from __future__ import annotations

import base64
import logging
import os
from abc import ABC, abstractmethod
from typing import Iterable, override

from starlette.concurrency import run_in_threadpool

from app.errors import CommitError, ConflictError, ValidationError
from app.github_client import ClientInterface
from app.models.github.commit import (
    AddOrReplace,
    CommitConflicted,
    CommitFailed,
    CommitInput,
    CommitResult,
    CommitState,
    CommitSucceeded,
    CommittableBranch,
    Delete,
    Encoding,
    FileAddition,
    FileChanges,
    FileDeletion,
    FileOperation,
    HeadRef,
    TERMINAL_STATES,
)

# files larger than 50mb should not be committed through the api
MAX_FILE_SIZE = 50 * 1024 * 1024


def maxFileSize() -> int:
    return int(os.environ.get("MAX_FILE_SIZE", MAX_FILE_SIZE))


class HeadResolver:
    """Resolves the tip of a branch, the concurrency token of the next commit.

    Nothing is cached, every commit attempt has to resolve the head again.
    """

    def __init__(self, client: ClientInterface) -> None:
        self.client = client

    async def fetch(self, owner: str, repository_name: str, branch: str) -> HeadRef:
        oid = await run_in_threadpool(
            self.client.fetch_head_oid, owner, repository_name, branch
        )
        logging.debug(f"Resolved head of {owner}/{repository_name}@{branch}: {oid}")
        return HeadRef(
            owner=owner, repository_name=repository_name, branch=branch, oid=oid
        )


async def resolve_head(
    client: ClientInterface, owner: str, repository_name: str, branch: str
) -> HeadRef:
    return await HeadResolver(client).fetch(owner, repository_name, branch)


def normalize_path(*segments: str) -> str:
    """Join path segments into one repository path.

    Empty and "." parts are dropped.

    Raises:
        ValidationError: If a part is "..", contains a backslash or NUL, or
            nothing is left after joining.
    """
    parts: list[str] = []
    for segment in segments:
        if "\\" in segment or "\x00" in segment:
            raise ValidationError(f"Invalid character in path '{segment}'")
        for part in segment.split("/"):
            if part in ("", "."):
                continue
            if part == "..":
                raise ValidationError(f"Path '{segment}' escapes the content root")
            parts.append(part)

    if not parts:
        raise ValidationError("Path must not be empty")
    return "/".join(parts)


class ChangeSet:
    """Ordered, deduplicated file operations of one logical commit."""

    def __init__(self, operations: Iterable[FileOperation] = ()) -> None:
        latest: dict[str, FileOperation] = {}
        for operation in operations:
            # last write wins and takes the later position
            latest.pop(operation.path, None)
            latest[operation.path] = operation
        self._operations: tuple[FileOperation, ...] = tuple(latest.values())

    @property
    def operations(self) -> tuple[FileOperation, ...]:
        return self._operations

    @property
    def paths(self) -> list[str]:
        return [operation.path for operation in self._operations]

    def __len__(self) -> int:
        return len(self._operations)

    def __iter__(self):
        return iter(self._operations)

    def __bool__(self) -> bool:
        return bool(self._operations)

    def __repr__(self) -> str:
        return f"ChangeSet({list(self._operations)!r})"


class ChangeSetBuilder:
    """Records file operations before any network call.

    Every operation of one user action ends up in the same change set and
    therefore in one atomic commit. A later operation on a path replaces the
    earlier one.
    """

    def __init__(self, content_path: str = "", monorepo_path: str = "") -> None:
        self.content_path = content_path
        self.monorepo_path = monorepo_path
        # insertion ordered, keyed by physical path
        self._operations: dict[str, FileOperation] = {}

    def physical_path(self, path: str) -> str:
        # the logical path alone must not be empty
        return normalize_path(
            self.monorepo_path, self.content_path, normalize_path(path)
        )

    def _record(self, operation: FileOperation) -> None:
        if operation.path in self._operations:
            logging.debug(f"Replacing earlier operation on {operation.path}")
            # the later operation also takes the later position
            del self._operations[operation.path]
        self._operations[operation.path] = operation

    def add_or_replace(
        self,
        path: str,
        content: str | bytes = "",
        encoding: Encoding = Encoding.utf8,
    ) -> ChangeSetBuilder:
        """Record a file to add or replace.

        Base64 content may be wrapped over several lines, the whitespace is
        removed before it is validated.

        Raises:
            ValidationError: If the path is invalid, the content is not valid
                base64 or UTF-8, or it exceeds the size limit.
        """
        full_path = self.physical_path(path)

        if isinstance(content, bytes):
            content = base64.b64encode(content).decode("utf-8")
            encoding = Encoding.base64

        if encoding == Encoding.base64:
            content = "".join(content.split())
            try:
                size = len(base64.b64decode(content, validate=True))
            except ValueError:
                # binascii.Error, or non-ascii characters in the string
                raise ValidationError(f"Content of {full_path} is not valid base64")
        else:
            try:
                size = len(content.encode("utf-8"))
            except UnicodeEncodeError:
                raise ValidationError(f"Content of {full_path} is not valid UTF-8")

        if size > maxFileSize():
            raise ValidationError(
                f"{full_path} is too large ({size} bytes, limit {maxFileSize()})"
            )

        self._record(AddOrReplace(path=full_path, content=content, encoding=encoding))
        return self

    def delete(self, path: str) -> ChangeSetBuilder:
        self._record(Delete(path=self.physical_path(path)))
        return self

    def build(self) -> ChangeSet:
        return ChangeSet(self._operations.values())


def build_change_set(content_path: str = "", monorepo_path: str = "") -> ChangeSetBuilder:
    return ChangeSetBuilder(content_path=content_path, monorepo_path=monorepo_path)


def compile_commit_input(
    change_set: ChangeSet, head: HeadRef, message: str
) -> CommitInput:
    """Compile a change set into the createCommitOnBranch payload.

    Pure and synchronous. Additions carry base64 contents, deletions only
    their path. The head oid becomes the expected parent of the commit.

    Raises:
        ValidationError: If the change set is empty, the head has no oid or
            the message is empty.
    """
    if not change_set:
        raise ValidationError("A commit needs at least one file change")
    if not head.oid:
        raise ValidationError("The head oid must be resolved before compiling")
    if not message or not message.strip():
        raise ValidationError("The commit message must not be empty")

    additions: list[FileAddition] = []
    deletions: list[FileDeletion] = []
    for operation in change_set:
        match operation:
            case AddOrReplace(encoding=Encoding.base64):
                additions.append(
                    FileAddition(path=operation.path, contents=operation.content)
                )
            case AddOrReplace():
                contents = base64.b64encode(operation.content.encode("utf-8"))
                additions.append(
                    FileAddition(path=operation.path, contents=contents.decode("utf-8"))
                )
            case Delete():
                deletions.append(FileDeletion(path=operation.path))

    return CommitInput(
        branch=CommittableBranch(
            repository_name_with_owner=f"{head.owner}/{head.repository_name}",
            branch_name=head.branch,
        ),
        message=message,
        file_changes=FileChanges(additions=additions, deletions=deletions),
        expected_head_oid=head.oid,
    )


class CommitExecutor:
    """Submits compiled commits.

    A stale expected head is reported as CommitConflicted, never as a generic
    failure. Nothing is retried.
    """

    def __init__(self, client: ClientInterface) -> None:
        self.client = client

    async def submit(self, commit_input: CommitInput) -> CommitResult:
        branch = commit_input.branch
        try:
            new_oid = await run_in_threadpool(self.client.create_commit, commit_input)
        except ConflictError as e:
            logging.warning(
                f"Commit to {branch.repository_name_with_owner}@{branch.branch_name} "
                f"conflicted, {commit_input.expected_head_oid} is stale: {e.message}"
            )
            return CommitConflicted(stale_oid=commit_input.expected_head_oid)
        except CommitError as e:
            logging.error(
                f"Commit to {branch.repository_name_with_owner}@{branch.branch_name} "
                f"failed ({e.reason.value}): {e.message}"
            )
            return CommitFailed(reason=e.reason, message=e.message)

        logging.info(
            f"Committed to {branch.repository_name_with_owner}@{branch.branch_name}: {new_oid}"
        )
        return CommitSucceeded(new_oid=new_oid)


class CommitObserver(ABC):
    """Gets notified about the terminal state of every commit attempt."""

    @abstractmethod
    def on_terminal(self, state: CommitState, result: CommitResult) -> None:
        pass


class UnsavedChanges(CommitObserver):
    """Tracks whether edits are still unsaved.

    Only a successful commit clears the flag.
    """

    def __init__(self, has_changes: bool = False) -> None:
        self.has_changes = has_changes

    def mark_changed(self) -> None:
        self.has_changes = True

    @override
    def on_terminal(self, state: CommitState, result: CommitResult) -> None:
        if state == CommitState.succeeded:
            self.has_changes = False


class LoggingObserver(CommitObserver):
    @override
    def on_terminal(self, state: CommitState, result: CommitResult) -> None:
        logging.info(f"Commit attempt ended {state.value}: {result.model_dump()}")


class CommitAttempt:
    """One commit attempt: resolve, compile, submit.

    idle -> resolving -> compiling -> submitting -> succeeded | conflicted | failed

    An attempt runs once. Retrying means starting a new attempt, which resolves
    the head again.
    """

    def __init__(
        self,
        client: ClientInterface,
        owner: str,
        repository_name: str,
        branch: str,
        observers: Iterable[CommitObserver] = (),
    ) -> None:
        self.resolver = HeadResolver(client)
        self.executor = CommitExecutor(client)
        self.owner = owner
        self.repository_name = repository_name
        self.branch = branch
        self.observers = list(observers)
        self.state = CommitState.idle
        self.head: HeadRef | None = None
        self.result: CommitResult | None = None

    def _finish(self, result: CommitResult) -> CommitResult:
        match result:
            case CommitSucceeded():
                self.state = CommitState.succeeded
            case CommitConflicted():
                self.state = CommitState.conflicted
            case _:
                self.state = CommitState.failed
        self.result = result

        for observer in self.observers:
            observer.on_terminal(self.state, result)
        return result

    async def run(self, change_set: ChangeSet, message: str) -> CommitResult:
        if self.state != CommitState.idle:
            raise RuntimeError(f"Commit attempt already {self.state.value}")

        self.state = CommitState.resolving
        try:
            self.head = await self.resolver.fetch(
                self.owner, self.repository_name, self.branch
            )
        except CommitError as e:
            logging.error(f"Couldn't resolve head of {self.branch}: {e.message}")
            return self._finish(CommitFailed(reason=e.reason, message=e.message))

        self.state = CommitState.compiling
        try:
            commit_input = compile_commit_input(change_set, self.head, message)
        except ValidationError as e:
            return self._finish(CommitFailed(reason=e.reason, message=e.message))

        self.state = CommitState.submitting
        return self._finish(await self.executor.submit(commit_input))

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES
