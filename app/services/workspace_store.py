"""Workspace store: durable, resumable per-workspace audit state on the local filesystem.

Layout under the store root::

    <workspace_id>/workspace.json                    full document, rewritten on every mutation
    <workspace_id>/<chain>/<address>-report.md       one report body per (address, chain)

Every mutating call loads the document, applies the change and writes it back
(temp file + rename). Writers to the same id are serialized by an in-process lock;
separate processes sharing a root must coordinate externally.
"""

import logging
import os
import re
import shutil
import tempfile
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from app.schemas.workspace import (
    ChainState,
    ChainStats,
    ContractRecord,
    Workspace,
    WorkspaceStats,
    contract_key,
)

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

WORKSPACE_FILENAME = "workspace.json"
REPORT_SUFFIX = "-report.md"

_WORKSPACE_ID_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]{0,127}")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class WorkspaceStoreError(Exception):
    """Base error for workspace store operations."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class NotFoundError(WorkspaceStoreError):
    """Raised when a mutating call or query needs state that does not exist."""


class WorkspaceNotFoundError(NotFoundError):
    pass


class ChainNotFoundError(NotFoundError):
    """Raised for a chain that is not in the supported chain list."""


class WorkspaceAlreadyExistsError(WorkspaceStoreError):
    pass


class WorkspacePersistenceError(WorkspaceStoreError):
    """Raised on I/O failure or an unreadable document. Never retried by the store."""


class InvalidWorkspaceIdError(WorkspaceStoreError, ValueError):
    pass


class InvalidAddressError(WorkspaceStoreError, ValueError):
    """Raised for a contract address that is empty once surrounding whitespace is removed."""


def sanitize_address(address: str) -> str:
    """Filename stem for a contract address: drop a leading 0x, replace unsafe characters."""
    stem = address.strip()
    if stem[:2].lower() == "0x":
        stem = stem[2:]
    stem = _UNSAFE_FILENAME_CHARS.sub("_", stem)
    return stem or "contract"


def _contract_address(address: str) -> str:
    stripped = (address or "").strip()
    if not stripped:
        raise InvalidAddressError(f"Invalid contract address {address!r}: must not be blank.")
    return stripped


def _discard(path: str | None) -> None:
    if path and os.path.exists(path):
        os.unlink(path)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _vulnerability_dict(vuln: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(vuln, BaseModel):
        return vuln.model_dump(mode="json")
    return dict(vuln)


class WorkspaceStore:
    """File-backed store for Workspace documents keyed by workspace id."""

    def __init__(self, root: str | Path, supported_chains: Iterable[str]) -> None:
        self.root = Path(root)
        self.supported_chains: tuple[str, ...] = tuple(
            dict.fromkeys(c.strip().lower() for c in supported_chains if c and c.strip())
        )
        if not self.supported_chains:
            raise ValueError("supported_chains must list at least one chain")
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "WorkspaceStore":
        return cls(settings.WORKSPACE_DIR, settings.SUPPORTED_CHAINS)

    # -- paths and locking -------------------------------------------------

    def _workspace_dir(self, workspace_id: str) -> Path:
        if not isinstance(workspace_id, str) or not _WORKSPACE_ID_PATTERN.fullmatch(workspace_id):
            raise InvalidWorkspaceIdError(
                f"Invalid workspace id {workspace_id!r}: use letters, digits, '.', '_' or '-' (max 128)."
            )
        return self.root / workspace_id

    def _document_path(self, workspace_id: str) -> Path:
        return self._workspace_dir(workspace_id) / WORKSPACE_FILENAME

    def _chain(self, chain: str) -> str:
        name = (chain or "").strip().lower()
        if name not in self.supported_chains:
            raise ChainNotFoundError(
                f"Unsupported chain {chain!r}; expected one of {list(self.supported_chains)}."
            )
        return name

    @contextmanager
    def _locked(self, workspace_id: str) -> Iterator[None]:
        # Reject bad ids before they get a lock entry.
        self._workspace_dir(workspace_id)
        with self._locks_guard:
            lock = self._locks.setdefault(workspace_id, threading.RLock())
        with lock:
            yield

    # -- persistence -------------------------------------------------------

    def _read(self, workspace_id: str) -> Workspace | None:
        path = self._document_path(workspace_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise WorkspacePersistenceError(
                f"Failed to read workspace {workspace_id!r}.", cause=e
            ) from e
        try:
            return Workspace.model_validate_json(raw)
        except ValidationError as e:
            raise WorkspacePersistenceError(
                f"Workspace document for {workspace_id!r} is corrupt or has an unexpected shape.",
                cause=e,
            ) from e

    def _write(self, workspace: Workspace) -> None:
        """Write the full document to a temp file in the same directory, then rename over it."""
        directory = self._workspace_dir(workspace.id)
        tmp_name: str | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=directory,
                prefix=".workspace-",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(workspace.model_dump_json(indent=2))
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, directory / WORKSPACE_FILENAME)
        except OSError as e:
            _discard(tmp_name)
            raise WorkspacePersistenceError(
                f"Failed to save workspace {workspace.id!r}.", cause=e
            ) from e

    def _require(self, workspace_id: str) -> Workspace:
        workspace = self._read(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(f"Workspace not found: {workspace_id}")
        return workspace

    def _save(self, workspace: Workspace) -> None:
        workspace.updated_at = _now()
        self._write(workspace)

    # -- operations --------------------------------------------------------

    def create_workspace(self, workspace_id: str, chains: Iterable[str] | None = None) -> Workspace:
        """
        Create and persist a new workspace.

        ChainState is initialized for every supported chain; directories are created
        for the requested chains, or for all supported chains when none are given.
        Raises WorkspaceAlreadyExistsError if the id already has a persisted document.
        """
        targets = list(dict.fromkeys(self._chain(c) for c in (chains or [])))
        with self._locked(workspace_id):
            if self._document_path(workspace_id).exists():
                raise WorkspaceAlreadyExistsError(f"Workspace already exists: {workspace_id}")
            directory = self._workspace_dir(workspace_id)
            try:
                for chain in targets or self.supported_chains:
                    (directory / chain).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise WorkspacePersistenceError(
                    f"Failed to create directories for workspace {workspace_id!r}.", cause=e
                ) from e
            now = _now()
            workspace = Workspace(
                id=workspace_id,
                created_at=now,
                updated_at=now,
                target_chains=targets,
                chains={chain: ChainState() for chain in self.supported_chains},
            )
            self._write(workspace)
        logger.info(
            "Workspace created: %s",
            workspace_id,
            extra={"workspace_id": workspace_id, "chains": targets},
        )
        return workspace

    def load_workspace(self, workspace_id: str) -> Workspace:
        """Read a workspace back, e.g. to resume an interrupted session."""
        return self._require(workspace_id)

    def list_workspaces(self) -> list[str]:
        """Ids of all workspaces with a persisted document, sorted."""
        if not self.root.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir()
            and _WORKSPACE_ID_PATTERN.fullmatch(entry.name)
            and (entry / WORKSPACE_FILENAME).is_file()
        )

    def delete_workspace(self, workspace_id: str) -> None:
        """Remove the workspace directory with its document and reports."""
        with self._locked(workspace_id):
            directory = self._workspace_dir(workspace_id)
            if not directory.is_dir():
                raise WorkspaceNotFoundError(f"Workspace not found: {workspace_id}")
            try:
                shutil.rmtree(directory)
            except OSError as e:
                raise WorkspacePersistenceError(
                    f"Failed to delete workspace {workspace_id!r}.", cause=e
                ) from e
            with self._locks_guard:
                self._locks.pop(workspace_id, None)
        logger.info("Workspace deleted: %s", workspace_id, extra={"workspace_id": workspace_id})

    def add_contract(
        self,
        workspace_id: str,
        address: str,
        chain: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ContractRecord:
        """
        Record a contract on a chain.

        The (address, chain) record is replaced with fresh metadata and added_at.
        The address is appended to the chain's contract list on every call.
        """
        return self.add_contract_multi_chain(workspace_id, address, [chain], metadata)[0]

    def add_contract_multi_chain(
        self,
        workspace_id: str,
        address: str,
        chains: Iterable[str],
        metadata: Mapping[str, Any] | None = None,
    ) -> list[ContractRecord]:
        """Record one contract on several chains with a single write."""
        address = _contract_address(address)
        chain_names = [self._chain(c) for c in chains]
        records: list[ContractRecord] = []
        with self._locked(workspace_id):
            workspace = self._require(workspace_id)
            for chain in chain_names:
                record = ContractRecord(
                    address=address,
                    chain=chain,
                    added_at=_now(),
                    metadata=dict(metadata or {}),
                )
                workspace.contracts.setdefault(address, {})[chain] = record
                workspace.chains.setdefault(chain, ChainState()).contracts.append(address)
                records.append(record)
            self._save(workspace)
        logger.info(
            "Contract added: %s on %s",
            address,
            ", ".join(chain_names),
            extra={"workspace_id": workspace_id, "address": address},
        )
        return records

    def add_vulnerabilities(
        self,
        workspace_id: str,
        address: str,
        chain: str,
        vulnerabilities: Iterable[BaseModel | Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        """
        Store the vulnerability list for (address, chain).

        The per-contract list is replaced (latest call wins) while the same items
        are appended to the chain-level rollup, which is never deduplicated.
        """
        address = _contract_address(address)
        chain = self._chain(chain)
        items = [_vulnerability_dict(v) for v in vulnerabilities]
        with self._locked(workspace_id):
            workspace = self._require(workspace_id)
            workspace.vulnerabilities[contract_key(address, chain)] = items
            workspace.chains.setdefault(chain, ChainState()).vulnerabilities.extend(
                dict(item) for item in items
            )
            self._save(workspace)
        logger.info(
            "Vulnerabilities stored: %s for %s on %s",
            len(items),
            address,
            chain,
            extra={"workspace_id": workspace_id, "address": address, "chain": chain},
        )
        return items

    def _stage_report(self, report_path: Path, report: str) -> str:
        """Write a report body to a temp file beside its final path; return the temp path."""
        tmp_name: str | None = None
        try:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=report_path.parent,
                prefix=f".{report_path.stem}-",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(report)
                tmp.flush()
                os.fsync(tmp.fileno())
        except OSError:
            _discard(tmp_name)
            raise
        return tmp_name

    def add_report(self, workspace_id: str, address: str, chain: str, report: str) -> Path:
        """
        Store a report body for (address, chain) and write it under the chain directory.

        The report file is staged before the document is saved and moved into place
        after; if any step fails the document and report file are left as they were.
        """
        address = _contract_address(address)
        chain = self._chain(chain)
        key = contract_key(address, chain)
        with self._locked(workspace_id):
            workspace = self._require(workspace_id)
            previous = workspace.model_copy(deep=True)
            report_path = self._workspace_dir(workspace_id) / chain / f"{sanitize_address(address)}{REPORT_SUFFIX}"
            try:
                tmp_name = self._stage_report(report_path, report)
            except OSError as e:
                raise WorkspacePersistenceError(
                    f"Failed to write report for {key} in workspace {workspace_id!r}.", cause=e
                ) from e

            workspace.reports[key] = report
            workspace.chains.setdefault(chain, ChainState()).reports.append(key)
            try:
                self._save(workspace)
            except WorkspacePersistenceError:
                _discard(tmp_name)
                raise
            try:
                os.replace(tmp_name, report_path)
            except OSError as e:
                _discard(tmp_name)
                self._write(previous)
                raise WorkspacePersistenceError(
                    f"Failed to write report for {key} in workspace {workspace_id!r}.", cause=e
                ) from e
        logger.info(
            "Report saved: %s on %s",
            address,
            chain,
            extra={"workspace_id": workspace_id, "report_path": str(report_path)},
        )
        return report_path

    def get_stats(self, workspace_id: str) -> WorkspaceStats | None:
        """Counts for a workspace, or None when it does not exist."""
        try:
            workspace = self._read(workspace_id)
        except InvalidWorkspaceIdError:
            return None
        if workspace is None:
            return None
        return WorkspaceStats(
            workspace_id=workspace.id,
            chains=len(workspace.chains),
            contracts=len(workspace.contracts),
            total_vulnerabilities=sum(len(v) for v in workspace.vulnerabilities.values()),
            reports=len(workspace.reports),
            created_at=workspace.created_at,
            updated_at=workspace.updated_at,
            per_chain={
                name: ChainStats(
                    contracts=len(state.contracts),
                    vulnerabilities=len(state.vulnerabilities),
                    reports=len(state.reports),
                )
                for name, state in workspace.chains.items()
            },
        )

