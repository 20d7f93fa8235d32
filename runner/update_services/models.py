"""Data model for the Windows Update selection-and-install workflow.

Mirrors the subset of the Windows Update Agent object model the runner needs:
IUpdate (identity, title, EULA state, installation behaviour, KB articles,
categories) and the per-update results of IDownloadResult / IInstallationResult.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from .result_codes import OperationResultCode

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=IntEnum)


class InstallationImpact(IntEnum):
    """IUpdate.InstallationBehavior.Impact."""

    NORMAL = 0
    MINOR = 1
    REQUIRES_EXCLUSIVE_HANDLING = 2


class RebootBehavior(IntEnum):
    """IUpdate.InstallationBehavior.RebootBehavior."""

    NEVER_REBOOTS = 0
    ALWAYS_REQUIRES_REBOOT = 1
    CAN_REQUEST_REBOOT = 2


class DeploymentAction(IntEnum):
    """IUpdate.DeploymentAction."""

    NONE = 0
    INSTALLATION = 1
    UNINSTALLATION = 2
    DETECTION = 3
    OPTIONAL_INSTALLATION = 4


def _enum_value(enum_cls: Type[E], value: Any, default: E) -> E:
    """Convert a raw WUA value, folding missing or unknown values into ``default``."""
    if value is None:
        return default
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        logger.debug(f"Unknown {enum_cls.__name__} value {value!r}; using {default.name}")
        return default


class SkipReason(str, Enum):
    HIDDEN = "hidden"
    EULA_REQUIRED = "EULA required"
    REQUIRES_USER_INPUT = "requires user input"
    EXCLUSIVE_CONFLICT = "exclusive conflict"


@dataclass(frozen=True)
class UpdateIdentity:
    update_id: str
    revision_number: int

    @property
    def key(self) -> str:
        return f"{self.update_id}|{self.revision_number}"

    def __str__(self) -> str:
        return f"{self.update_id} (rev {self.revision_number})"


@dataclass(frozen=True)
class UpdateCategory:
    name: str
    category_id: str


@dataclass(frozen=True)
class InstallationBehavior:
    impact: InstallationImpact = InstallationImpact.NORMAL
    can_request_user_input: bool = False
    reboot_behavior: RebootBehavior = RebootBehavior.NEVER_REBOOTS

    @property
    def requires_exclusive_handling(self) -> bool:
        return self.impact == InstallationImpact.REQUIRES_EXCLUSIVE_HANDLING


@dataclass
class Update:
    """One catalog entry returned by an update search.

    Only ``eula_accepted`` changes after the search, and only through an
    explicit EULA acceptance on the provider session.
    """

    identity: UpdateIdentity
    title: str
    description: str = ""
    is_hidden: bool = False
    eula_accepted: bool = True
    is_downloaded: bool = False
    installation_behavior: InstallationBehavior = field(
        default_factory=InstallationBehavior
    )
    deployment_action: DeploymentAction = DeploymentAction.INSTALLATION
    kb_article_ids: List[str] = field(default_factory=list)
    categories: List[UpdateCategory] = field(default_factory=list)
    max_download_size: int = 0

    @property
    def kb(self) -> str:
        return ",".join(f"KB{kb}" for kb in self.kb_article_ids)

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]

    @property
    def is_driver(self) -> bool:
        return any("driver" in c.name.lower() for c in self.categories)

    def __str__(self) -> str:
        return f"{self.kb} - {self.title}" if self.kb_article_ids else self.title

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Update":
        """Build an Update from the JSON emitted by the search script."""
        identity = data.get("Identity") or {}
        behavior = data.get("InstallationBehavior") or {}
        return cls(
            identity=UpdateIdentity(
                update_id=str(identity.get("UpdateID", "")),
                revision_number=int(identity.get("RevisionNumber") or 0),
            ),
            title=data.get("Title") or "",
            description=data.get("Description") or "",
            is_hidden=bool(data.get("IsHidden")),
            eula_accepted=bool(data.get("EulaAccepted", True)),
            is_downloaded=bool(data.get("IsDownloaded")),
            installation_behavior=InstallationBehavior(
                impact=_enum_value(
                    InstallationImpact, behavior.get("Impact"), InstallationImpact.NORMAL
                ),
                can_request_user_input=bool(behavior.get("CanRequestUserInput")),
                reboot_behavior=_enum_value(
                    RebootBehavior, behavior.get("RebootBehavior"), RebootBehavior.NEVER_REBOOTS
                ),
            ),
            deployment_action=_enum_value(
                DeploymentAction, data.get("DeploymentAction"), DeploymentAction.INSTALLATION
            ),
            kb_article_ids=[str(kb) for kb in (data.get("KBArticleIDs") or [])],
            categories=[
                UpdateCategory(name=c.get("Name") or "", category_id=c.get("CategoryID") or "")
                for c in (data.get("Categories") or [])
            ],
            max_download_size=int(data.get("MaxDownloadSize") or 0),
        )


class SelectionSet:
    """Ordered, identity-unique collection of updates chosen for this run.

    Once an update requiring exclusive handling is added the set is locked and
    accepts nothing else; an exclusive update is only accepted into an empty set.
    """

    def __init__(self) -> None:
        self._updates: List[Update] = []
        self._keys: set = set()
        self.exclusive_locked = False

    def can_add(self, update: Update) -> bool:
        if self.exclusive_locked:
            return False
        if update.installation_behavior.requires_exclusive_handling:
            return not self._updates
        return True

    def add(self, update: Update) -> None:
        if not self.can_add(update):
            raise ValueError(f"Cannot add {update.title!r}: exclusive handling conflict")
        if update.identity.key in self._keys:
            return
        self._updates.append(update)
        self._keys.add(update.identity.key)
        if update.installation_behavior.requires_exclusive_handling:
            self.exclusive_locked = True

    def __contains__(self, update: object) -> bool:
        return isinstance(update, Update) and update.identity.key in self._keys

    def __iter__(self) -> Iterator[Update]:
        return iter(self._updates)

    def __len__(self) -> int:
        return len(self._updates)

    def __bool__(self) -> bool:
        return bool(self._updates)

    @property
    def updates(self) -> List[Update]:
        return list(self._updates)


@dataclass(frozen=True)
class SkippedUpdate:
    update: Update
    reason: SkipReason


@dataclass
class UpdateResult:
    """Per-update outcome of a download or install batch."""

    update: Update
    result_code: OperationResultCode
    hresult: int = 0
    reboot_required: bool = False
    is_downloaded: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result_code == OperationResultCode.SUCCEEDED


@dataclass
class StageResult:
    """Aggregate outcome of one download or install batch."""

    operation: str
    result_code: OperationResultCode
    hresult: int = 0
    reboot_required: bool = False
    items: List[UpdateResult] = field(default_factory=list)

    def result_for(self, update: Update) -> Optional[UpdateResult]:
        for item in self.items:
            if item.update.identity == update.identity:
                return item
        return None

    @property
    def downloaded_updates(self) -> List[Update]:
        return [item.update for item in self.items if item.is_downloaded]
