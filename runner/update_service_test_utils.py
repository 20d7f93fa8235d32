"""Test doubles for the Windows Update provider."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from update_services.errors import CatalogUnavailable
from update_services.models import (
    InstallationBehavior,
    InstallationImpact,
    RebootBehavior,
    StageResult,
    Update,
    UpdateCategory,
    UpdateIdentity,
    UpdateResult,
)
from update_services.result_codes import OperationResultCode
from update_services.wua_provider import UpdateProvider, UpdateSession

SUCCEEDED = OperationResultCode.SUCCEEDED


def make_update(
    title: str,
    kb: Optional[str] = None,
    hidden: bool = False,
    eula_accepted: bool = True,
    exclusive: bool = False,
    user_input: bool = False,
    revision: int = 1,
    update_id: Optional[str] = None,
    categories: Iterable[str] = ("Security Updates",),
    size: int = 1024 * 1024,
    description: str = "",
) -> Update:
    return Update(
        identity=UpdateIdentity(update_id=update_id or f"id-{title}", revision_number=revision),
        title=title,
        description=description,
        is_hidden=hidden,
        eula_accepted=eula_accepted,
        installation_behavior=InstallationBehavior(
            impact=(
                InstallationImpact.REQUIRES_EXCLUSIVE_HANDLING
                if exclusive
                else InstallationImpact.NORMAL
            ),
            can_request_user_input=user_input,
            reboot_behavior=RebootBehavior.CAN_REQUEST_REBOOT,
        ),
        kb_article_ids=[kb] if kb else [],
        categories=[UpdateCategory(name=name, category_id=f"cat-{name}") for name in categories],
        max_download_size=size,
    )


def _aggregate(codes: Sequence[OperationResultCode]) -> OperationResultCode:
    if all(code == SUCCEEDED for code in codes):
        return SUCCEEDED
    if any(code == SUCCEEDED for code in codes):
        return OperationResultCode.SUCCEEDED_WITH_ERRORS
    return OperationResultCode.FAILED


class FakeUpdateSession(UpdateSession):
    """Records every call; outcomes are configured per update title.

    ``download_outcomes``/``install_outcomes`` map a title to
    (result code, hresult). Titles listed in ``unreported`` get no per-update
    result from either stage.
    """

    def __init__(
        self,
        catalog: Iterable[Update] = (),
        download_outcomes: Optional[Dict[str, Tuple[OperationResultCode, int]]] = None,
        install_outcomes: Optional[Dict[str, Tuple[OperationResultCode, int]]] = None,
        reboot_required: bool = False,
        unreported: Iterable[str] = (),
        fail_on: Optional[str] = None,
        error: Optional[Exception] = None,
    ):
        self.catalog = list(catalog)
        self.download_outcomes = download_outcomes or {}
        self.install_outcomes = install_outcomes or {}
        self.reboot_required = reboot_required
        self.unreported = set(unreported)
        self.fail_on = fail_on
        self.error = error or RuntimeError(f"{fail_on} exploded")
        self.calls: List[Tuple[str, object]] = []
        self.closed = False

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise self.error

    def calls_for(self, operation: str) -> List[object]:
        return [args for op, args in self.calls if op == operation]

    def search(self, criteria: str) -> List[Update]:
        self.calls.append(("search", criteria))
        self._maybe_fail("search")
        return list(self.catalog)

    def accept_eula(self, update: Update) -> None:
        self.calls.append(("accept_eula", update.title))
        self._maybe_fail("accept_eula")
        update.eula_accepted = True

    def download(self, updates: Sequence[Update]) -> StageResult:
        self.calls.append(("download", [u.title for u in updates]))
        self._maybe_fail("download")
        items = []
        for update in updates:
            if update.title in self.unreported:
                continue
            code, hresult = self.download_outcomes.get(update.title, (SUCCEEDED, 0))
            items.append(
                UpdateResult(
                    update=update,
                    result_code=code,
                    hresult=hresult,
                    is_downloaded=code == SUCCEEDED,
                )
            )
        return StageResult(
            operation="download",
            result_code=_aggregate([i.result_code for i in items] or [SUCCEEDED]),
            items=items,
        )

    def install(self, updates: Sequence[Update]) -> StageResult:
        self.calls.append(("install", [u.title for u in updates]))
        self._maybe_fail("install")
        items = []
        for update in updates:
            if update.title in self.unreported:
                continue
            code, hresult = self.install_outcomes.get(update.title, (SUCCEEDED, 0))
            items.append(
                UpdateResult(
                    update=update,
                    result_code=code,
                    hresult=hresult,
                    reboot_required=self.reboot_required,
                    is_downloaded=True,
                )
            )
        return StageResult(
            operation="install",
            result_code=_aggregate([i.result_code for i in items] or [SUCCEEDED]),
            reboot_required=self.reboot_required,
            items=items,
        )

    def close(self) -> None:
        self.closed = True


class FakeUpdateProvider(UpdateProvider):
    def __init__(self, session: Optional[FakeUpdateSession] = None, unavailable: bool = False):
        self.session = session or FakeUpdateSession()
        self.unavailable = unavailable
        self.opened = 0

    def open_session(self) -> FakeUpdateSession:
        if self.unavailable:
            raise CatalogUnavailable("The Windows Update service (wuauserv) is disabled")
        self.opened += 1
        return self.session


class RestartRecorder:
    def __init__(self):
        self.timeouts: List[int] = []

    def __call__(self, timeout_seconds: int) -> None:
        self.timeouts.append(timeout_seconds)


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
