"""Update provider backed by the Windows Update Agent (WUA) COM API.

The WUA objects (Microsoft.Update.Session, its searcher, downloader and
installer) are driven from PowerShell scripts that print a single JSON object
on stdout. Every script releases the COM objects it created in a ``finally``
block, and the Python-side session removes its scratch directory on close.

Updates are handed between scripts by identity (UpdateID + RevisionNumber):
each download/install/EULA script re-runs the session's search criteria and
rebuilds an UpdateColl containing only the requested identities, in the order
they were requested.
"""

from __future__ import annotations

import json
import logging
import shutil
import tempfile
from typing import Any, Callable, Dict, List, Optional, Sequence

from sentry_config import add_breadcrumb
from subprocess_utils import run_powershell_json

from .errors import CatalogUnavailable, ProviderCallFailed
from .models import StageResult, Update, UpdateResult
from .result_codes import (
    OperationResultCode,
    describe_result_code,
    format_hresult,
    normalize_hresult,
)

logger = logging.getLogger(__name__)

MICROSOFT_UPDATE_SERVICE_ID = "7971f918-a847-4430-9279-4a52d1efe18d"
# ssOthers: search the service named by ServiceID
SERVER_SELECTION_OTHERS = 3
CLIENT_APPLICATION_ID = "patchrunner"

ScriptRunner = Callable[..., Dict[str, Any]]


def build_criteria(
    include_optional_updates: bool = False, exclude_reboot_required: bool = False
) -> str:
    """Return the WUA search criteria for not-installed software updates."""
    parts = ["IsInstalled=0", "Type='Software'"]
    if not include_optional_updates:
        parts.append("BrowseOnly=0")
    if exclude_reboot_required:
        parts.append("RebootRequired=0")
    return " and ".join(parts)


class UpdateSession:
    """A scoped handle on the update provider.

    Use as a context manager; ``close`` runs on every exit path.
    """

    def search(self, criteria: str) -> List[Update]:
        raise NotImplementedError

    def accept_eula(self, update: Update) -> None:
        raise NotImplementedError

    def download(self, updates: Sequence[Update]) -> StageResult:
        raise NotImplementedError

    def install(self, updates: Sequence[Update]) -> StageResult:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> "UpdateSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class UpdateProvider:
    def open_session(self) -> UpdateSession:
        raise NotImplementedError


_PRELUDE = r"""
$ErrorActionPreference = 'Stop'
$ProgressPreference = 'SilentlyContinue'
$ConfirmPreference = 'None'

function Write-WULog { param([string]$msg) [Console]::Error.WriteLine("[WU] $msg") }

function Get-UpdateKey($u) { "$($u.Identity.UpdateID)|$($u.Identity.RevisionNumber)" }

function ConvertTo-UpdateRecord($u) {
  $categories = @()
  foreach ($c in $u.Categories) {
    $categories += [ordered]@{ Name = $c.Name; CategoryID = $c.CategoryID }
  }
  [ordered]@{
    Identity = [ordered]@{ UpdateID = $u.Identity.UpdateID; RevisionNumber = [int]$u.Identity.RevisionNumber }
    Title = $u.Title
    Description = $u.Description
    IsHidden = [bool]$u.IsHidden
    EulaAccepted = [bool]$u.EulaAccepted
    IsDownloaded = [bool]$u.IsDownloaded
    InstallationBehavior = [ordered]@{
      Impact = [int]$u.InstallationBehavior.Impact
      CanRequestUserInput = [bool]$u.InstallationBehavior.CanRequestUserInput
      RebootBehavior = [int]$u.InstallationBehavior.RebootBehavior
    }
    DeploymentAction = [int]$u.DeploymentAction
    KBArticleIDs = @($u.KBArticleIDs)
    Categories = $categories
    MaxDownloadSize = [decimal]$u.MaxDownloadSize
  }
}

$params = @'
__PARAMS_JSON__
'@ | ConvertFrom-Json

$out = [ordered]@{ ok = $true }
$exitCode = 0
$stage = 'init'
$session = $null
$searcher = $null
$worker = $null
try {
  $session = New-Object -ComObject Microsoft.Update.Session
  $session.ClientApplicationID = $params.client_application_id
  $searcher = $session.CreateUpdateSearcher()
  if ($params.microsoft_update) {
    $searcher.ServerSelection = $params.server_selection
    $searcher.ServiceID = $params.service_id
  }
  $stage = $params.operation
__BODY__
} catch {
  $out.ok = $false
  $out.stage = $stage
  $out.error = "$_"
  $out.hresult = $_.Exception.HResult
  $exitCode = if ($stage -eq 'init') { 2 } else { 1 }
  Write-WULog "$($params.operation) failed during ${stage}: $_"
} finally {
  foreach ($o in @($worker, $searcher, $session)) {
    if ($null -ne $o) { [void][System.Runtime.InteropServices.Marshal]::ReleaseComObject($o) }
  }
}

$out | ConvertTo-Json -Depth 8 -Compress
exit $exitCode
"""

_PROBE_BODY = r"""
  $svc = Get-Service -Name 'wuauserv'
  $out.service_status = "$($svc.Status)"
  $out.service_start_type = "$($svc.StartType)"
  if ("$($svc.StartType)" -eq 'Disabled') {
    throw "The Windows Update service (wuauserv) is disabled"
  }
  if ($params.microsoft_update) {
    $manager = New-Object -ComObject Microsoft.Update.ServiceManager
    try {
      $registered = $false
      foreach ($s in $manager.Services) {
        if ($s.ServiceID -eq $params.service_id) { $registered = $true }
      }
      if (-not $registered) {
        Write-WULog "Registering Microsoft Update service..."
        [void]$manager.AddService2($params.service_id, 7, '')
      }
    } finally {
      [void][System.Runtime.InteropServices.Marshal]::ReleaseComObject($manager)
    }
  }
"""

_SEARCH_BODY = r"""
  Write-WULog "Searching for updates ($($params.criteria))..."
  $result = $searcher.Search($params.criteria)
  $out.result_code = [int]$result.ResultCode
  $items = @()
  foreach ($u in $result.Updates) { $items += ,(ConvertTo-UpdateRecord $u) }
  $out.updates = $items
  Write-WULog "Found $($items.Count) update(s)"
"""

_COLLECT_WANTED = r"""
  $byKey = @{}
  $found = $searcher.Search($params.criteria)
  foreach ($u in $found.Updates) { $byKey[(Get-UpdateKey $u)] = $u }
  $wanted = New-Object -ComObject Microsoft.Update.UpdateColl
  $missing = @()
  foreach ($key in $params.identities) {
    if ($byKey.ContainsKey($key)) { [void]$wanted.Add($byKey[$key]) } else { $missing += $key }
  }
  $out.missing = $missing
"""

_EULA_BODY = _COLLECT_WANTED + r"""
  if ($wanted.Count -eq 0) { throw "Update not found: $($params.identities -join ', ')" }
  $u = $wanted.Item(0)
  if (-not $u.EulaAccepted) { $u.AcceptEula() }
  $out.eula_accepted = [bool]$u.EulaAccepted
"""

_DOWNLOAD_BODY = _COLLECT_WANTED + r"""
  $out.result_code = 0
  $out.hresult = 0
  $out.items = @()
  if ($wanted.Count -gt 0) {
    Write-WULog "Downloading $($wanted.Count) update(s)..."
    $worker = $session.CreateUpdateDownloader()
    $worker.Updates = $wanted
    $result = $worker.Download()
    $out.result_code = [int]$result.ResultCode
    $out.hresult = [int]$result.HResult
    $items = @()
    for ($i = 0; $i -lt $wanted.Count; $i++) {
      $u = $wanted.Item($i)
      $r = $result.GetUpdateResult($i)
      $items += ,([ordered]@{
        Key = (Get-UpdateKey $u)
        ResultCode = [int]$r.ResultCode
        HResult = [int]$r.HResult
        IsDownloaded = [bool]$u.IsDownloaded
      })
    }
    $out.items = $items
  }
"""

_INSTALL_BODY = _COLLECT_WANTED + r"""
  $out.result_code = 0
  $out.hresult = 0
  $out.reboot_required = $false
  $out.items = @()
  if ($wanted.Count -gt 0) {
    Write-WULog "Installing $($wanted.Count) update(s)..."
    $worker = $session.CreateUpdateInstaller()
    $worker.AllowSourcePrompts = $false
    $worker.Updates = $wanted
    $result = $worker.Install()
    $out.result_code = [int]$result.ResultCode
    $out.hresult = [int]$result.HResult
    $out.reboot_required = [bool]$result.RebootRequired
    $items = @()
    for ($i = 0; $i -lt $wanted.Count; $i++) {
      $u = $wanted.Item($i)
      $r = $result.GetUpdateResult($i)
      $items += ,([ordered]@{
        Key = (Get-UpdateKey $u)
        ResultCode = [int]$r.ResultCode
        HResult = [int]$r.HResult
        RebootRequired = [bool]$r.RebootRequired
        IsDownloaded = [bool]$u.IsDownloaded
      })
    }
    $out.items = $items
  }
"""


def render_script(body: str, params: Dict[str, Any]) -> str:
    # Single-quoted here-strings are literal; the JSON stays on one line so it
    # can never start a line with the '@ terminator.
    return _PRELUDE.replace("__PARAMS_JSON__", json.dumps(params)).replace(
        "__BODY__", body
    )


class PowerShellUpdateProvider(UpdateProvider):
    """Opens WUA sessions through PowerShell."""

    def __init__(
        self,
        microsoft_update: bool = False,
        client_application_id: str = CLIENT_APPLICATION_ID,
        runner: Optional[ScriptRunner] = None,
    ):
        self.microsoft_update = microsoft_update
        self.client_application_id = client_application_id
        self.runner = runner or run_powershell_json

    def open_session(self) -> "PowerShellUpdateSession":
        workdir = tempfile.mkdtemp(prefix="patchrunner-")
        session = PowerShellUpdateSession(self, workdir)
        try:
            session.probe()
        except BaseException:
            session.close()
            raise
        return session


class PowerShellUpdateSession(UpdateSession):
    def __init__(self, provider: PowerShellUpdateProvider, workdir: str):
        self.provider = provider
        self.workdir = workdir
        self.criteria: Optional[str] = None
        self.closed = False

    def _params(self, operation: str, **extra: Any) -> Dict[str, Any]:
        params = {
            "operation": operation,
            "client_application_id": self.provider.client_application_id,
            "microsoft_update": self.provider.microsoft_update,
            "server_selection": SERVER_SELECTION_OTHERS,
            "service_id": MICROSOFT_UPDATE_SERVICE_ID,
        }
        params.update(extra)
        return params

    def _run(self, body: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.closed:
            raise RuntimeError("Update session is closed")
        return self.provider.runner(render_script(body, params), workdir=self.workdir)

    def _run_call(self, operation: str, body: str, updates: Sequence[Update]) -> Dict[str, Any]:
        if self.criteria is None:
            raise RuntimeError(f"{operation} requires a completed search")
        params = self._params(
            operation,
            criteria=self.criteria,
            identities=[u.identity.key for u in updates],
        )
        res = self._run(body, params)
        data = res.get("data") or {}
        if not res.get("ok"):
            message = data.get("error") or res.get("error") or "PowerShell execution failed"
            if data.get("hresult"):
                message = f"{message} [{format_hresult(data['hresult'])}]"
            raise ProviderCallFailed(
                operation, message, exit_code=res.get("exit_code"), stderr=res.get("stderr") or ""
            )
        for key in data.get("missing") or []:
            logger.warning(f"Update {key} was not found again by the provider during {operation}")
        return data

    def probe(self) -> Dict[str, Any]:
        """Check that the Windows Update service is usable."""
        res = self._run(_PROBE_BODY, self._params("probe"))
        data = res.get("data") or {}
        if not res.get("ok"):
            raise CatalogUnavailable(
                data.get("error") or res.get("error") or "Windows Update Agent is unavailable"
            )
        logger.debug(
            f"Windows Update service status: {data.get('service_status')} "
            f"(start type {data.get('service_start_type')})"
        )
        return data

    def search(self, criteria: str) -> List[Update]:
        add_breadcrumb("Searching for updates", category="provider", level="info", criteria=criteria)
        res = self._run(_SEARCH_BODY, self._params("search", criteria=criteria))
        data = res.get("data") or {}
        if not res.get("ok"):
            message = data.get("error") or res.get("error") or "Update search failed"
            if data.get("hresult"):
                message = f"{message} [{format_hresult(data['hresult'])}]"
            raise CatalogUnavailable(message)

        code = OperationResultCode.from_value(data.get("result_code"))
        if code not in (OperationResultCode.SUCCEEDED, OperationResultCode.SUCCEEDED_WITH_ERRORS):
            raise CatalogUnavailable(f"Update search returned: {describe_result_code(code)}")
        if code == OperationResultCode.SUCCEEDED_WITH_ERRORS:
            logger.warning("Update search completed with errors; results may be incomplete")

        self.criteria = criteria
        updates: List[Update] = []
        seen = set()
        for record in data.get("updates") or []:
            update = Update.from_dict(record)
            if update.identity.key in seen:
                logger.debug(f"Ignoring duplicate search result {update.identity}")
                continue
            seen.add(update.identity.key)
            updates.append(update)
        return updates

    def accept_eula(self, update: Update) -> None:
        data = self._run_call("accept_eula", _EULA_BODY, [update])
        if not data.get("eula_accepted"):
            raise ProviderCallFailed("accept_eula", f"EULA still not accepted for {update.title}")
        update.eula_accepted = True

    def download(self, updates: Sequence[Update]) -> StageResult:
        if not updates:
            return StageResult(operation="download", result_code=OperationResultCode.NOT_STARTED)
        data = self._run_call("download", _DOWNLOAD_BODY, updates)
        return self._stage_result("download", data, updates)

    def install(self, updates: Sequence[Update]) -> StageResult:
        if not updates:
            return StageResult(operation="install", result_code=OperationResultCode.NOT_STARTED)
        data = self._run_call("install", _INSTALL_BODY, updates)
        return self._stage_result("install", data, updates)

    def _stage_result(
        self, operation: str, data: Dict[str, Any], updates: Sequence[Update]
    ) -> StageResult:
        by_key = {u.identity.key: u for u in updates}
        items = []
        for record in data.get("items") or []:
            update = by_key.get(record.get("Key"))
            if update is None:
                logger.debug(f"Ignoring {operation} result for unrequested update {record.get('Key')}")
                continue
            items.append(
                UpdateResult(
                    update=update,
                    result_code=OperationResultCode.from_value(record.get("ResultCode")),
                    hresult=normalize_hresult(record.get("HResult")),
                    reboot_required=bool(record.get("RebootRequired")),
                    is_downloaded=bool(record.get("IsDownloaded")),
                )
            )
        return StageResult(
            operation=operation,
            result_code=OperationResultCode.from_value(data.get("result_code")),
            hresult=normalize_hresult(data.get("hresult")),
            reboot_required=bool(data.get("reboot_required")),
            items=items,
        )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        shutil.rmtree(self.workdir, ignore_errors=True)
        logger.debug("Update session closed")
