"""Selection filter: decide which catalog updates are installed in this run.

Rules are applied per update, in catalog order, and short-circuit:

  1. hidden updates are skipped
  2. an unaccepted EULA is accepted when auto-accept is on, otherwise skipped
  3. updates that can prompt for user input are skipped
  4. exclusive-handling updates are only accepted into an empty selection,
     and lock it against everything that follows
  5. anything else is accepted unless the selection is exclusive-locked

Exclusivity is first-seen-wins: [A(exclusive), B, C] selects {A}, while
[B, C, A(exclusive)] selects {B, C}.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from .models import SelectionSet, SkippedUpdate, SkipReason, Update

logger = logging.getLogger(__name__)

EulaAcceptor = Callable[[Update], None]


@dataclass
class SelectionOutcome:
    selection: SelectionSet = field(default_factory=SelectionSet)
    skipped: List[SkippedUpdate] = field(default_factory=list)
    eula_accepted: List[Update] = field(default_factory=list)

    def skipped_for(self, reason: SkipReason) -> List[Update]:
        return [s.update for s in self.skipped if s.reason == reason]


def select_updates(
    catalog: Iterable[Update],
    auto_accept_eula: bool = False,
    accept_eula: Optional[EulaAcceptor] = None,
) -> SelectionOutcome:
    """Walk the catalog and build the selection set for this run.

    ``accept_eula`` performs the acceptance against the provider; it is
    expected to flip ``update.eula_accepted``. Without one the flag is flipped
    locally.
    """
    outcome = SelectionOutcome()
    selection = outcome.selection

    for update in catalog:
        if update.is_hidden:
            _skip(outcome, update, SkipReason.HIDDEN)
            continue

        if not update.eula_accepted:
            if not auto_accept_eula:
                _skip(outcome, update, SkipReason.EULA_REQUIRED)
                continue
            logger.info(f"Accepting EULA for update: {update}")
            if accept_eula is not None:
                accept_eula(update)
            update.eula_accepted = True
            outcome.eula_accepted.append(update)

        behavior = update.installation_behavior
        if behavior.can_request_user_input:
            _skip(outcome, update, SkipReason.REQUIRES_USER_INPUT)
            continue

        if not selection.can_add(update):
            _skip(outcome, update, SkipReason.EXCLUSIVE_CONFLICT)
            continue

        selection.add(update)
        if behavior.requires_exclusive_handling:
            logger.info(
                f"Selected update requiring exclusive installation: {update}; "
                "no other update will be installed in this run"
            )
        else:
            logger.debug(f"Selected update: {update}")

    return outcome


def _skip(outcome: SelectionOutcome, update: Update, reason: SkipReason) -> None:
    outcome.skipped.append(SkippedUpdate(update=update, reason=reason))
    if reason == SkipReason.HIDDEN:
        logger.info(f"Skipping hidden update: {update}")
    elif reason == SkipReason.EULA_REQUIRED:
        logger.warning(
            f"Skipping update requiring EULA acceptance: {update} "
            "(re-run with --auto-accept-eula to accept it)"
        )
    elif reason == SkipReason.REQUIRES_USER_INPUT:
        logger.warning(f"Skipping update that requires user input: {update}")
    else:
        logger.warning(
            f"Skipping update due to exclusive installation conflict: {update}"
        )
