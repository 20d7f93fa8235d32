from __future__ import annotations

import itertools
import logging

import pytest

from update_services.models import SelectionSet, SkipReason
from update_services.selection import select_updates
from update_service_test_utils import make_update


def _titles(updates) -> list:
    return [u.title for u in updates]


def test_hidden_updates_are_never_selected() -> None:
    catalog = [
        make_update("Visible", kb="5001"),
        make_update("Hidden", kb="5002", hidden=True),
        make_update("Hidden and EULA", hidden=True, eula_accepted=False),
    ]

    outcome = select_updates(catalog, auto_accept_eula=True)

    assert _titles(outcome.selection) == ["Visible"]
    assert _titles(outcome.skipped_for(SkipReason.HIDDEN)) == ["Hidden", "Hidden and EULA"]
    # Hidden check comes first, so the EULA is left alone.
    assert catalog[2].eula_accepted is False


def test_exclusive_update_seen_first_wins() -> None:
    catalog = [make_update("A", exclusive=True), make_update("B"), make_update("C")]

    outcome = select_updates(catalog)

    assert _titles(outcome.selection) == ["A"]
    assert outcome.selection.exclusive_locked
    assert _titles(outcome.skipped_for(SkipReason.EXCLUSIVE_CONFLICT)) == ["B", "C"]


def test_exclusive_update_seen_last_is_skipped() -> None:
    catalog = [make_update("B"), make_update("C"), make_update("A", exclusive=True)]

    outcome = select_updates(catalog)

    assert _titles(outcome.selection) == ["B", "C"]
    assert not outcome.selection.exclusive_locked
    assert _titles(outcome.skipped_for(SkipReason.EXCLUSIVE_CONFLICT)) == ["A"]


def test_second_exclusive_update_conflicts_with_first() -> None:
    catalog = [make_update("X1", exclusive=True), make_update("X2", exclusive=True)]

    outcome = select_updates(catalog)

    assert _titles(outcome.selection) == ["X1"]
    assert _titles(outcome.skipped_for(SkipReason.EXCLUSIVE_CONFLICT)) == ["X2"]


def test_exclusivity_invariant_holds_for_every_catalog_order() -> None:
    base = [
        make_update("N1"),
        make_update("N2"),
        make_update("X1", exclusive=True),
        make_update("X2", exclusive=True),
        make_update("H", hidden=True, exclusive=True),
    ]

    for catalog in itertools.permutations(base):
        selection = select_updates(catalog).selection
        exclusive = [u for u in selection if u.installation_behavior.requires_exclusive_handling]
        assert len(selection) <= 1 or not exclusive
        assert all(not u.is_hidden for u in selection)
        first_visible = next(u for u in catalog if not u.is_hidden)
        if first_visible.installation_behavior.requires_exclusive_handling:
            assert _titles(selection) == [first_visible.title]
        else:
            assert sorted(_titles(selection)) == ["N1", "N2"]


def test_unaccepted_eula_is_skipped_without_auto_accept(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    update = make_update("Needs EULA", kb="5003", eula_accepted=False)
    accepted = []

    outcome = select_updates([update], auto_accept_eula=False, accept_eula=accepted.append)

    assert len(outcome.selection) == 0
    assert _titles(outcome.skipped_for(SkipReason.EULA_REQUIRED)) == ["Needs EULA"]
    assert accepted == []
    assert update.eula_accepted is False
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert any("EULA" in r.getMessage() for r in warnings)


def test_unaccepted_eula_is_accepted_with_auto_accept() -> None:
    update = make_update("Needs EULA", eula_accepted=False)
    accepted = []

    def accept(u):
        accepted.append(u.title)
        u.eula_accepted = True

    outcome = select_updates([update], auto_accept_eula=True, accept_eula=accept)

    assert update in outcome.selection
    assert update.eula_accepted is True
    assert accepted == ["Needs EULA"]
    assert outcome.eula_accepted == [update]


def test_auto_accept_without_acceptor_flips_flag_locally() -> None:
    update = make_update("Needs EULA", eula_accepted=False)

    outcome = select_updates([update], auto_accept_eula=True)

    assert update.eula_accepted is True
    assert _titles(outcome.selection) == ["Needs EULA"]


def test_accepted_eula_update_can_still_be_skipped_for_user_input() -> None:
    update = make_update("Interactive", eula_accepted=False, user_input=True)

    outcome = select_updates([update], auto_accept_eula=True)

    assert update.eula_accepted is True
    assert _titles(outcome.skipped_for(SkipReason.REQUIRES_USER_INPUT)) == ["Interactive"]
    assert len(outcome.selection) == 0


def test_user_input_update_does_not_lock_selection() -> None:
    catalog = [make_update("Interactive", exclusive=True, user_input=True), make_update("Normal")]

    outcome = select_updates(catalog)

    assert _titles(outcome.selection) == ["Normal"]
    assert [s.reason for s in outcome.skipped] == [SkipReason.REQUIRES_USER_INPUT]


def test_skip_reasons_are_logged_per_update(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="update_services.selection")
    catalog = [
        make_update("Hidden", hidden=True),
        make_update("Interactive", user_input=True),
        make_update("Normal"),
        make_update("Exclusive", exclusive=True),
    ]

    select_updates(catalog)

    messages = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert (logging.INFO, "Skipping hidden update: Hidden") in messages
    assert (logging.WARNING, "Skipping update that requires user input: Interactive") in messages
    assert any(
        level == logging.WARNING and "exclusive" in text and "Exclusive" in text
        for level, text in messages
    )


def test_selection_set_rejects_conflicting_add() -> None:
    selection = SelectionSet()
    selection.add(make_update("Normal"))

    with pytest.raises(ValueError):
        selection.add(make_update("Exclusive", exclusive=True))


def test_selection_set_ignores_duplicate_identity() -> None:
    selection = SelectionSet()
    first = make_update("Same", update_id="abc", revision=3)
    again = make_update("Same", update_id="abc", revision=3)
    other_revision = make_update("Same", update_id="abc", revision=4)

    selection.add(first)
    selection.add(again)
    selection.add(other_revision)

    assert len(selection) == 2
    assert again in selection
