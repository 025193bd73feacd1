# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for searchfilters.session: load-time sync, command dispatch, two-phase navigation."""

from __future__ import annotations

import json

import pytest

from searchfilters import FilterCategory
from searchfilters.config import EngineConfig
from searchfilters.errors import BuiltinSiteError, CapacityError, StorageError, UnknownSelectionError, ValidationError
from searchfilters.session import Command, CommandAction, NavigationKind
from searchfilters.storage import InMemoryBackend

RESULTS_URL = "https://www.google.com/search?q=foo"
HOME_URL = "https://www.google.com/"

SITE = FilterCategory.SITE
LANG = FilterCategory.RESULT_LANGUAGE
HL = FilterCategory.INTERFACE_LANGUAGE
GL = FilterCategory.REGION
TIME = FilterCategory.TIME_WINDOW


class _DiskFullBackend(InMemoryBackend):
    full = False

    def set_item(self, key: str, value: str) -> None:
        if self.full:
            raise OSError("disk full")
        super().set_item(key, value)


class _BrokenNavigator:
    def __init__(self) -> None:
        self.attempts = 0

    def navigate(self, url: str) -> None:
        self.attempts += 1
        raise RuntimeError("navigation blocked")


# ── Load ────────────────────────────────────────────────────────


class TestLoad:
    def test_hl_on_results_page_is_consistent(self, make_session, navigator, backend):
        session = make_session("https://www.google.com/search?q=foo&hl=tr")
        report = session.load()
        assert report.results_page
        assert report.consistent
        assert report.navigated_to is None
        assert report.state[HL] == "tr"
        assert navigator.urls == []
        # Interface language is remembered by default.
        assert backend.get_item("googleSearchInterfaceLang") == "tr"

    def test_stored_site_triggers_one_corrective_navigation(self, make_session, navigator, backend):
        backend.set_item("googleSearchPersistSite", "true")
        backend.set_item("googleSearchSite", "reddit")
        report = make_session(RESULTS_URL).load()
        expected = "https://www.google.com/search?q=foo+site%3Areddit.com"
        assert not report.consistent
        assert report.navigated_to == expected
        assert navigator.urls == [expected]

    def test_corrected_address_does_not_navigate_again(self, make_session, navigator, backend):
        backend.set_item("googleSearchPersistSite", "true")
        backend.set_item("googleSearchSite", "reddit")
        target = make_session(RESULTS_URL).load().navigated_to
        report = make_session(target).load()
        assert report.consistent
        assert navigator.urls == [target]

    def test_address_wins_over_store(self, make_session, backend):
        backend.set_item("googleSearchSearchLang", "tr")
        report = make_session(f"{RESULTS_URL}&lr=lang_en").load()
        assert report.state[LANG] == "en"
        assert backend.get_item("googleSearchSearchLang") == "en"

    def test_non_results_page_never_navigates(self, make_session, navigator, backend):
        backend.set_item("googleSearchSearchLang", "tr")
        report = make_session(HOME_URL).load()
        assert not report.results_page
        assert report.state[LANG] == "tr"
        assert navigator.urls == []

    def test_unrecognized_host_skipped(self, make_session, navigator, backend):
        backend.set_item("googleSearchSearchLang", "tr")
        report = make_session("https://www.bing.com/search?q=foo&hl=en").load()
        assert report.skipped
        assert report.state[LANG] == "all"
        assert navigator.urls == []
        assert backend.writes == [("googleSearchSearchLang", "tr")]

    def test_failed_corrective_navigation_is_not_retried(self, make_session, backend):
        backend.set_item("googleSearchSearchLang", "en")
        broken = _BrokenNavigator()
        session = make_session(RESULTS_URL, navigator=broken)
        report = session.load()
        assert report.navigated_to is None
        assert broken.attempts == 1
        assert session.guard.pending is None
        assert not session.guard.committed


class TestStoredCustomSites:
    def _backend_with_sites(self, sites: dict) -> InMemoryBackend:
        return InMemoryBackend({"googleSearchCustomSites": json.dumps(sites)})

    def test_valid_sites_loaded(self, make_session):
        backend = self._backend_with_sites(
            {"example_com": {"name": "Example", "domain": "example.com", "query": "site:example.com"}}
        )
        session = make_session(HOME_URL, backend=backend)
        assert session.catalog.contains(SITE, "example_com")

    def test_invalid_sites_dropped(self, make_session):
        backend = self._backend_with_sites(
            {
                "good_com": {"name": "Good", "domain": "good.com", "query": "site:good.com"},
                "bad_com": {"name": "<b>", "domain": "bad.com", "query": "site:bad.com"},
                "worse_com": {"name": "Worse", "domain": "not a domain", "query": "site:x"},
            }
        )
        session = make_session(HOME_URL, backend=backend)
        assert list(session.catalog.custom_sites()) == ["good_com"]

    def test_persisted_custom_selection_restored(self, make_session):
        backend = self._backend_with_sites(
            {"example_com": {"name": "Example", "domain": "example.com", "query": "site:example.com"}}
        )
        backend.set_item("googleSearchPersistSite", "true")
        backend.set_item("googleSearchSite", "example_com")
        report = make_session(HOME_URL, backend=backend).load()
        assert report.state[SITE] == "example_com"

    def test_corrupt_payload_purged(self, make_session):
        backend = InMemoryBackend({"googleSearchCustomSites": "{broken"})
        session = make_session(HOME_URL, backend=backend)
        assert session.catalog.custom_count == 0
        assert backend.get_item("googleSearchCustomSites") is None


# ── Selection and navigation ────────────────────────────────────


class TestSelect:
    def test_select_schedules_full_apply(self, make_session, fake_loop, navigator, sink):
        session = make_session()
        session.load()
        result = session.dispatch(Command.select(SITE, "reddit"))
        assert result.ok
        assert result.message == "Reddit selected"
        assert result.navigation.kind is NavigationKind.APPLY
        assert navigator.urls == []
        fake_loop.advance(0.2)
        assert navigator.urls == ["https://www.google.com/search?q=foo+site%3Areddit.com"]
        assert "Reddit selected" in sink.messages

    def test_apply_uses_state_at_commit_time(self, make_session, fake_loop, navigator):
        session = make_session()
        session.load()
        first = session.dispatch(Command.select(SITE, "reddit"))
        second = session.dispatch(Command.select(LANG, "en"))
        assert first.navigation is not None
        assert second.navigation is None
        fake_loop.advance(1.0)
        assert navigator.urls == ["https://www.google.com/search?q=foo+site%3Areddit.com&lr=lang_en"]

    def test_no_navigation_off_results_page(self, make_session, fake_loop, navigator):
        session = make_session(HOME_URL)
        session.load()
        result = session.dispatch(Command.select(TIME, "week"))
        assert result.ok
        assert result.navigation is None
        fake_loop.advance(1.0)
        assert navigator.urls == []

    def test_selecting_current_value_is_noop(self, make_session, backend, sink):
        session = make_session(HOME_URL)
        session.load()
        session.dispatch(Command.select(LANG, "tr"))
        writes = len(backend.writes)
        notices = len(sink.notices)
        result = session.dispatch(Command.select(LANG, "tr"))
        assert result.ok
        assert result.navigation is None
        assert len(backend.writes) == writes
        assert len(sink.notices) == notices

    def test_unknown_selection_rejected_silently(self, make_session, sink):
        session = make_session(HOME_URL)
        session.load()
        result = session.dispatch(Command.select(SITE, "removed_com"))
        assert not result.ok
        assert isinstance(result.error, UnknownSelectionError)
        assert result.state[SITE] == "all"
        assert sink.notices == []

    def test_interface_language_navigates_in_isolation(self, make_session, fake_loop, navigator, sink):
        session = make_session("https://www.google.com/search?q=foo&lr=lang_tr&hl=tr")
        session.load()
        result = session.dispatch(Command.select(HL, "en"))
        assert result.navigation.kind is NavigationKind.ISOLATED
        assert result.message == "Switching to English UI..."
        assert sink.messages[-1] == "Switching to English UI..."
        fake_loop.advance(0.5)
        assert navigator.urls == []
        fake_loop.advance(0.5)
        assert navigator.urls == ["https://www.google.com/search?q=foo&lr=lang_tr&hl=en"]

    def test_region_isolated_on_any_page(self, make_session, fake_loop, navigator):
        session = make_session(HOME_URL)
        session.load()
        session.dispatch(Command.select(GL, "us"))
        fake_loop.advance(1.0)
        assert navigator.urls == ["https://www.google.com/?gl=US"]

    def test_clear_region_removes_parameter(self, make_session, fake_loop, navigator):
        session = make_session("https://www.google.com/search?q=foo&gl=TR")
        session.load()
        result = session.dispatch(Command.clear(GL))
        assert result.state[GL] == "auto"
        fake_loop.advance(1.0)
        assert navigator.urls == ["https://www.google.com/search?q=foo"]

    def test_clear_message(self, make_session, sink):
        session = make_session(HOME_URL)
        session.load()
        session.dispatch(Command.select(TIME, "day"))
        result = session.dispatch(Command.clear(TIME))
        assert result.message == "Time Filter cleared"

    def test_failed_navigation_releases_guard(self, make_session, fake_loop):
        broken = _BrokenNavigator()
        session = make_session(navigator=broken)
        session.load()
        session.dispatch(Command.select(SITE, "github"))
        fake_loop.advance(1.0)
        assert broken.attempts == 1
        assert session.guard.pending is None
        assert session.dispatch(Command.select(SITE, "reddit")).navigation is not None

    def test_without_event_loop_navigates_immediately(self, make_session, navigator):
        session = make_session(loop=None)
        session.load()
        result = session.dispatch(Command.select(SITE, "reddit"))
        assert result.ok
        assert result.message == "Reddit selected"
        assert navigator.urls == ["https://www.google.com/search?q=foo+site%3Areddit.com"]
        assert result.navigation.committed_to == navigator.urls[0]
        assert session.guard.pending is None

    def test_without_event_loop_failed_navigation_frees_slot(self, make_session):
        broken = _BrokenNavigator()
        session = make_session(loop=None, navigator=broken)
        session.load()
        assert session.dispatch(Command.select(SITE, "github")).ok
        assert session.guard.pending is None
        second = session.dispatch(Command.select(SITE, "reddit"))
        assert second.ok
        assert second.navigation is not None
        assert broken.attempts == 2


class TestClearAll:
    def test_noop_when_nothing_active(self, make_session, navigator, sink):
        session = make_session()
        session.load()
        result = session.dispatch(Command.clear_all())
        assert result.ok
        assert result.navigation is None
        assert sink.notices == []

    def test_resets_and_applies(self, make_session, fake_loop, navigator):
        session = make_session("https://www.google.com/search?q=foo+site%3Agithub.com&tbs=qdr%3Ad&hl=en")
        session.load()
        result = session.dispatch(Command.clear_all())
        assert result.message == "All filters cleared"
        assert not session.manager.has_active_filters()
        fake_loop.advance(1.0)
        assert navigator.urls == ["https://www.google.com/search?q=foo"]


# ── Settings ────────────────────────────────────────────────────


class TestSettings:
    def test_persistence_toggle(self, make_session, backend, navigator):
        session = make_session()
        session.load()
        session.dispatch(Command.select(SITE, "reddit"))
        result = session.dispatch(Command.persistence(SITE, True))
        assert result.message == "Site Filter persistence enabled"
        assert backend.get_item("googleSearchSite") == "reddit"
        assert session.guard.pending is not None

        result = session.dispatch(Command.persistence(SITE, False))
        assert result.message == "Site Filter persistence disabled"
        assert backend.get_item("googleSearchSite") is None
        assert result.state[SITE] == "reddit"

    def test_auto_open(self, make_session, backend):
        session = make_session(HOME_URL)
        result = session.dispatch(Command.auto_open(False))
        assert result.message == "Auto-open panel disabled"
        assert backend.get_item("googleSearchAutoOpen") == "false"
        assert not session.manager.auto_open


# ── Custom sites ────────────────────────────────────────────────


class TestCustomSiteCommands:
    def test_add(self, make_session, backend, sink):
        session = make_session(HOME_URL)
        result = session.dispatch(Command.add_site("Example", "https://example.com/docs"))
        assert result.ok
        assert result.message == "Example added successfully"
        assert session.catalog.contains(SITE, "example_com")
        stored = json.loads(backend.get_item("googleSearchCustomSites"))
        assert stored["example_com"]["query"] == "site:example.com"

    def test_added_site_is_selectable(self, make_session, fake_loop, navigator):
        session = make_session()
        session.load()
        session.dispatch(Command.add_site("Example", "example.com"))
        session.dispatch(Command.select(SITE, "example_com"))
        fake_loop.advance(1.0)
        assert navigator.urls == ["https://www.google.com/search?q=foo+site%3Aexample.com"]

    def test_invalid_input(self, make_session, sink):
        session = make_session(HOME_URL)
        result = session.dispatch(Command.add_site("x" * 25, "example.com"))
        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert result.message == "Site name too long"
        assert sink.messages[-1] == "Site name too long"
        assert session.catalog.custom_count == 0

    def test_duplicate(self, make_session):
        session = make_session(HOME_URL)
        session.dispatch(Command.add_site("Example", "example.com"))
        result = session.dispatch(Command.add_site("Again", "example.com"))
        assert result.message == "Site already exists"

    def test_capacity_checked_first(self, make_session):
        session = make_session(HOME_URL, config=EngineConfig(max_custom_sites=1))
        assert session.dispatch(Command.add_site("One", "one.com")).ok
        result = session.dispatch(Command.add_site("", ""))
        assert isinstance(result.error, CapacityError)
        assert result.message == "Maximum number of custom sites reached"

    def test_remove(self, make_session, backend):
        session = make_session(HOME_URL)
        session.dispatch(Command.add_site("Example", "example.com"))
        result = session.dispatch(Command.remove_site("example_com"))
        assert result.message == "Site removed successfully"
        assert not session.catalog.contains(SITE, "example_com")
        assert json.loads(backend.get_item("googleSearchCustomSites")) == {}

    def test_removing_active_site_resets_selection(self, make_session, backend):
        session = make_session(HOME_URL)
        session.load()
        session.dispatch(Command.persistence(SITE, True))
        session.dispatch(Command.add_site("Example", "example.com"))
        session.dispatch(Command.select(SITE, "example_com"))
        result = session.dispatch(Command.remove_site("example_com"))
        assert result.state[SITE] == "all"
        assert backend.get_item("googleSearchSite") == "all"

    def test_remove_builtin(self, make_session):
        result = make_session(HOME_URL).dispatch(Command.remove_site("reddit"))
        assert isinstance(result.error, BuiltinSiteError)
        assert result.message == "Cannot remove default sites"

    def test_save_failure_keeps_site_in_memory(self, make_session, sink):
        session = make_session(HOME_URL, backend=InMemoryBackend(quota_bytes=0))
        result = session.dispatch(Command.add_site("Example", "example.com"))
        assert result.ok
        assert session.catalog.contains(SITE, "example_com")
        assert "Error saving custom sites" in sink.messages


# ── Robustness and teardown ─────────────────────────────────────


class TestRobustness:
    def test_malformed_command_does_not_raise(self, make_session):
        result = make_session(HOME_URL).dispatch(Command(CommandAction.SELECT))
        assert not result.ok
        assert result.message == "Something went wrong"

    def test_store_quota_degrades_to_memory(self, make_session, sink):
        session = make_session(HOME_URL, backend=InMemoryBackend(quota_bytes=0))
        session.load()
        result = session.dispatch(Command.select(LANG, "tr"))
        assert result.ok
        assert result.state[LANG] == "tr"
        assert isinstance(result.error, StorageError)
        assert "Error saving settings" in sink.messages
        assert sink.messages[-1] == "Turkish Only selected"

    def test_unflagged_selection_has_nothing_to_save(self, make_session, sink):
        session = make_session(HOME_URL, backend=InMemoryBackend(quota_bytes=0))
        session.load()
        result = session.dispatch(Command.select(TIME, "week"))
        assert result.error is None
        assert "Error saving settings" not in sink.messages

    @pytest.mark.parametrize(
        "command",
        [Command.persistence(SITE, True), Command.auto_open(False)],
        ids=["persistence", "auto_open"],
    )
    def test_settings_write_failure_reported(self, make_session, sink, command):
        session = make_session(HOME_URL, backend=InMemoryBackend(quota_bytes=0))
        session.load()
        result = session.dispatch(command)
        assert result.ok
        assert isinstance(result.error, StorageError)
        assert "Error saving settings" in sink.messages

    def test_clear_all_write_failure_reported(self, make_session, sink):
        backend = _DiskFullBackend()
        session = make_session(HOME_URL, backend=backend)
        session.load()
        session.dispatch(Command.select(LANG, "tr"))
        backend.full = True
        result = session.dispatch(Command.clear_all())
        assert result.state[LANG] == "all"
        assert isinstance(result.error, StorageError)
        assert "Error saving settings" in sink.messages

    def test_augment_submission(self, make_session):
        session = make_session(HOME_URL)
        session.load()
        session.dispatch(Command.select(SITE, "github"))
        assert session.augment_submission({"q": "rust"}) == {"q": "rust site:github.com"}


class TestTeardown:
    def test_cancels_pending_navigation(self, make_session, fake_loop, navigator):
        session = make_session()
        session.load()
        session.dispatch(Command.select(SITE, "reddit"))
        assert session.teardown() == 1
        fake_loop.advance(5.0)
        assert navigator.urls == []
        assert session.guard.pending is None

    def test_cancels_debounced_handler(self, make_session, fake_loop):
        calls = []
        session = make_session(HOME_URL)
        debounced = session.debounce(calls.append)
        debounced("resize")
        session.teardown()
        fake_loop.advance(1.0)
        assert calls == []

    def test_debounce_uses_configured_delay(self, make_session, fake_loop):
        calls = []
        session = make_session(HOME_URL, config=EngineConfig(debounce_delay=0.5))
        debounced = session.debounce(calls.append)
        debounced("scroll")
        fake_loop.advance(0.4)
        assert calls == []
        fake_loop.advance(0.2)
        assert calls == ["scroll"]

    def test_no_navigation_scheduled_after_teardown(self, make_session, fake_loop, navigator):
        session = make_session()
        session.load()
        session.teardown()
        result = session.dispatch(Command.select(SITE, "reddit"))
        assert result.ok
        assert result.navigation is None
        assert session.guard.pending is None
