"""Tests for history_manager module."""
import threading

import pytest

from api_client import MalformedResponseError, UnauthenticatedError
from conftest import FakeResponse
from history_manager import HistoryError, HistoryManager, HistoryPage


def _entry(i):
    return {
        "id": f"run-{i}",
        "projectName": f"Project {i}",
        "totalCost": 8.0 * i,
        "createdAt": f"2026-10-{i:02d}T12:00:00Z",
    }


def _full_entry():
    return {
        "id": "run-9",
        "projectName": "Bookshelf",
        "cuts": [{"width": 1, "height": 10, "length": 36, "quantity": 4}],
        "boards": [{"width": 1, "height": 10, "length": 96, "price": 22.5}],
        "solution": {
            "board_plan": {"0": 2},
            "cut_plan": {"0": [[36, 36], [36, 36]]},
            "waste_summary": {"0": 48},
            "total_cost": 45,
        },
        "totalCost": 45,
        "createdAt": "2026-10-09T12:00:00Z",
    }


class TestPage:

    @pytest.mark.parametrize("total,expected", [(0, 1), (1, 1), (10, 1), (11, 2), (25, 3)])
    def test_page_count(self, total, expected):
        assert HistoryPage(total=total, page_size=10).page_count == expected

    def test_bounds(self):
        page = HistoryPage(total=25, page=1)
        assert not page.has_previous and page.has_next
        last = HistoryPage(total=25, page=3)
        assert last.has_previous and not last.has_next


class TestHistoryManager:

    def test_requires_authentication(self, api, session_manager, http):
        manager = HistoryManager(api, session_manager)
        with pytest.raises(UnauthenticatedError):
            manager.list(1)
        with pytest.raises(UnauthenticatedError):
            manager.load_one("x")
        with pytest.raises(UnauthenticatedError):
            manager.delete_one("x")
        assert http.calls == []

    def test_list_keeps_server_order(self, api, http, logged_in):
        rows = [_entry(3), _entry(2), _entry(1)]
        http.add("GET", "/optimizations", FakeResponse(200, {"optimizations": rows, "total": 13}))
        page = HistoryManager(api, logged_in).list(2)
        assert [e.id for e in page.entries] == ["run-3", "run-2", "run-1"]
        assert page.total == 13
        assert page.page_count == 2
        call = http.calls_to("GET", "/optimizations")[0]
        assert call["params"] == {"page": 2, "limit": 10}
        assert call["headers"]["Authorization"] == "Bearer tok-123"

    def test_page_below_one_is_clamped(self, api, http, logged_in):
        http.add("GET", "/optimizations", FakeResponse(200, {"optimizations": [], "total": 0}))
        page = HistoryManager(api, logged_in).list(0)
        assert page.page == 1

    def test_load_one(self, api, http, logged_in):
        http.add("GET", "/optimizations/run-9", FakeResponse(200, _full_entry()))
        entry = HistoryManager(api, logged_in).load_one("run-9")
        assert entry.project_name == "Bookshelf"
        assert entry.boards[0].price == 22.5
        assert entry.solution.board_plan == {0: 2}
        problem = entry.to_problem()
        problem.update_cut(0, "length", "1")
        assert entry.cuts[0].length == 36

    def test_delete_relists_current_page(self, api, http, logged_in):
        listings = [
            FakeResponse(200, {"optimizations": [_entry(i) for i in (12, 11)], "total": 12}),
            FakeResponse(200, {"optimizations": [_entry(12)], "total": 11}),
        ]
        http.add("GET", "/optimizations", lambda call: listings.pop(0))
        http.add("DELETE", "/optimizations/run-11", FakeResponse(200, {"deleted": True}))
        manager = HistoryManager(api, logged_in)
        manager.list(2)
        page = manager.delete_one("run-11")
        assert [e.id for e in page.entries] == ["run-12"]
        assert http.calls_to("GET", "/optimizations")[-1]["params"]["page"] == 2

    def test_delete_last_entry_on_page_steps_back(self, api, http, logged_in):
        listings = [
            FakeResponse(200, {"optimizations": [_entry(11)], "total": 11}),
            FakeResponse(200, {"optimizations": [], "total": 10}),
            FakeResponse(200, {"optimizations": [_entry(i) for i in range(10, 0, -1)], "total": 10}),
        ]
        http.add("GET", "/optimizations", lambda call: listings.pop(0))
        http.add("DELETE", "/optimizations/run-11", FakeResponse(204))
        manager = HistoryManager(api, logged_in)
        manager.list(2)
        page = manager.delete_one("run-11")
        assert page.page == 1
        assert "run-11" not in [e.id for e in page.entries]
        assert manager.current_page is page

    def test_invalid_total_cost_is_malformed(self, api, http, logged_in):
        http.add("GET", "/optimizations", FakeResponse(
            200, {"optimizations": [{"id": "a1", "totalCost": "n/a"}], "total": 1}
        ))
        manager = HistoryManager(api, logged_in)
        with pytest.raises(MalformedResponseError, match="a1"):
            manager.list(1)
        assert manager.current_page is None

    def test_listing_without_row_list_is_malformed(self, api, http, logged_in):
        http.add("GET", "/optimizations", FakeResponse(200, {"optimizations": 3, "total": 1}))
        with pytest.raises(MalformedResponseError):
            HistoryManager(api, logged_in).list(1)

    def test_entry_with_bad_cuts_is_malformed(self, api, http, logged_in):
        stored = dict(_full_entry(), cuts=5)
        http.add("GET", "/optimizations/run-9", FakeResponse(200, stored))
        with pytest.raises(MalformedResponseError, match="run-9"):
            HistoryManager(api, logged_in).load_one("run-9")

    def test_server_error_becomes_history_error(self, api, http, logged_in):
        http.add("DELETE", "/optimizations/x", FakeResponse(404, {"error": "Not found"}))
        with pytest.raises(HistoryError, match="Not found"):
            HistoryManager(api, logged_in).delete_one("x")

    def test_stale_page_response_is_dropped(self, api, http, logged_in):
        """A slow page-1 response must not replace a newer page-2 listing."""
        slow_started = threading.Event()
        release_slow = threading.Event()

        def respond(call):
            if call["params"]["page"] == 1:
                slow_started.set()
                release_slow.wait(5)
                return FakeResponse(200, {"optimizations": [_entry(1)], "total": 20})
            return FakeResponse(200, {"optimizations": [_entry(2)], "total": 20})

        http.add("GET", "/optimizations", respond)
        manager = HistoryManager(api, logged_in)
        results = []
        slow = threading.Thread(target=lambda: results.append(manager.list(1)))
        slow.start()
        assert slow_started.wait(5)
        newer = manager.list(2)
        release_slow.set()
        slow.join(5)

        assert results == [None]
        assert manager.current_page is newer
        assert manager.current_page.page == 2

    def test_close_clears_page(self, api, http, logged_in):
        http.add("GET", "/optimizations", FakeResponse(200, {"optimizations": [], "total": 0}))
        manager = HistoryManager(api, logged_in)
        manager.list(1)
        manager.close()
        assert manager.current_page is None
