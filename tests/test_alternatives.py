"""Tests for the ranked alternative slot search."""

from datetime import datetime, timedelta

import pytest

from tests.conftest import (
    TUESDAY,
    WEEKDAYS,
    FixedClock,
    at,
    make_booking,
    make_employee,
    make_service,
    seed,
)
from zootel.domain.scheduling.alternatives import AlternativeSlotSearch, priority_score
from zootel.domain.scheduling.exceptions import ServiceNotFound

TEN = at(TUESDAY, 10)


@pytest.fixture(autouse=True)
def _records(base_records):
    pass


def search_with(store, now=None, **kwargs) -> AlternativeSlotSearch:
    return AlternativeSlotSearch(store, clock=FixedClock(now) if now else FixedClock(), **kwargs)


class TestPriorityScore:
    def test_same_time_and_idle_employee_scores_highest(self):
        assert priority_score(timedelta(0), 0) == pytest.approx(110.0)

    def test_one_day_away_halves_the_closeness_term(self):
        assert priority_score(timedelta(hours=24), 0) == pytest.approx(60.0)
        assert priority_score(timedelta(hours=24), 1) == pytest.approx(55.0)

    def test_closeness_beats_load(self):
        assert priority_score(timedelta(minutes=30), 5) > priority_score(timedelta(hours=24), 0)


class TestAlternativeSlotSearch:
    def test_ranked_nearest_first_and_capped(self, store, session_factory):
        seed(session_factory, make_service(start_time="09:00", end_time="17:00"), make_booking("b-1", TEN))
        results = search_with(store).search("svc-1", TEN)

        assert len(results) == 10
        priorities = [r.priority for r in results]
        assert priorities == sorted(priorities, reverse=True)
        # the booked slot itself is not offered
        assert TEN not in [r.date_time for r in results]
        assert {results[0].date_time, results[1].date_time} == {at(TUESDAY, 9, 30), at(TUESDAY, 10, 30)}
        for r in results:
            assert r.time_diff == abs(r.date_time - TEN)
            assert r.priority == pytest.approx(priority_score(r.time_diff, 0))

    def test_equal_priorities_keep_slot_order(self, store, session_factory):
        seed(session_factory, make_service(start_time="09:00", end_time="17:00"), make_booking("b-1", TEN))
        results = search_with(store).search("svc-1", TEN)
        # 09:30 and 10:30 are both 30 minutes away; the earlier one stays first
        assert results[0].date_time == at(TUESDAY, 9, 30)

    def test_deterministic(self, store, session_factory):
        seed(session_factory, make_service(start_time="09:00", end_time="12:00"), make_booking("b-1", TEN))
        search = search_with(store)
        assert search.search("svc-1", TEN) == search.search("svc-1", TEN)

    def test_parallel_dates_match_sequential(self, store, session_factory):
        seed(
            session_factory,
            make_service(start_time="09:00", end_time="11:00", assigned_employees=["emp-a", "emp-b"]),
            make_employee("emp-a"),
            make_employee("emp-b"),
            make_booking("b-1", TEN, employee_id="emp-a"),
        )
        sequential = search_with(store).search("svc-1", TEN, days_to_search=7)
        parallel = search_with(store, workers=4).search("svc-1", TEN, days_to_search=7)
        assert parallel == sequential

    def test_skips_closed_days_and_past_slots(self, store, session_factory):
        seed(session_factory, make_service(available_days=["monday", "saturday"]))
        # Monday 09:15: the 09:00 slot has already started
        results = search_with(store, now=datetime(2030, 1, 7, 9, 15)).search(
            "svc-1", datetime(2030, 1, 7, 9, 0), days_to_search=7
        )
        assert [r.date_time for r in results] == [
            datetime(2030, 1, 7, 9, 30),
            datetime(2030, 1, 12, 9, 0),
            datetime(2030, 1, 12, 9, 30),
        ]

    def test_drops_slots_beyond_advance_window(self, store, session_factory):
        seed(session_factory, make_service(advance_booking_days=2))
        results = search_with(store).search("svc-1", TEN, days_to_search=14)
        # NOW is Monday 08:00, so nothing after Wednesday 08:00
        assert results
        assert max(r.date_time for r in results) <= datetime(2030, 1, 9, 8, 0)

    def test_employee_load_breaks_ties(self, store, session_factory):
        seed(
            session_factory,
            make_service(max_bookings_per_slot=2, assigned_employees=["emp-a"]),
            make_employee("emp-a"),
            make_booking("b-1", at(TUESDAY, 9, 30), service_id="svc-2", employee_id="emp-a"),
        )
        results = search_with(store).search("svc-1", at(TUESDAY, 9, 15), days_to_search=1)
        by_time = {r.date_time: r for r in results}
        # both slots are 15 minutes away; emp-a is busier at 09:30
        assert by_time[at(TUESDAY, 9)].priority > by_time[at(TUESDAY, 9, 30)].priority
        assert results[0].date_time == at(TUESDAY, 9)
        assert results[0].employee_id == "emp-a"
        assert results[0].employee_name == "A Walker"

    def test_no_available_employee_means_no_slot(self, store, session_factory):
        seed(
            session_factory,
            make_service(assigned_employees=["emp-a"]),
            make_employee("emp-a", work_schedule={day: "off" for day in WEEKDAYS}),
        )
        assert search_with(store).search("svc-1", TEN) == []

    def test_unknown_service(self, store):
        with pytest.raises(ServiceNotFound):
            search_with(store).search("svc-nope", TEN)


class TestAlternativesThroughService:
    def test_get_alternatives_honours_days(self, booking_service, session_factory):
        seed(session_factory, make_service())
        results = booking_service.get_alternatives("svc-1", TEN, days_to_search=1)
        assert {r.date_time.date() for r in results} == {TUESDAY.date()}
