"""Tests for conflict detection, severity scoring and suggestions.

Covers:
- CalendarEvent.overlaps symmetry and self-overlap
- detect_conflicts grouping, ordering, all-day exclusion
- pruned scan equivalence with an exhaustive pairwise scan
- calculate_severity rule order and monotonicity
- generate_suggestions heuristics and exact wording
"""

from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest

from jobai_calendar.calendar.conflicts import (
    calculate_severity,
    detect_conflicts,
    generate_suggestions,
)
from jobai_calendar.calendar.models import ConflictSeverity

pytestmark = pytest.mark.unit


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2025, 1, 6, hour, minute, tzinfo=UTC)


def _brute_force_groups(events):
    """Exhaustive O(n^2) reference: base -> later-sorted overlapping events."""
    timed = sorted((e for e in events if not e.is_all_day), key=lambda e: e.start_time)
    groups = []
    for i, base in enumerate(timed):
        overlapping = [other for other in timed[i + 1 :] if base.overlaps(other)]
        if overlapping:
            groups.append((base.external_id, [e.external_id for e in overlapping]))
    return groups


# ---------------------------------------------------------------------------
# Overlap predicate
# ---------------------------------------------------------------------------


class TestOverlaps:
    def test_overlap_is_symmetric(self, make_event):
        a = make_event(_at(9), _at(10))
        b = make_event(_at(9, 30), _at(10, 30))
        c = make_event(_at(10), _at(11))
        assert a.overlaps(b) and b.overlaps(a)
        assert not a.overlaps(c) and not c.overlaps(a)

    def test_event_overlaps_itself(self, make_event):
        event = make_event(_at(9), _at(9, 1))
        assert event.overlaps(event)

    def test_touching_events_do_not_overlap(self, make_event):
        a = make_event(_at(9), _at(10))
        b = make_event(_at(10), _at(11))
        assert not a.overlaps(b)


# ---------------------------------------------------------------------------
# detect_conflicts
# ---------------------------------------------------------------------------


class TestDetectConflicts:
    def test_single_group_for_overlapping_pair(self, make_event):
        e1 = make_event(_at(9), _at(10), external_id="e1")
        e2 = make_event(_at(9, 30), _at(10, 30), external_id="e2")
        e3 = make_event(_at(11), _at(12), external_id="e3")

        groups = detect_conflicts([e3, e2, e1])

        assert len(groups) == 1
        assert groups[0].base_event.external_id == "e1"
        assert [e.external_id for e in groups[0].conflicting_events] == ["e2"]

    def test_no_events_no_groups(self):
        assert detect_conflicts([]) == []

    def test_all_day_events_never_grouped(self, make_event):
        all_day = make_event(_at(0), _at(0) + timedelta(days=1), is_all_day=True)
        timed = make_event(_at(9), _at(10))
        other = make_event(_at(9, 15), _at(9, 45))

        groups = detect_conflicts([all_day, timed, other])

        ids = {g.base_event.external_id for g in groups} | {
            e.external_id for g in groups for e in g.conflicting_events
        }
        assert all_day.external_id not in ids
        assert len(groups) == 1

    def test_long_base_event_collects_every_overlap(self, make_event):
        base = make_event(_at(8), _at(17), "Offsite", external_id="base")
        inner = [
            make_event(_at(h), _at(h, 30), external_id=f"inner-{h}") for h in (9, 11, 13, 15)
        ]
        groups = detect_conflicts([base, *inner])
        assert groups[0].base_event.external_id == "base"
        assert len(groups[0].conflicting_events) == 4
        assert groups[0].severity == ConflictSeverity.HIGH

    def test_groups_in_start_order(self, make_event):
        early = [make_event(_at(9), _at(10)), make_event(_at(9, 30), _at(10))]
        late = [make_event(_at(14), _at(15)), make_event(_at(14, 30), _at(16))]
        groups = detect_conflicts([*late, *early])
        assert [g.base_event.start_time for g in groups] == [_at(9), _at(14)]

    @pytest.mark.parametrize("seed", [1, 7, 42, 2025])
    def test_pruned_scan_matches_pairwise_scan(self, make_event, seed):
        rng = random.Random(seed)
        events = []
        for _ in range(40):
            start = _at(6) + timedelta(minutes=15 * rng.randrange(0, 48))
            end = start + timedelta(minutes=15 * rng.randrange(1, 12))
            events.append(make_event(start, end, is_all_day=rng.random() < 0.1))

        groups = detect_conflicts(events)

        assert [
            (g.base_event.external_id, [e.external_id for e in g.conflicting_events])
            for g in groups
        ] == _brute_force_groups(events)


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class TestSeverity:
    def test_interview_with_one_overlap_is_high(self, make_event):
        base = make_event(_at(9), _at(10), "Onsite Interview Round 2")
        other = make_event(_at(9, 30), _at(10, 30), "Lunch")
        assert calculate_severity(base, [other]) == ConflictSeverity.HIGH

    def test_interview_in_conflicting_title_is_high(self, make_event):
        base = make_event(_at(9), _at(10), "Lunch")
        other = make_event(_at(9, 30), _at(10, 30), "phone INTERVIEW")
        assert calculate_severity(base, [other]) == ConflictSeverity.HIGH

    def test_two_conflicts_is_medium(self, make_event):
        base = make_event(_at(9), _at(10), "Lunch")
        others = [make_event(_at(9, 15), _at(9, 45)), make_event(_at(9, 30), _at(9, 50))]
        assert calculate_severity(base, others) == ConflictSeverity.MEDIUM

    def test_meeting_keyword_is_medium(self, make_event):
        base = make_event(_at(9), _at(10), "Design review")
        other = make_event(_at(9, 30), _at(10, 30), "Lunch")
        assert calculate_severity(base, [other]) == ConflictSeverity.MEDIUM

    def test_plain_pair_is_low(self, make_event):
        base = make_event(_at(9), _at(10), "Lunch")
        other = make_event(_at(9, 30), _at(10, 30), "Gym")
        assert calculate_severity(base, [other]) == ConflictSeverity.LOW

    def test_more_than_two_conflicts_is_high(self, make_event):
        base = make_event(_at(9), _at(12), "Lunch")
        others = [make_event(_at(9 + i), _at(9 + i, 30)) for i in range(3)]
        assert calculate_severity(base, others) == ConflictSeverity.HIGH

    def test_severity_never_decreases_as_conflicts_grow(self, make_event):
        base = make_event(_at(9), _at(13), "Lunch")
        pool = [make_event(_at(9 + i), _at(9 + i, 30), "Call") for i in range(4)]
        ranks = [calculate_severity(base, pool[:n]).rank for n in range(1, len(pool) + 1)]
        assert ranks == sorted(ranks)

    def test_adding_interview_never_decreases_severity(self, make_event):
        for conflicts in (1, 2, 3):
            base = make_event(_at(9), _at(13), "Lunch")
            others = [make_event(_at(9 + i), _at(9 + i, 30)) for i in range(conflicts)]
            interview = base.model_copy(update={"title": "Lunch interview"})
            before = calculate_severity(base, others)
            after = calculate_severity(interview, others)
            assert after.rank >= before.rank
            assert after == ConflictSeverity.HIGH


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------


class TestSuggestions:
    def test_shortest_event_is_named_first(self, make_event):
        base = make_event(_at(9), _at(10), "Planning")
        short = make_event(_at(9, 30), _at(9, 45), "Standup")
        suggestions = generate_suggestions(base, [short])
        assert suggestions[0] == (
            'Consider rescheduling "Standup" (15 min) as it\'s the shortest event'
        )

    def test_back_to_back_hint_for_near_single_conflict(self, make_event):
        base = make_event(_at(9), _at(10), "Planning")
        near = make_event(_at(8, 45), _at(9, 15), "Coffee")
        suggestions = generate_suggestions(base, [near])
        assert any("back-to-back" in s for s in suggestions)

    def test_no_back_to_back_hint_for_far_conflict(self, make_event):
        base = make_event(_at(9), _at(10), "Planning")
        far = make_event(_at(9, 30), _at(10, 30), "Coffee")
        assert not any("back-to-back" in s for s in generate_suggestions(base, [far]))

    def test_location_and_optional_hints(self, make_event):
        base = make_event(_at(9), _at(10), "Team meeting", location="Room A")
        other = make_event(_at(9, 30), _at(10, 30), "Weekly update", location="Zoom")

        suggestions = generate_suggestions(base, [other])

        assert suggestions[0].startswith('Consider rescheduling "Team meeting" (60 min)')
        assert any("virtual attendance" in s for s in suggestions)
        assert suggestions[-1] == (
            '"Weekly update" might be optional - consider delegating or skipping'
        )

    def test_same_location_gives_no_location_hint(self, make_event):
        base = make_event(_at(9), _at(10), "A", location="Room A")
        other = make_event(_at(9, 30), _at(10, 30), "B", location="Room A")
        assert not any("locations" in s for s in generate_suggestions(base, [other]))

    def test_detected_groups_carry_suggestions(self, make_event):
        e1 = make_event(_at(9), _at(10), "FYI: roadmap")
        e2 = make_event(_at(9, 30), _at(10, 30), "Pairing")
        (group,) = detect_conflicts([e1, e2])
        assert group.suggestions == generate_suggestions(e1, [e2])
