"""
Status Log Tests

Tests for StatusLog, its collapsed view and StatusMachine.
"""
import pytest
from unittest.mock import Mock

from airsync.models import StatusEvent
from airsync.services.status_broadcaster import StatusBroadcaster, KIND_STATUS
from airsync.services.sync.errors import InvalidTransitionError
from airsync.services.sync.status_log import StatusLog, StatusMachine, next_uid


def _errored(message):
    return {'err': {'name': 'FetchPageError', 'message': message}, 'when': 'fetching'}


class TestStatusLog:
    """Tests for StatusLog."""

    def test_newest_first(self):
        """Test events are listed newest first."""
        log = StatusLog()
        first = log.record('fetching')
        second = log.record('success', {'total_count': 1})

        assert log.current() is second
        assert [event.uid for event in log.events()] == [second.uid, first.uid]
        assert len(log) == 2

    def test_uids_strictly_increase(self):
        """Test uids are unique and increasing."""
        log = StatusLog()
        uids = [log.record('fetching').uid for _ in range(5)]

        assert uids == sorted(uids)
        assert len(set(uids)) == 5

    def test_restored_log_sets_uid_floor(self):
        """Test new uids exceed restored ones."""
        restored = [StatusEvent(uid=10_000_000, type='success', data={'total_count': 0})]
        log = StatusLog(restored)

        event = log.record('fetching')
        assert event.uid > 10_000_000

    def test_next_uid_honours_floor(self):
        """Test next_uid starts above the floor."""
        floor = next_uid() + 100
        assert next_uid(floor) == floor + 1

    def test_two_identical_errors_collapse(self):
        """Test two same-message errors fold into one."""
        log = StatusLog()
        log.record('errored', _errored('Table Widgets page 1: Failure (status 500: "boom").'))
        log.record('fetching')
        log.record('errored', _errored('Table Widgets page 1: Failure (status 500: "boom").'))

        collapsed = log.collapsed()
        assert len(collapsed) == 1
        assert collapsed[0].repeat_count == 2

    def test_three_identical_errors_collapse(self):
        """Test three same-message errors fold into one."""
        log = StatusLog()
        for _ in range(3):
            log.record('fetching')
            log.record('errored', _errored('same'))

        collapsed = log.collapsed()
        assert len(collapsed) == 1
        assert collapsed[0].repeat_count == 3

    def test_different_errors_stay_separate(self):
        """Test different messages are kept apart."""
        log = StatusLog()
        log.record('errored', _errored('first'))
        log.record('errored', _errored('second'))

        collapsed = log.collapsed()
        assert len(collapsed) == 2
        assert all(event.repeat_count is None for event in collapsed)

    def test_zero_change_successes_collapse(self):
        """Test empty successes fold into one."""
        log = StatusLog()
        log.record('success', {'total_count': 0, 'created_count': 0, 'updated_count': 0})
        log.record('idle')
        log.record('success', {'total_count': 0, 'created_count': 0, 'updated_count': 0})

        collapsed = log.collapsed()
        assert len(collapsed) == 1
        assert collapsed[0].repeat_count == 2

    def test_successes_with_changes_do_not_collapse(self):
        """Test a success with changes is kept."""
        log = StatusLog()
        log.record('success', {'total_count': 3})
        log.record('success', {'total_count': 0})

        assert len(log.collapsed()) == 2

    def test_collapsed_filters_types(self):
        """Test transient states are left out of the collapsed view."""
        log = StatusLog()
        for event_type in ('ready', 'fetching', 'ratelimited', 'parsing', 'idle'):
            log.record(event_type)
        log.record('reset')

        assert [event.type for event in log.collapsed()] == ['reset']

    def test_collapsed_does_not_mutate_log(self):
        """Test collapsing works on copies."""
        log = StatusLog()
        log.record('errored', _errored('same'))
        log.record('errored', _errored('same'))

        log.collapsed()
        log.collapsed()

        assert all(event.repeat_count is None for event in log.events())
        assert log.collapsed()[0].repeat_count == 2

    def test_record_publishes_to_broadcaster(self):
        """Test each event is published."""
        broadcaster = Mock()
        log = StatusLog(broadcaster=broadcaster)

        event = log.record('fetching')

        broadcaster.publish_status.assert_called_once_with(event)


class TestStatusMachine:
    """Tests for StatusMachine."""

    def test_full_cycle(self):
        """Test the plain cycle path."""
        machine = StatusMachine(StatusLog())

        for state in ('fetching', 'parsing', 'success', 'idle'):
            machine.transition(state)

        assert machine.state == 'idle'
        assert machine.event.type == 'idle'

    def test_rate_limited_cycle(self):
        """Test the rate limited cycle path."""
        machine = StatusMachine(StatusLog())

        for state in ('fetching', 'ratelimited', 'fetching', 'success', 'idle'):
            machine.transition(state)

        assert machine.state == 'idle'

    def test_errored_can_restart(self):
        """Test a new cycle may start after an error."""
        machine = StatusMachine(StatusLog())
        machine.transition('fetching')
        machine.transition('errored', _errored('boom'))

        machine.transition('fetching')
        assert machine.state == 'fetching'

    @pytest.mark.parametrize('path,target', [
        ((), 'parsing'),
        ((), 'success'),
        (('fetching', 'parsing'), 'fetching'),
        (('fetching', 'success'), 'fetching'),
        (('fetching', 'ratelimited'), 'parsing'),
    ])
    def test_invalid_transition(self, path, target):
        """Test unreachable targets are rejected."""
        machine = StatusMachine(StatusLog())
        for state in path:
            machine.transition(state)

        with pytest.raises(InvalidTransitionError):
            machine.transition(target)

    def test_invalid_transition_records_nothing(self):
        """Test a rejected transition leaves no event."""
        log = StatusLog()
        machine = StatusMachine(log)

        with pytest.raises(InvalidTransitionError):
            machine.transition('success')

        assert len(log) == 0
        assert machine.state == 'idle'

    def test_mark_keeps_state(self):
        """Test markers are logged without changing state."""
        log = StatusLog()
        machine = StatusMachine(log)
        machine.mark('ready')
        machine.mark('reset')

        assert machine.state == 'idle'
        assert machine.event is None
        assert [event.type for event in log.events()] == ['reset', 'ready']

    def test_subscribers_see_transitions_in_order(self):
        """Test listeners observe the state they are told about."""
        broadcaster = StatusBroadcaster()
        machine = StatusMachine(StatusLog(broadcaster=broadcaster))
        seen = []
        broadcaster.subscribe(lambda kind, payload: seen.append((kind, payload.type, machine.state)))

        machine.transition('fetching')
        machine.transition('success', {'total_count': 0})

        assert seen == [
            (KIND_STATUS, 'fetching', 'fetching'),
            (KIND_STATUS, 'success', 'success'),
        ]
