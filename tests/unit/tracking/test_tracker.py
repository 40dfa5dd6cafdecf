"""Tests for ToolActivityTracker."""
import pytest

from convene.tracking.models import ToolStatus, TrackerEventKind
from convene.tracking.tracker import ToolActivityTracker


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


def tool_use(tool_id, name="Read", **input):
    return {"type": "tool_use", "id": tool_id, "name": name, "input": input}


def tool_result(tool_id, content="ok", is_error=False):
    return {"type": "tool_result", "tool_use_id": tool_id, "content": content, "is_error": is_error}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(clock):
    return ToolActivityTracker(clock=clock)


def record_events(tracker):
    seen = []
    tracker.events.subscribe_all(lambda kind, payload: seen.append((kind, payload)))
    return seen


def test_tool_use_creates_pending_event(tracker):
    events = record_events(tracker)

    tracker.on_assistant_content(
        [{"type": "text", "text": "let me look"}, tool_use("t1", path="a.py")], task_id="task"
    )

    active = tracker.active_tools()
    assert len(active) == 1
    assert active[0].status is ToolStatus.PENDING
    assert active[0].input == {"path": "a.py"}
    assert active[0].task_id == "task"
    assert [k for k, _ in events] == [TrackerEventKind.TOOL_INVOKED]


def test_full_lifecycle(tracker, clock):
    events = record_events(tracker)
    tracker.on_assistant_content([tool_use("t1")])
    assert tracker.mark_running("t1") is True
    clock.now += 2.5

    tracker.on_tool_result(tool_result("t1", content="file body"))

    assert tracker.active_tools() == []
    [done] = tracker.history()
    assert done.status is ToolStatus.SUCCESS
    assert done.duration == pytest.approx(2.5)
    assert done.output == "file body"
    assert done.error is None
    assert [k for k, _ in events] == [
        TrackerEventKind.TOOL_INVOKED,
        TrackerEventKind.TOOL_STARTED,
        TrackerEventKind.TOOL_COMPLETED,
        TrackerEventKind.STATISTICS_UPDATED,
    ]
    assert events[-1][1].success_count == 1


def test_error_result(tracker):
    events = record_events(tracker)
    tracker.on_assistant_content([tool_use("t1", name="Bash")])

    tracker.on_tool_result(tool_result("t1", content=[{"type": "text", "text": "exit 1"}], is_error=True))

    [done] = tracker.history()
    assert done.status is ToolStatus.ERROR
    assert done.error == "exit 1"
    assert TrackerEventKind.TOOL_ERROR in [k for k, _ in events]


def test_error_without_output_gets_message(tracker):
    tracker.on_assistant_content([tool_use("t1")])
    tracker.on_tool_result(tool_result("t1", content=None, is_error=True))
    assert tracker.history()[0].error == "tool reported an error"


def test_dict_content(tracker):
    tracker.on_assistant_content([tool_use("t1")])
    tracker.on_tool_result(tool_result("t1", content={"text": "hello"}))
    assert tracker.history()[0].output == "hello"


def test_mark_running_only_from_pending(tracker):
    tracker.on_assistant_content([tool_use("t1")])
    assert tracker.mark_running("t1") is True
    assert tracker.mark_running("t1") is False
    assert tracker.mark_running("missing") is False

    tracker.on_tool_result(tool_result("t1"))
    assert tracker.mark_running("t1") is False
    assert tracker.get_tool("t1").status is ToolStatus.SUCCESS


def test_result_for_unknown_tool_is_ignored(tracker):
    events = record_events(tracker)

    tracker.on_tool_result(tool_result("ghost"))

    assert tracker.history() == []
    [(kind, payload)] = events
    assert kind is TrackerEventKind.RECORD_IGNORED
    assert payload.tool_id == "ghost"


def test_second_result_for_same_tool_is_ignored(tracker):
    tracker.on_assistant_content([tool_use("t1")])
    tracker.on_tool_result(tool_result("t1"))
    tracker.on_tool_result(tool_result("t1", is_error=True))

    assert tracker.get_tool("t1").status is ToolStatus.SUCCESS
    assert tracker.statistics().error_count == 0


@pytest.mark.parametrize(
    "blocks",
    [
        "not a list",
        [{"type": "tool_use", "name": "Read"}],
        [{"type": "tool_use", "id": "t1"}],
        [{"type": "tool_use", "id": "", "name": "Read"}],
    ],
)
def test_malformed_tool_use_is_ignored(tracker, blocks):
    events = record_events(tracker)
    tracker.on_assistant_content(blocks)
    assert tracker.active_tools() == []
    assert events[0][0] is TrackerEventKind.RECORD_IGNORED


def test_non_tool_blocks_are_skipped_silently(tracker):
    events = record_events(tracker)
    tracker.on_assistant_content([{"type": "text", "text": "hi"}, "stray string"])
    assert events == []


def test_malformed_result_is_ignored(tracker):
    events = record_events(tracker)
    tracker.on_tool_result("not a dict")
    assert events[0][0] is TrackerEventKind.RECORD_IGNORED


def test_duplicate_tool_id_is_ignored(tracker):
    tracker.on_assistant_content([tool_use("t1", name="Read")])
    tracker.on_assistant_content([tool_use("t1", name="Write")])
    assert [t.tool_name for t in tracker.active_tools()] == ["Read"]

    tracker.on_tool_result(tool_result("t1"))
    tracker.on_assistant_content([tool_use("t1", name="Write")])
    assert tracker.active_tools() == []
    assert tracker.statistics().total_invocations == 1


def test_abandon_fails_unfinished_tools_of_one_task(tracker, clock):
    tracker.on_assistant_content([tool_use("a"), tool_use("b", "Bash")], task_id="dead")
    tracker.on_assistant_content([tool_use("c")], task_id="alive")
    tracker.mark_running("b")
    events = record_events(tracker)
    clock.now += 4.0

    assert tracker.abandon("dead") == 2

    assert [e.tool_id for e in tracker.active_tools()] == ["c"]
    closed = tracker.history()
    assert [e.tool_id for e in closed] == ["a", "b"]
    assert all(e.status is ToolStatus.ERROR for e in closed)
    assert all(e.error == "worker exited before reporting a result" for e in closed)
    assert closed[0].duration == pytest.approx(4.0)
    assert [k for k, _ in events] == [
        TrackerEventKind.TOOL_ERROR,
        TrackerEventKind.TOOL_ERROR,
        TrackerEventKind.STATISTICS_UPDATED,
    ]
    stats = events[-1][1]
    assert stats.error_count == 2
    assert stats.active_count == 1


def test_abandon_without_unfinished_tools(tracker):
    events = record_events(tracker)
    assert tracker.abandon("nothing") == 0
    assert events == []


def test_statistics(tracker, clock):
    tracker.on_assistant_content(
        [tool_use("a", "Read"), tool_use("b", "Read"), tool_use("c", "Bash"), tool_use("d", "Edit")]
    )
    clock.now += 1.0
    tracker.on_tool_result(tool_result("a"))
    clock.now += 2.0
    tracker.on_tool_result(tool_result("c", is_error=True))

    stats = tracker.statistics()
    assert stats.total_invocations == 4
    assert stats.success_count == 1
    assert stats.error_count == 1
    assert stats.active_count == 2
    assert stats.average_duration == pytest.approx(2.0)
    assert stats.top_tools == (("Read", 2), ("Bash", 1), ("Edit", 1))
    assert stats.by_status == {"pending": 2, "running": 0, "success": 1, "error": 1}
    assert stats.success_rate == pytest.approx(0.5)


def test_top_tools_limited(clock):
    tracker = ToolActivityTracker(top_n=2, clock=clock)
    tracker.on_assistant_content([tool_use(str(i), f"Tool{i}") for i in range(5)])
    assert len(tracker.statistics().top_tools) == 2


def test_history_is_bounded(clock):
    tracker = ToolActivityTracker(history_size=3, clock=clock)
    for i in range(5):
        tracker.on_assistant_content([tool_use(f"t{i}")])
        tracker.on_tool_result(tool_result(f"t{i}"))

    assert [e.tool_id for e in tracker.history()] == ["t2", "t3", "t4"]
    assert tracker.statistics().success_count == 5


def test_returned_events_are_copies(tracker):
    tracker.on_assistant_content([tool_use("t1", path="a.py")])
    copy = tracker.get_tool("t1")
    copy.status = ToolStatus.ERROR
    copy.input["path"] = "changed"

    original = tracker.get_tool("t1")
    assert original.status is ToolStatus.PENDING
    assert original.input == {"path": "a.py"}


def test_tools_by_name(tracker):
    tracker.on_assistant_content([tool_use("a", "Read"), tool_use("b", "Bash"), tool_use("c", "Read")])
    tracker.on_tool_result(tool_result("a"))
    assert [e.tool_id for e in tracker.tools_by_name("Read")] == ["a", "c"]


def test_reset(tracker):
    tracker.on_assistant_content([tool_use("a")])
    tracker.on_tool_result(tool_result("a"))
    tracker.reset()
    assert tracker.history() == []
    assert tracker.statistics().total_invocations == 0


def test_broken_observer_does_not_break_tracking(tracker):
    def broken(_):
        raise RuntimeError("observer bug")

    tracker.events.subscribe(TrackerEventKind.TOOL_INVOKED, broken)
    tracker.on_assistant_content([tool_use("t1")])
    assert len(tracker.active_tools()) == 1


def test_from_config():
    from convene.config.schema import TrackerConfig

    tracker = ToolActivityTracker.from_config(TrackerConfig(history_size=10, top_tools=3))
    assert tracker.top_n == 3
