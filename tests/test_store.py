"""Tests for the gesture store: feed loop, host flow, persistence wiring."""

import json

import pytest

from conftest import make_sample
from gesture_trainer.catalog import GestureNotFoundError
from gesture_trainer.config import TrainerConfig
from gesture_trainer.filters import SignalConditioner
from gesture_trainer.matcher import Matcher
from gesture_trainer.motion import Match, MotionReading
from gesture_trainer.store import GestureStore


class ScriptedMatcher(Matcher):
    """Reports a three-tick match on every fifth reading it is fed."""

    def __init__(self, gesture_id, name):
        super().__init__(gesture_id, name)
        self.fed: list[MotionReading] = []
        self.tick = 0
        self.running = False

    def update(self, training_data, tick):
        self.tick = tick
        self.running = bool(training_data)

    def feed(self, reading):
        self.tick += 1
        self.fed.append(reading)
        if len(self.fed) % 5 == 0:
            return Match(self.tick - 2, self.tick)
        return None

    def is_running(self):
        return self.running

    def generate_block(self):
        return f"    // gesture {self.gesture_id}"

    @property
    def prototype(self):
        return None


@pytest.fixture
def scripted(outbox, scheduler):
    s = GestureStore(send=outbox, scheduler=scheduler, matcher_factory=ScriptedMatcher)
    yield s
    s.close()


def event(name, body=None):
    msg = {"type": "pxtpkgext", "event": name}
    if body is not None:
        msg["body"] = body
    return msg


def respond(store, request_id, resp=None):
    return store.receive_message({"type": "pxtpkgext", "id": request_id, "resp": resp})


def feed(store, n, value=(10, 20, 30)):
    for _ in range(n):
        store.ingest(MotionReading(*value))


class TestHostFlow:
    def test_start_sends_init(self, store, outbox):
        store.start()
        assert outbox.actions() == ["extinit"]
        assert outbox.messages[0]["extId"] == "ext-1"

    def test_init_response_requests_stream_and_code(self, store, outbox):
        rid = store.start()
        respond(store, rid)
        assert outbox.actions() == ["extinit", "extdatastream", "extreadcode"]

    def test_shown_connects_and_resets_filter(self, store, outbox):
        changes = []
        store.subscribe(lambda e: changes.append(e.data) if e.type == "connection" else None)
        old = store.conditioner

        store.receive_message(event("extshown"))

        assert store.connected
        assert store.conditioner is not old
        assert isinstance(store.conditioner, SignalConditioner)
        assert outbox.actions() == ["extdatastream", "extreadcode"]
        assert changes == [{"connected": True}]

    def test_hidden_disconnects(self, store):
        store.receive_message(event("extshown"))
        store.receive_message(event("exthidden"))
        assert not store.connected

    def test_console_data_ingested(self, store):
        store.receive_message(event("extconsole", {"sim": False, "data": "A 10 20 30"}))
        assert store.history.tick == 1
        assert store.current_orientation == MotionReading(5.0, 10.0, 15.0)
        assert store.connected

    def test_simulator_data_dropped(self, store):
        store.receive_message(event("extconsole", {"sim": True, "data": "A 10 20 30"}))
        assert store.history.tick == 0

    def test_malformed_console_data(self, store):
        store.receive_message(event("extconsole", {"data": "A 10 20"}))
        store.receive_message(event("extconsole", {"data": "hello"}))
        assert store.history.tick == 0
        assert store.metrics.frames_dropped == 1

    def test_read_code_hydrates(self, store):
        records = [
            {"id": 2, "name": "Shake", "samples": [make_sample().to_dict()]},
            {"id": 5, "name": "Tilt", "samples": []},
        ]
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"code": "", "json": json.dumps(records)})

        assert [g.id for g in store.gestures] == [2, 5]
        assert len(store.catalog.matchers) == 2
        assert store.catalog.matchers[0].is_running()
        assert not store.catalog.matchers[1].is_running()

    def test_duplicate_read_code_response_ignored(self, store):
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"json": json.dumps([{"id": 1, "name": "First"}])})
        respond(store, rid, {"json": json.dumps([{"id": 1, "name": "Second"}])})
        assert [g.name for g in store.gestures] == ["First"]

    def test_empty_read_code_keeps_catalog(self, store):
        store.add_gesture("Mine")
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"code": "", "json": ""})
        assert [g.name for g in store.gestures] == ["Mine"]

    def test_corrupt_read_code_keeps_catalog(self, store):
        store.add_gesture("Mine")
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"json": "[{\"id\": \"oops\"}]"})
        assert [g.name for g in store.gestures] == ["Mine"]

    def test_malformed_console_body_dropped(self, store):
        store.receive_message(event("extconsole", {"sim": False, "data": 5}))
        store.receive_message(event("extconsole", "A 1 2 3"))
        assert store.history.tick == 0
        assert store.metrics.frames_dropped == 2

    def test_malformed_read_code_response_keeps_catalog(self, store):
        store.add_gesture("Mine")
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"code": "", "json": 5})
        assert [g.name for g in store.gestures] == ["Mine"]

    @pytest.mark.parametrize("record", [
        {"id": 1, "name": "a", "samples": 5},
        {"id": 1, "name": "a", "samples": [{"readings": [None]}]},
        {"id": 1, "name": "a", "samples": [{"readings": [[1, 2, 3]], "start": "x"}]},
    ])
    def test_bad_stored_sample_keeps_catalog(self, store, record):
        store.add_gesture("Mine")
        rid = store.protocol.send_request("extreadcode")
        respond(store, rid, {"json": json.dumps([record])})
        assert [g.name for g in store.gestures] == ["Mine"]

    def test_closed_store_ignores_messages(self, store):
        store.close()
        assert not store.receive_message(event("extconsole", {"data": "A 1 2 3"}))
        assert store.history.tick == 0


class TestFeedLoop:
    def test_window_and_tick(self, store):
        for i in range(35):
            store.ingest(MotionReading(i, i, i))
        assert store.history.tick == 35
        assert len(store.history) == 30

    def test_matches_recorded(self, scripted):
        g = scripted.add_gesture()
        scripted.add_sample(g, make_sample())
        feed(scripted, 10)

        assert scripted.matches.matches == [Match(3, 5), Match(8, 10)]
        assert scripted.is_match(2)
        assert not scripted.is_match(1)
        assert not scripted.is_match(5)
        assert scripted.is_match(9)
        assert scripted.metrics.match_counts == {"1": 2}

    def test_matcher_fed_conditioned_reading(self, scripted):
        g = scripted.add_gesture()
        scripted.add_sample(g, make_sample())
        scripted.ingest(MotionReading(10, 20, 30))
        assert scripted.catalog.current_matcher.fed == [MotionReading(5.0, 10.0, 15.0)]

    def test_idle_matcher_not_fed(self, scripted):
        scripted.add_gesture()
        feed(scripted, 5)
        assert scripted.catalog.current_matcher.fed == []
        assert len(scripted.matches) == 0

    def test_only_current_matcher_fed(self, scripted):
        g1 = scripted.add_gesture()
        scripted.add_sample(g1, make_sample())
        g2 = scripted.add_gesture()
        scripted.add_sample(g2, make_sample())
        feed(scripted, 3)

        assert scripted.catalog.matcher_for(g1.id).fed == []
        assert len(scripted.catalog.matcher_for(g2.id).fed) == 3

    def test_no_current_gesture(self, scripted):
        g = scripted.add_gesture()
        scripted.add_sample(g, make_sample())
        scripted.delete_gesture(g)
        assert scripted.ingest(MotionReading(1, 2, 3)) is None

    def test_matches_outside_window_pruned(self, scripted):
        g = scripted.add_gesture()
        scripted.add_sample(g, make_sample())
        feed(scripted, 100)

        oldest = scripted.history.oldest_tick
        assert scripted.matches.matches
        assert all(m.end_time >= oldest for m in scripted.matches.matches)
        assert len(scripted.matches) <= 30 // 5 + 1

    def test_is_match_bounds_inclusive(self, store):
        feed(store, 12)
        store.matches.record(Match(start_time=5, end_time=10))
        # offset i holds tick i + 1
        assert not store.is_match(3)
        assert store.is_match(4)
        assert store.is_match(6)
        assert store.is_match(9)
        assert not store.is_match(10)

    def test_readings_view(self, store):
        feed(store, 3)
        store.matches.record(Match(3, 3))
        flags = [matched for _, matched in store.readings()]
        assert flags == [False, False, True]

    def test_set_current_resyncs_to_live_tick(self, scripted):
        feed(scripted, 7)
        g1 = scripted.add_gesture()
        scripted.add_sample(g1, make_sample())
        scripted.add_gesture()
        feed(scripted, 3)

        scripted.set_current_gesture(g1.id)
        assert scripted.catalog.current_matcher.tick == 10

    def test_set_current_unknown(self, store):
        with pytest.raises(GestureNotFoundError):
            store.set_current_gesture(7)


class TestNotifications:
    def test_reading_and_match_events(self, scripted):
        events = []
        scripted.subscribe(lambda e: events.append(e.type))
        g = scripted.add_gesture()
        scripted.add_sample(g, make_sample())
        events.clear()

        feed(scripted, 5)
        assert events.count("reading") == 5
        assert events.count("match") == 1

    def test_catalog_events(self, store):
        events = []
        store.subscribe(lambda e: events.append(e))
        g = store.add_gesture()
        store.add_sample(g, make_sample())

        catalog_events = [e for e in events if e.type == "catalog"]
        assert len(catalog_events) == 2
        assert catalog_events[-1].data["gestures"] == store.gestures

    def test_listener_error_isolated(self, store):
        def boom(e):
            raise RuntimeError("listener failed")

        seen = []
        store.subscribe(boom)
        store.subscribe(lambda e: seen.append(e.type))
        store.ingest(MotionReading(1, 2, 3))
        assert seen == ["reading"]

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda e: seen.append(e.type))
        unsubscribe()
        unsubscribe()
        store.ingest(MotionReading(1, 2, 3))
        assert seen == []


class TestPersistence:
    def test_edit_flushes_after_delay(self, store, outbox, scheduler):
        g = store.add_gesture("Shake")
        store.add_sample(g, make_sample())
        store.add_sample(g, make_sample(seed=3))
        scheduler.advance(1.0)
        assert "extwritecode" not in outbox.actions()

        scheduler.advance(1.0)
        write = outbox.last("extwritecode")
        saved = json.loads(write["body"]["json"])
        assert saved[0]["name"] == "Shake"
        assert len(saved[0]["samples"]) == 2
        assert "gestures.register(1," in write["body"]["code"]

    def test_draft_gesture_not_flushed(self, store, outbox, scheduler):
        store.add_gesture()
        store.delete_if_empty()
        scheduler.advance(5.0)
        assert outbox.actions() == []

    def test_close_cancels_pending_flush(self, store, outbox, scheduler):
        g = store.add_gesture()
        store.add_sample(g, make_sample())
        store.close()
        scheduler.advance(10.0)
        assert "extwritecode" not in outbox.actions()

    def test_edit_after_close_not_scheduled(self, store, scheduler):
        g = store.add_gesture()
        store.close()
        store.add_sample(g, make_sample())
        assert scheduler.active == 0

    def test_write_failure_surfaces(self, store, outbox, scheduler):
        events = []
        store.subscribe(lambda e: events.append(e.type))
        g = store.add_gesture()
        store.add_sample(g, make_sample())

        scheduler.advance(2.0)
        scheduler.advance(30.0)

        assert outbox.actions().count("extwritecode") == 3
        assert store.write_failed
        assert store.persistence.dirty
        assert "write_failed" in events
        assert store.metrics.render().count("gesture_trainer_write_failures_total 1") == 1

        store.persistence.flush_now()
        respond(store, outbox.last("extwritecode")["id"])
        assert not store.write_failed
        assert "write_ok" in events


class TestConfig:
    def test_custom_history_limit(self, outbox, scheduler):
        s = GestureStore(send=outbox, scheduler=scheduler, config=TrainerConfig(history_limit=5))
        feed(s, 8)
        assert len(s.history) == 5
        assert s.history.tick == 8
