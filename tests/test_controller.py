import pytest

from config import PERIPHERAL_BOOT_DELAY, STATUS_LOST
from conftest import wait_until


@pytest.fixture
def five(controller, tracks):
    controller.add_tracks(tracks("a.mp3", "b.mp3", "c.mp3", "d.mp3", "e.mp3"))
    return controller


@pytest.fixture
def online(five, factory, sleep):
    """Five tracks, connected, peripheral already at (1, 5, stopped)."""
    assert five.connect("COM3")
    factory.last.clear()
    sleep.calls.clear()
    return five


def sent(factory):
    return factory.last.sent()


# ================= CONNECT =================

def test_connect_pushes_playlist(five, factory, sleep):
    assert five.connect("COM3")
    assert sent(factory) == b"TTTT"
    assert sleep.calls[0] == pytest.approx(PERIPHERAL_BOOT_DELAY)
    assert five.engine.shadow_state == (1, 5, False)


def test_connect_reports_state(five):
    connections, statuses = [], []
    five.connection_callback = connections.append
    five.status_callback = statuses.append
    five.connect("COM3")
    assert statuses == ["Connected to COM3"]
    assert connections[-1] is True
    assert five.is_connected


def test_connect_without_port(controller, factory):
    statuses, connections = [], []
    controller.status_callback = statuses.append
    controller.connection_callback = connections.append
    assert not controller.connect("")
    assert statuses == ["No port selected"]
    assert connections == [False]
    assert factory.instances == []


def test_connect_failure(controller, factory):
    factory.error = OSError("could not open port COM9")
    statuses, connections = [], []
    controller.status_callback = statuses.append
    controller.connection_callback = connections.append
    assert not controller.connect("COM9")
    assert statuses == ["Could not open COM9. Check cable/port and retry."]
    assert connections[-1] is False


def test_connect_with_empty_playlist_sends_nothing(controller, factory):
    assert controller.connect("COM3")
    assert sent(factory) == b""
    assert controller.engine.shadow_state == (1, 1, False)


def test_disconnect_pauses_first(online, factory):
    online.play()
    factory.last.clear()
    ser = factory.last
    online.disconnect()
    assert ser.sent() == b"S"
    assert not online.playlist.is_playing
    assert not online.is_connected


# ================= DESKTOP CHANGES =================

def test_select_and_play(online, factory):
    online.select_track(2)
    online.play()
    assert sent(factory) == b"CCP"
    assert online.engine.shadow_state == (3, 5, True)


def test_next_from_last_track_uses_shortcut(online, factory):
    online.select_track(4)
    online.play()
    factory.last.clear()
    online.next_track()
    assert sent(factory) == b"N"
    assert online.engine.shadow_state == (1, 5, True)
    assert online.playlist.snapshot() == (0, 5, True)


def test_prev_from_first_track_uses_shortcut(online, factory):
    online.prev_track()
    assert sent(factory) == b"B"
    assert online.engine.shadow_state == (5, 5, False)


def test_step_falls_back_to_reconcile_when_shadow_differs(online, factory):
    online.engine.reset_shadow()
    online.next_track()
    assert sent(factory) == b"TTTTC"
    assert online.engine.shadow_state == (2, 5, False)


def test_step_racing_a_peripheral_step_stays_in_sync(online, factory, monkeypatch):
    engine = online.engine
    original = engine.request_track_change
    raced = []

    def step_after_peripheral(*args, **kwargs):
        if not raced:
            raced.append(True)
            online.on_next()
        return original(*args, **kwargs)

    monkeypatch.setattr(engine, "request_track_change", step_after_peripheral)
    online.next_track()
    index, count, playing = online.playlist.snapshot()
    assert index == 2
    assert engine.shadow_state == (index + 1, count, playing)
    assert sent(factory) == b"CC"


def test_concurrent_steps_end_on_playlist_state(online, factory):
    online.engine.transport._bytes_handler(b"NN")
    online.next_track()
    online.prev_track()
    online.engine.wait_for_intents()
    index, count, playing = online.playlist.snapshot()
    assert online.engine.shadow_state == (index + 1, count, playing)


def test_prev_after_threshold_restarts_without_bytes(online, factory, backend):
    online.select_track(1)
    online.play()
    factory.last.clear()
    backend.elapsed = 20
    online.prev_track()
    assert online.playlist.current_index == 1
    assert sent(factory) == b""


def test_removing_tracks_shrinks_counters(online, factory):
    online.select_track(3)
    online.play()
    factory.last.clear()
    online.remove_track(4)
    online.remove_track(0)
    assert sent(factory) == b"DDV"
    assert online.engine.shadow_state == (3, 3, True)


def test_clear_resets_without_walking_down(online, factory):
    online.select_track(3)
    factory.last.clear()
    online.clear_playlist()
    assert sent(factory) == b""
    assert online.engine.shadow_state == (1, 1, False)


def test_adding_tracks_grows_total(online, factory, tracks):
    online.add_tracks(tracks("f.mp3", "g.mp3"))
    assert sent(factory) == b"TT"
    assert online.engine.shadow_state == (1, 7, False)


def test_end_of_track_advances_peripheral(online, factory, backend):
    online.play()
    factory.last.clear()
    backend.busy = False
    online.tick()
    assert online.engine.shadow_state == (2, 5, True)
    assert sent(factory) == b"C"


def test_changes_while_disconnected_send_nothing(five, factory):
    five.select_track(2)
    five.play()
    five.next_track()
    assert factory.instances == []
    assert five.engine.shadow_state == (1, 1, False)


def test_lost_link_is_reported(online, factory):
    statuses, connections = [], []
    online.status_callback = statuses.append
    online.connection_callback = connections.append
    factory.last.fail_writes = True
    online.select_track(2)
    assert STATUS_LOST in statuses
    assert connections[-1] is False
    assert not online.is_connected


# ================= PERIPHERAL INTENTS =================

def test_peripheral_play(online, factory):
    factory.last.feed(b"P")
    assert wait_until(lambda: online.engine.shadow_state == (1, 5, True))
    assert online.playlist.is_playing


def test_peripheral_pause(online, factory):
    online.play()
    factory.last.feed(b"S")
    assert wait_until(lambda: online.engine.shadow_state == (1, 5, False))
    assert not online.playlist.is_playing


def test_peripheral_next_wraps(online, factory):
    online.select_track(4)
    online.play()
    factory.last.clear()
    factory.last.feed(b"N")
    assert wait_until(lambda: online.engine.shadow_state == (1, 5, True))
    assert online.playlist.current_index == 0
    online.engine.wait_for_intents()
    assert sent(factory) == b"N"


def test_peripheral_prev(online, factory):
    online.select_track(2)
    factory.last.clear()
    factory.last.feed(b"B")
    assert wait_until(lambda: online.playlist.current_index == 1)
    online.engine.wait_for_intents()
    assert sent(factory) == b"B"
    assert online.engine.shadow_state == (2, 5, False)


def test_peripheral_seek_forward_and_back(online, backend):
    online.play()
    backend.elapsed = 40
    online.engine.transport._bytes_handler(b"F")
    online.engine.wait_for_intents()
    assert backend.calls[-1] == ("play", 70)
    backend.elapsed = 0
    online.engine.transport._bytes_handler(b"R")
    online.engine.wait_for_intents()
    assert backend.calls[-1] == ("play", 40)


def test_status_request_with_matching_shadow_sends_nothing(online, factory):
    online.on_status_request()
    online.engine.wait_for_intents()
    assert sent(factory) == b""


def test_status_request_resends_after_shadow_reset(online, factory):
    online.engine.reset_shadow()
    factory.last.feed(b"Q")
    assert wait_until(lambda: online.engine.shadow_state == (1, 5, False))
    assert sent(factory) == b"TTTT"


def test_unknown_bytes_change_nothing(online, factory, log):
    factory.last.feed(b"zz")
    assert wait_until(lambda: len(log.of_type("warning")) == 2)
    assert online.playlist.snapshot() == (0, 5, False)
    assert sent(factory) == b""


# ================= VIEW CALLBACKS =================

def test_track_info_published(five):
    infos = []
    five.track_info_callback = lambda *args: infos.append(args)
    five.select_track(1)
    assert infos[-1] == ("b.mp3", 2, 5)
    five.clear_playlist()
    assert infos[-1] == ("No track loaded", 0, 0)


def test_playlist_published(controller, tracks):
    published = []
    controller.playlist_callback = lambda names, index: published.append((names, index))
    controller.add_tracks(tracks("a.mp3", "b.mp3"))
    assert published[-1] == (["a.mp3", "b.mp3"], 0)


def test_time_callback_runs_inside_seek_guard(online, backend):
    seen = []
    online.time_callback = lambda pos, dur: seen.append((pos, dur, online.seek_update_in_progress))
    online.play()
    backend.elapsed = 3
    online.tick()
    assert seen[-1] == (3, 200.0, True)
    assert not online.seek_update_in_progress


def test_seek_percent_ignored_during_view_update(online):
    online.play()
    with online.seek_view_update():
        assert not online.seek_percent(50)
    assert online.seek_percent(50)
    assert online.playlist.position == 100


def test_view_guards_nest(controller):
    with controller.seek_view_update():
        with controller.seek_view_update():
            pass
        assert controller.seek_update_in_progress
    assert not controller.seek_update_in_progress

    with controller.volume_view_update():
        with controller.volume_view_update():
            pass
        assert controller.volume_update_in_progress
        assert not controller.set_volume(10)
    assert not controller.volume_update_in_progress


def test_volume_guard(controller):
    levels = []
    controller.volume_callback = levels.append
    assert controller.set_volume(40)
    assert levels == [40]
    with controller.volume_view_update():
        assert not controller.set_volume(10)
    assert controller.playlist.volume == 40


def test_play_state_callback(online):
    states = []
    online.play_state_callback = states.append
    online.toggle_play()
    online.toggle_play()
    assert states == [True, False]


def test_callback_errors_are_logged(online, log):
    def broken(*args):
        raise RuntimeError("view gone")

    online.play_state_callback = broken
    online.play()
    assert any("view gone" in m for m in log.of_type("error"))
    assert online.playlist.is_playing


# ================= PERIODIC TASKS =================

def test_beats_while_playing(online, factory):
    online._beat_task.interval = 0.01
    online.play()
    assert wait_until(lambda: b"b" in factory.last.sent(include_beats=True))
    online.pause()
    assert not online._beat_task.running


def test_peripheral_time_updates_while_playing(online, backend):
    positions = []
    online.peripheral_time_update_callback = positions.append
    online._time_task.interval = 0.01
    online.play()
    backend.elapsed = 12
    assert wait_until(lambda: 12 in positions)
    online.pause()
    assert not online._time_task.running


def test_shutdown_closes_link(online, factory):
    ser = factory.last
    online.play()
    online.shutdown()
    assert not ser.is_open
    assert not online.playlist.is_playing
