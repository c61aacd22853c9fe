import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend import MemoryBackend
from errors import RoomFull, RoomNotFound


def test_create_room_returns_distinct_ids(memory_backend):
    room_id, host_id = memory_backend.create_room()
    assert room_id != host_id
    room = memory_backend.get_room(room_id)
    assert room.host_id == host_id
    assert room.guest_id is None


def test_create_room_regenerates_on_collision(monkeypatch, memory_backend):
    import backend

    ids = iter(["h1", "r1", "h2", "r1", "r2"])
    monkeypatch.setattr(backend, "generate_id", lambda: next(ids))
    assert memory_backend.create_room() == ("r1", "h1")
    assert memory_backend.create_room() == ("r2", "h2")


def test_join_room_fills_guest_slot_once(memory_backend):
    room_id, host_id = memory_backend.create_room()
    guest_id, returned_host = memory_backend.join_room(room_id)
    assert returned_host == host_id
    assert guest_id != host_id
    assert memory_backend.get_room(room_id).guest_id == guest_id

    with pytest.raises(RoomFull):
        memory_backend.join_room(room_id)
    assert memory_backend.get_room(room_id).guest_id == guest_id


def test_join_unknown_room(memory_backend):
    with pytest.raises(RoomNotFound):
        memory_backend.join_room("missing")


def test_concurrent_joins_admit_exactly_one(memory_backend):
    room_id, _ = memory_backend.create_room()
    attempts = 32
    barrier = threading.Barrier(attempts)

    def attempt():
        barrier.wait()
        try:
            memory_backend.join_room(room_id)
            return "joined"
        except RoomFull:
            return "full"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        results = list(pool.map(lambda _: attempt(), range(attempts)))

    assert results.count("joined") == 1
    assert results.count("full") == attempts - 1


def test_poll_returns_only_signals_for_peer_after_watermark(memory_backend, clock):
    room_id, host_id = memory_backend.create_room()
    guest_id, _ = memory_backend.join_room(room_id)

    offer_ts = memory_backend.post_signal(room_id, guest_id, host_id, "offer", {"sdp": "v=0"})
    clock.advance(1)
    answer_ts = memory_backend.post_signal(room_id, host_id, guest_id, "answer", {"sdp": "v=0"})
    clock.advance(1)
    ice_ts = memory_backend.post_signal(room_id, guest_id, host_id, "ice", {"candidate": "c1"})

    to_host = memory_backend.poll_signals(room_id, host_id, 0)
    assert [s.timestamp for s in to_host] == [offer_ts, ice_ts]
    assert all(s.to_peer == host_id for s in to_host)

    assert [s.timestamp for s in memory_backend.poll_signals(room_id, host_id, offer_ts)] == [ice_ts]
    assert [s.type for s in memory_backend.poll_signals(room_id, guest_id, 0)] == ["answer"]
    assert memory_backend.poll_signals(room_id, guest_id, answer_ts) == []


def test_timestamps_strictly_increase_within_room(memory_backend):
    room_id, host_id = memory_backend.create_room()
    # Clock does not move between posts
    stamps = [memory_backend.post_signal(room_id, host_id, "g", "ice", i) for i in range(5)]
    assert stamps == sorted(set(stamps))
    assert len(stamps) == 5


def test_post_signal_unknown_room(memory_backend):
    with pytest.raises(RoomNotFound):
        memory_backend.post_signal("missing", "a", "b", "offer", {})


def test_poll_unknown_room_or_missing_peer_is_empty(memory_backend):
    assert memory_backend.poll_signals("missing", "peer", 0) == []
    room_id, host_id = memory_backend.create_room()
    memory_backend.post_signal(room_id, "g", host_id, "offer", {})
    assert memory_backend.poll_signals(room_id, None, 0) == []


def test_poll_is_idempotent_without_new_posts(memory_backend):
    room_id, host_id = memory_backend.create_room()
    ts = memory_backend.post_signal(room_id, "g", host_id, "offer", {})
    assert memory_backend.poll_signals(room_id, host_id, ts) == []
    assert memory_backend.poll_signals(room_id, host_id, ts) == []


def test_signals_expire_after_retention_window(memory_backend, clock):
    room_id, host_id = memory_backend.create_room()
    memory_backend.post_signal(room_id, "g", host_id, "offer", {"n": 1})
    clock.advance(121)

    # Expired at poll time even though nothing was written since
    assert memory_backend.poll_signals(room_id, host_id, 0) == []

    ts = memory_backend.post_signal(room_id, "g", host_id, "ice", {"n": 2})
    remaining = memory_backend.poll_signals(room_id, host_id, 0)
    assert [s.timestamp for s in remaining] == [ts]


def test_signal_inside_retention_window_survives(memory_backend, clock):
    room_id, host_id = memory_backend.create_room()
    ts = memory_backend.post_signal(room_id, "g", host_id, "offer", {})
    clock.advance(119)
    assert [s.timestamp for s in memory_backend.poll_signals(room_id, host_id, 0)] == [ts]


def test_concurrent_posts_are_not_lost(memory_backend):
    room_id, host_id = memory_backend.create_room()
    posts = 200

    with ThreadPoolExecutor(max_workers=16) as pool:
        stamps = list(pool.map(
            lambda i: memory_backend.post_signal(room_id, "g", host_id, "ice", {"i": i}),
            range(posts),
        ))

    delivered = memory_backend.poll_signals(room_id, host_id, 0)
    assert len(delivered) == posts
    assert len(set(stamps)) == posts
    assert sorted(s.data["i"] for s in delivered) == list(range(posts))


def test_delete_room_drops_queue(memory_backend):
    room_id, host_id = memory_backend.create_room()
    memory_backend.post_signal(room_id, "g", host_id, "offer", {})
    memory_backend.delete_room(room_id)

    assert memory_backend.get_room(room_id) is None
    assert memory_backend.poll_signals(room_id, host_id, 0) == []
    with pytest.raises(RoomNotFound):
        memory_backend.delete_room(room_id)


def test_sweep_removes_only_idle_rooms(memory_backend, clock):
    idle_room, _ = memory_backend.create_room()
    clock.advance(3000)
    busy_room, busy_host = memory_backend.create_room()
    clock.advance(700)
    memory_backend.post_signal(busy_room, "g", busy_host, "offer", {})

    assert memory_backend.sweep_idle_rooms() == 1
    assert memory_backend.get_room(idle_room) is None
    assert memory_backend.get_room(busy_room) is not None


def test_close_drops_all_rooms(clock):
    backend = MemoryBackend(clock=clock)
    backend.create_room()
    backend.create_room()
    assert backend.room_count() == 2
    backend.close()
    assert backend.room_count() == 0
