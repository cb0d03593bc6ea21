from meet_core import Event, InProcessHub


def _event(seq, group_id="A", lift_id="squat"):
    return Event("ballot-cast", group_id, lift_id, {"attemptId": 1}, seq=seq, timestamp_ms=seq * 10)


def test_events_fan_out_to_every_subscriber_of_the_topic():
    hub = InProcessHub()
    first = hub.subscribe("A", "squat")
    second = hub.subscribe("A", "squat")
    other = hub.subscribe("B", "squat")
    hub.publish(_event(1))
    assert first.get(timeout=0).seq == 1
    assert second.get(timeout=0).seq == 1
    assert other.get(timeout=0) is None
    assert hub.subscriber_count("A", "squat") == 2


def test_slow_subscriber_misses_events_without_blocking_publisher():
    hub = InProcessHub()
    slow = hub.subscribe("A", "squat", maxsize=1)
    fast = hub.subscribe("A", "squat", maxsize=10)
    for seq in range(1, 4):
        hub.publish(_event(seq))
    assert slow.dropped == 2
    assert [e.seq for e in slow.drain()] == [1]
    assert [e.seq for e in fast.drain()] == [1, 2, 3]


def test_closed_subscription_stops_receiving():
    hub = InProcessHub()
    with hub.subscribe("A", "squat") as sub:
        hub.publish(_event(1))
    assert sub.closed
    assert hub.subscriber_count("A", "squat") == 0
    hub.publish(_event(2))
    assert [e.seq for e in sub] == [1]
    assert sub.get(timeout=0) is None


def test_event_wire_shape():
    payload = _event(5).to_dict()
    assert payload == {
        "type": "ballot-cast",
        "groupId": "A",
        "liftId": "squat",
        "seq": 5,
        "timestampMs": 50,
        "attemptId": 1,
    }
