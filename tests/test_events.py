from events import DATA_CHANGED, EventBus


def test_publish_delivers_payload_to_subscribers() -> None:
    bus = EventBus()
    received = []
    bus.subscribe(DATA_CHANGED, received.append)
    bus.subscribe(DATA_CHANGED, received.append)

    delivered = bus.publish(DATA_CHANGED, entity="bucket", id="b1")

    assert delivered == 1
    assert received[0].name == DATA_CHANGED
    assert received[0].payload == {"entity": "bucket", "id": "b1"}


def test_failing_handler_does_not_block_others() -> None:
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(DATA_CHANGED, broken)
    bus.subscribe(DATA_CHANGED, received.append)

    assert bus.publish(DATA_CHANGED) == 1
    assert len(received) == 1


def test_unsubscribe_and_publish_without_subscribers() -> None:
    bus = EventBus()
    received = []
    bus.subscribe(DATA_CHANGED, received.append)
    bus.unsubscribe(DATA_CHANGED, received.append)

    assert bus.publish(DATA_CHANGED) == 0
    assert received == []
