from evsecore.heartbeat import DEFAULT_HEARTBEAT_INTERVAL, HeartbeatService


class FakeClock:
    def __init__(self) -> None:
        self.now = 0

    def __call__(self) -> int:
        return self.now


def make_service(interval=None):
    clock = FakeClock()
    sent = []
    if interval is None:
        service = HeartbeatService(sent.append, clock)
    else:
        service = HeartbeatService(sent.append, clock, interval)
    return service, clock, sent


def test_default_interval_is_one_day():
    service, clock, sent = make_service()
    assert service.interval == DEFAULT_HEARTBEAT_INTERVAL == 86400
    clock.now = 86400 * 1000 - 1
    assert service.loop() is False
    assert sent == []
    clock.now = 86400 * 1000
    assert service.loop() is True
    assert sent == ["Heartbeat"]


def test_not_sent_before_interval():
    service, clock, sent = make_service(interval=10)
    clock.now = 9_999
    assert service.loop() is False
    assert sent == []


def test_sent_once_per_interval():
    service, clock, sent = make_service(interval=10)
    clock.now = 10_000
    assert service.loop() is True
    assert service.loop() is False
    clock.now = 19_999
    assert service.loop() is False
    clock.now = 20_000
    assert service.loop() is True
    assert sent == ["Heartbeat", "Heartbeat"]


def test_interval_change_takes_effect():
    service, clock, sent = make_service(interval=100)
    service.interval = 1
    clock.now = 1_000
    assert service.loop() is True
    assert len(sent) == 1