from broadcast_dialer.workers.dialer_worker import DialerWorker


class FailingPacer:
    def __init__(self):
        self.ticks = 0

    def tick(self):
        self.ticks += 1
        raise RuntimeError("database unavailable")


class CountingPacer:
    def __init__(self, worker_ref):
        self.worker_ref = worker_ref
        self.ticks = 0

    def tick(self):
        self.ticks += 1
        if self.ticks == 3:
            self.worker_ref[0].stop()
        return 2


def test_worker_gives_up_after_consecutive_errors(monkeypatch):
    monkeypatch.setattr("broadcast_dialer.workers.dialer_worker.time.sleep", lambda _s: None)
    pacer = FailingPacer()
    worker = DialerWorker(pacer, tick_seconds=0.01, max_consecutive_errors=3)

    worker.run()

    assert pacer.ticks == 3
    assert worker.calls_dispatched == 0


def test_worker_stops_on_signal(monkeypatch):
    monkeypatch.setattr("broadcast_dialer.workers.dialer_worker.time.sleep", lambda _s: None)
    ref = []
    pacer = CountingPacer(ref)
    worker = DialerWorker(pacer, tick_seconds=0.01)
    ref.append(worker)

    worker.run()

    assert pacer.ticks == 3
    assert worker.calls_dispatched == 6
