from broadcast_dialer.services.dialer_service import TokenBucket


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_bucket_starts_full_and_never_exceeds_capacity():
    clock = FakeClock()
    bucket = TokenBucket(60, clock=clock)
    assert bucket.take(100) == 60
    assert bucket.take(1) == 0

    clock.now += 600
    assert bucket.take(1000) == 60


def test_bucket_refills_at_calls_per_minute():
    clock = FakeClock()
    bucket = TokenBucket(30, clock=clock)
    bucket.take(30)

    granted = 0
    for _ in range(60):
        clock.now += 1
        granted += bucket.take(10)
    assert granted == 30


def test_give_back_is_capped():
    clock = FakeClock()
    bucket = TokenBucket(10, clock=clock)
    assert bucket.take(4) == 4
    bucket.give_back(10)
    assert bucket.take(100) == 10


def test_lowering_rate_clamps_tokens():
    clock = FakeClock()
    bucket = TokenBucket(60, clock=clock)
    bucket.set_rate(30)
    assert bucket.take(100) == 30
    clock.now += 2
    assert bucket.take(100) == 1
