import threading
from shortlinks.services.rate_limiter import SlidingWindowRateLimiter

class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

def test_admits_up_to_limit_then_rejects():
    limiter = SlidingWindowRateLimiter(3, 60, clock=FakeClock())
    assert [limiter.allow("a") for _ in range(4)] == [True, True, True, False]

def test_keys_are_independent():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")

def test_window_slides():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    assert limiter.allow("a")
    clock.now += 30
    assert limiter.allow("a")
    assert not limiter.allow("a")

    # first hit leaves the window, second is still inside it
    clock.now += 30
    assert limiter.allow("a")
    assert not limiter.allow("a")

def test_rejections_are_not_recorded():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(1, 10, clock=clock)
    assert limiter.allow("a")
    for _ in range(5):
        clock.now += 1
        assert not limiter.allow("a")

    clock.now = 1010.0
    assert limiter.allow("a")

def test_reset():
    limiter = SlidingWindowRateLimiter(1, 60, clock=FakeClock())
    assert limiter.allow("a")
    limiter.reset("a")
    assert limiter.allow("a")

def test_concurrent_callers_never_exceed_limit():
    limiter = SlidingWindowRateLimiter(50, 60)
    admitted = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            if limiter.allow("shared"):
                with lock:
                    admitted.append(1)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(admitted) == 50

def test_idle_keys_are_evicted():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(5, 60, clock=clock)
    for i in range(1000):
        assert limiter.allow(f"10.0.{i // 256}.{i % 256}")
    assert len(limiter) == 1000

    clock.now += 3600
    assert limiter.allow("late")
    assert len(limiter) == 1

def test_sweep_keeps_keys_active_in_the_window():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)
    assert limiter.allow("idle")
    clock.now += 30
    assert limiter.allow("busy")
    assert limiter.allow("busy")

    clock.now += 30
    # the sweep drops "idle" but "busy" still holds both hits at t+30
    assert limiter.allow("other")
    assert len(limiter) == 2
    assert not limiter.allow("busy")
