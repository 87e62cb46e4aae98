import redis

from ylportal.services.rate_limit import SlidingWindowLimiter


class FakePipeline:
    def __init__(self, store: "FakeRedis"):
        self.store = store
        self.ops = []

    def zremrangebyscore(self, key, lo, hi):
        self.ops.append(("zrem", key, lo, hi))

    def zadd(self, key, mapping):
        self.ops.append(("zadd", key, mapping))

    def zcard(self, key):
        self.ops.append(("zcard", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        out = []
        for op in self.ops:
            zset = self.store.zsets.setdefault(op[1], {})
            if op[0] == "zrem":
                doomed = [m for m, score in zset.items() if op[2] <= score <= op[3]]
                for m in doomed:
                    del zset[m]
                out.append(len(doomed))
            elif op[0] == "zadd":
                zset.update(op[2])
                out.append(len(op[2]))
            elif op[0] == "zcard":
                out.append(len(zset))
            else:
                self.store.ttl[op[1]] = op[2]
                out.append(True)
        return out


class FakeRedis:
    def __init__(self):
        self.zsets = {}
        self.ttl = {}
        self.closed = False

    def pipeline(self):
        return FakePipeline(self)

    def close(self):
        self.closed = True


class DownRedis:
    def pipeline(self):
        raise redis.ConnectionError("connection refused")

    def close(self):
        raise redis.ConnectionError("connection refused")


def test_allows_up_to_the_limit_then_blocks():
    lim = SlidingWindowLimiter(FakeRedis(), max_requests=3, window_seconds=60)

    decisions = [lim.hit("10.0.0.1", now=1000.0 + i) for i in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert decisions[-1].reset_seconds == 60
    assert decisions[-1].limit == 3


def test_window_slides():
    lim = SlidingWindowLimiter(FakeRedis(), max_requests=2, window_seconds=60)
    lim.hit("a", now=1000.0)
    lim.hit("a", now=1001.0)
    assert not lim.hit("a", now=1002.0).allowed

    later = lim.hit("a", now=1100.0)
    assert later.allowed
    assert later.remaining == 1


def test_clients_are_counted_separately():
    client = FakeRedis()
    lim = SlidingWindowLimiter(client, max_requests=1, window_seconds=60, prefix="rl")

    assert lim.hit("a", now=1.0).allowed
    assert lim.hit("b", now=1.0).allowed
    assert not lim.hit("a", now=2.0).allowed
    assert set(client.zsets) == {"rl:a", "rl:b"}
    assert client.ttl["rl:a"] == 60


def test_fails_open_when_redis_is_down(caplog):
    lim = SlidingWindowLimiter(DownRedis(), max_requests=5, window_seconds=30)

    d = lim.hit("a")

    assert d.allowed
    assert d.remaining == 5
    assert "rate limiter unavailable" in caplog.text

    lim.close()


def test_close_closes_the_client():
    client = FakeRedis()
    SlidingWindowLimiter(client, 1, 1).close()
    assert client.closed
