"""延迟工具测试"""

from adharvest.common.utils.delay import backoff_delay, get_random_delay, uniform_between


def test_random_delay_range():
    delays = [get_random_delay(1.0, 0.5) for _ in range(50)]
    assert all(1.0 <= d <= 1.5 for d in delays)


def test_uniform_between_accepts_reversed_bounds():
    delays = [uniform_between(3, 1) for _ in range(50)]
    assert all(1 <= d <= 3 for d in delays)
    assert uniform_between(2, 2) == 2


def test_backoff_delay_grows():
    assert backoff_delay(1.0, 2.0, 1) == 1.0
    assert backoff_delay(1.0, 2.0, 3) == 4.0
    assert 4.0 <= backoff_delay(1.0, 2.0, 3, jitter=0.5) <= 4.5
