"""自适应速率控制器测试"""

import pytest

from adharvest.crawler.pacing import SUCCESS_FLOOR, AdaptiveRateController


@pytest.fixture
def controller():
    return AdaptiveRateController(delay_min=2, delay_max=2, backoff_factor=2.0, max_level=3, credit_recovery_batches=2)


class TestAdaptiveRateController:
    def test_penalty_raises_delay(self, controller):
        assert controller.get_delay() == pytest.approx(2)
        controller.apply_penalty()
        assert controller.current_level == 1
        assert controller.is_slowed
        assert controller.get_delay() == pytest.approx(4)

    def test_level_capped(self, controller):
        for _ in range(10):
            controller.apply_penalty()
        assert controller.current_level == 3

    def test_credit_recovery(self, controller):
        controller.apply_penalty()
        controller.apply_penalty()
        controller.record_success()
        assert controller.current_level == 2
        controller.record_success()
        assert controller.current_level == 1

    def test_success_discount_has_floor(self, controller):
        for _ in range(50):
            controller.record_success()
        assert controller.get_success_discount() == SUCCESS_FLOOR
        assert controller.get_delay() == pytest.approx(2 * SUCCESS_FLOOR)

    def test_penalty_resets_streak(self, controller):
        controller.record_success()
        controller.apply_penalty()
        assert controller.success_streak == 0
        assert controller.get_success_discount() == 1.0
