"""Tests for rate strategies and index accrual."""

import copy
from decimal import Decimal

import pytest

from lendingpool.config.schema import AssetParams, DynamicInterestRate
from lendingpool.engine.fixed_point import ONE, ZERO
from lendingpool.engine.interest import (
    InterestRateEngine,
    dynamic_borrow_rate,
    get_liquidity_rate,
    linear_borrow_rate,
    rate_curve,
)
from lendingpool.engine.state import Asset

from conftest import (
    ALICE,
    BOB,
    COLLATERAL,
    DEBT,
    OWNER,
    T0,
    YEAR,
    asset_params,
    env,
    info,
    linear_strategy,
)

DYNAMIC = "uosmo"  # controller-driven rates
FLAT = "uion"


def dynamic_strategy(kp_augmentation_threshold="0.2") -> DynamicInterestRate:
    return DynamicInterestRate(
        min_borrow_rate=Decimal("0.05"),
        max_borrow_rate=Decimal("1"),
        kp_1=Decimal("0.5"),
        optimal_utilization_rate=Decimal("0.8"),
        kp_augmentation_threshold=Decimal(kp_augmentation_threshold),
        kp_2=Decimal("2"),
    )


class TestLinearStrategy:
    """Kinked curve: slope_1 up to the optimum, slope_2 beyond."""

    def test_zero_utilization_gives_base(self):
        strategy = linear_strategy(base="0.02")
        assert linear_borrow_rate(strategy, ZERO, ZERO) == Decimal("0.02")

    def test_below_kink(self):
        strategy = linear_strategy(optimal="0.8", base="0", slope_1="0.08", slope_2="1")
        assert linear_borrow_rate(strategy, Decimal("0.4"), ZERO) == Decimal("0.04")

    def test_at_kink(self):
        strategy = linear_strategy(optimal="0.8", base="0.01", slope_1="0.08", slope_2="1")
        assert linear_borrow_rate(strategy, Decimal("0.8"), ZERO) == Decimal("0.09")

    def test_above_kink(self):
        strategy = linear_strategy(optimal="0.8", base="0", slope_1="0.08", slope_2="1")
        assert linear_borrow_rate(strategy, Decimal("0.9"), ZERO) == Decimal("0.58")

    def test_full_utilization(self):
        strategy = linear_strategy(optimal="0.8", base="0", slope_1="0.08", slope_2="1")
        assert linear_borrow_rate(strategy, ONE, ZERO) == Decimal("1.08")

    def test_liquidity_rate_is_borrow_rate_times_utilization(self):
        assert get_liquidity_rate(Decimal("0.2"), Decimal("0.5")) == Decimal("0.1")


class TestDynamicStrategy:
    """Proportional controller with clamping."""

    def test_rate_rises_above_optimal(self):
        rate = dynamic_borrow_rate(dynamic_strategy(), Decimal("0.9"), Decimal("0.1"))
        assert rate == Decimal("0.15")  # 0.1 + 0.5 * 0.1

    def test_rate_falls_below_optimal(self):
        rate = dynamic_borrow_rate(dynamic_strategy(), Decimal("0.7"), Decimal("0.2"))
        assert rate == Decimal("0.15")  # 0.2 - 0.5 * 0.1

    def test_large_error_uses_kp_2(self):
        rate = dynamic_borrow_rate(dynamic_strategy(), ONE, Decimal("0.1"))
        assert rate == Decimal("0.5")  # 0.1 + 2 * 0.2

    def test_clamped_to_min(self):
        rate = dynamic_borrow_rate(dynamic_strategy(), ZERO, Decimal("0.1"))
        assert rate == Decimal("0.05")

    def test_clamped_to_max(self):
        rate = dynamic_borrow_rate(dynamic_strategy(), ONE, Decimal("0.9"))
        assert rate == Decimal("1")


class TestAccrual:
    """Indices compound with the rates in force over the elapsed period."""

    def test_utilization_of_empty_market_is_zero(self, pool):
        assert pool.interest.utilization(pool.market(DEBT)) == ZERO

    def test_utilization(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        # debt 2,500 over debt 2,500 + cash 7,500
        assert funded_pool.interest.utilization(funded_pool.market(DEBT)) == Decimal("0.25")

    def test_borrow_index_compounds_with_stored_rate(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        market = funded_pool.market(DEBT)
        assert market.borrow_rate == Decimal("1")

        funded_pool.interest.accrue(market, T0 + YEAR // 2)
        assert market.borrow_index == Decimal("1.5")

    def test_liquidity_index_excludes_reserve_factor(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        market = funded_pool.market(DEBT)
        assert market.liquidity_rate == Decimal("0.25")

        funded_pool.interest.accrue(market, T0 + YEAR)
        # 1 + 0.25 * (1 - 0.1) * 1
        assert market.liquidity_index == Decimal("1.225")

    def test_protocol_income_is_reserve_share_of_interest(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        market = funded_pool.market(DEBT)

        funded_pool.interest.accrue(market, T0 + YEAR)
        # Interest 2,500 at 100%; reserve factor 0.1
        assert market.protocol_income_to_distribute == 250

    def test_same_timestamp_is_idempotent(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        market = funded_pool.market(DEBT)

        funded_pool.interest.accrue(market, T0 + 1000)
        once = copy.deepcopy(market)
        funded_pool.interest.accrue(market, T0 + 1000)
        assert market == once

    def test_time_going_backwards_is_fatal(self, pool):
        with pytest.raises(RuntimeError):
            pool.interest.accrue(pool.market(DEBT), T0 - 1)

    def test_indices_are_monotonic(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 4_000)
        market = funded_pool.market(DEBT)

        borrow_index, liquidity_index = market.borrow_index, market.liquidity_index
        for step in range(1, 25):
            funded_pool.interest.accrue(market, T0 + step * 3_600 * 24 * 7)
            assert market.borrow_index >= borrow_index
            assert market.liquidity_index >= liquidity_index
            borrow_index, liquidity_index = market.borrow_index, market.liquidity_index

    def test_projection_does_not_write(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        market = funded_pool.market(DEBT)
        before = copy.deepcopy(market)

        projected = funded_pool.interest.projected_indices(market, T0 + YEAR)
        assert projected.borrow_index == Decimal("2")
        assert market == before

    def test_engine_on_untouched_market(self, pool):
        engine = InterestRateEngine()
        market = pool.market(COLLATERAL)
        engine.accrue(market, T0 + YEAR)
        assert market.borrow_index == ONE
        assert market.interests_last_updated == T0 + YEAR

    def test_depositors_earn_interest(self, funded_pool):
        funded_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        funded_pool.borrow(env(), info(ALICE), DEBT, 2_500)
        later = env(T0 + YEAR)
        assert funded_pool.user_collateral(later, BOB, DEBT).amount == 12_250


class TestDynamicMarket:
    """A controller-driven market steps its borrow rate once per block time."""

    @pytest.fixture
    def dynamic_pool(self, pool, prices):
        prices[DYNAMIC] = Decimal("1")
        pool.init_asset(
            env(), info(OWNER), Asset.native(DYNAMIC),
            asset_params(
                interest_rate_strategy=dynamic_strategy(kp_augmentation_threshold="1"),
                initial_borrow_rate=Decimal("0.6"),
            ),
        )
        return pool

    def test_rate_holds_within_creation_block(self, dynamic_pool):
        rates = []
        for _ in range(5):
            dynamic_pool.deposit(env(), info(BOB), DYNAMIC, 1)
            rates.append(dynamic_pool.market(DYNAMIC).borrow_rate)
        assert rates == [Decimal("0.6")] * 5

    def test_one_step_per_transaction(self, dynamic_pool):
        dynamic_pool.deposit(env(), info(BOB), DYNAMIC, 1_000)
        dynamic_pool.deposit(env(T0 + 100), info(BOB), DYNAMIC, 1)
        # Idle market: 0.6 - 0.5 * 0.8
        assert dynamic_pool.market(DYNAMIC).borrow_rate == Decimal("0.2")

    def test_repeated_commands_in_one_block_do_not_step(self, dynamic_pool):
        dynamic_pool.deposit(env(), info(BOB), DYNAMIC, 1_000)
        for _ in range(5):
            dynamic_pool.deposit(env(T0 + 100), info(BOB), DYNAMIC, 1)
        assert dynamic_pool.market(DYNAMIC).borrow_rate == Decimal("0.2")

        dynamic_pool.deposit(env(T0 + 200), info(BOB), DYNAMIC, 1)
        assert dynamic_pool.market(DYNAMIC).borrow_rate == Decimal("0.05")  # clamped to min

    def test_borrow_steps_from_post_borrow_utilization(self, dynamic_pool):
        dynamic_pool.deposit(env(), info(BOB), DYNAMIC, 1_000)
        dynamic_pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)

        later = env(T0 + 10)
        dynamic_pool.borrow(later, info(ALICE), DYNAMIC, 900)
        market = dynamic_pool.market(DYNAMIC)
        utilization = dynamic_pool.interest.utilization(market)
        stepped = dynamic_borrow_rate(market.interest_rate_strategy, utilization, Decimal("0.6"))
        assert market.borrow_rate == stepped
        assert market.liquidity_rate == get_liquidity_rate(stepped, utilization)

        dynamic_pool.borrow(later, info(ALICE), DYNAMIC, 50)
        utilization = dynamic_pool.interest.utilization(market)
        assert market.borrow_rate == stepped
        assert market.liquidity_rate == get_liquidity_rate(stepped, utilization)

    def test_update_asset_steps_once_at_a_new_block(self, dynamic_pool):
        dynamic_pool.update_asset(env(), info(OWNER), DYNAMIC, AssetParams(reserve_factor=Decimal("0.2")))
        assert dynamic_pool.market(DYNAMIC).borrow_rate == Decimal("0.6")

        dynamic_pool.update_asset(env(T0 + 50), info(OWNER), DYNAMIC, AssetParams(reserve_factor=Decimal("0.3")))
        assert dynamic_pool.market(DYNAMIC).borrow_rate == Decimal("0.2")

    def test_accrual_alone_leaves_rates(self, dynamic_pool):
        market = dynamic_pool.market(DYNAMIC)
        dynamic_pool.interest.accrue(market, T0 + YEAR)
        assert market.borrow_rate == Decimal("0.6")


class TestZeroOptimalLinearMarket:
    """A kink at zero utilization gives a curve that starts at base."""

    def test_market_with_zero_optimal(self, pool, prices):
        prices[FLAT] = Decimal("1")
        pool.init_asset(
            env(), info(OWNER), Asset.native(FLAT),
            asset_params(interest_rate_strategy=linear_strategy(optimal="0", base="0.1", slope_1="0", slope_2="0")),
        )
        pool.deposit(env(), info(BOB), FLAT, 1_000)
        assert pool.market(FLAT).borrow_rate == Decimal("0.1")

        pool.deposit(env(), info(ALICE), COLLATERAL, 10_000)
        pool.borrow(env(), info(ALICE), FLAT, 500)
        assert pool.market(FLAT).borrow_rate == Decimal("0.1")
        assert pool.market(FLAT).liquidity_rate == Decimal("0.05")

    def test_zero_optimal_curve(self):
        strategy = linear_strategy(optimal="0", base="0.1", slope_1="0.2", slope_2="0.4")
        assert linear_borrow_rate(strategy, ZERO, ZERO) == Decimal("0.1")
        # Above the kink: 0.1 + 0.2 + 0.4 * 0.5
        assert linear_borrow_rate(strategy, Decimal("0.5"), ZERO) == Decimal("0.5")


class TestRateCurve:
    """Sampling a strategy into a DataFrame."""

    def test_rate_curve_shape(self):
        frame = rate_curve(linear_strategy(optimal="0.8", slope_1="0.08", slope_2="1"), n_points=11)
        assert list(frame.columns) == ["utilization", "borrow_rate", "liquidity_rate"]
        assert len(frame) == 11
        assert frame["borrow_rate"].iloc[0] == pytest.approx(0.0)
        assert frame["borrow_rate"].iloc[-1] == pytest.approx(1.08)

    def test_rate_curve_is_non_decreasing_for_linear(self):
        frame = rate_curve(linear_strategy(), n_points=51)
        assert frame["borrow_rate"].is_monotonic_increasing
