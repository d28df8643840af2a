import numpy as np
import pytest
from scipy import stats

from var_sandbox.errors import InvalidConfiguration, StatisticalComputationError
from var_sandbox.risk_metrics import (
    annualize_volatility,
    compute_diversification_benefit,
    compute_parametric_var,
    compute_standalone_var,
    compute_var_contributions,
    horizon_scaling_factor,
    parametric_risk_metrics,
    periods_per_year,
    z_value,
)


def random_portfolio(seed, n_assets=4, n_obs=300):
    rng = np.random.default_rng(seed)
    mixing = rng.normal(0, 0.01, size=(n_assets, n_assets))
    returns = rng.normal(size=(n_obs, n_assets)) @ mixing
    cov = np.cov(returns, rowvar=False)
    values = rng.uniform(1e5, 1e7, size=n_assets)
    return cov, values, values / values.sum()


class TestScaling:
    @pytest.mark.parametrize("level, expected", [
        (0.90, 1.2816),
        (0.95, 1.6449),
        (0.99, 2.3263),
        (0.999, 3.0902),
    ])
    def test_z_values(self, level, expected):
        assert z_value(level) == pytest.approx(expected, abs=1e-4)

    def test_unsupported_confidence(self):
        with pytest.raises(InvalidConfiguration):
            z_value(0.97)

    def test_periods_per_year(self):
        assert periods_per_year("daily") == 252
        assert periods_per_year("weekly") == 52
        assert periods_per_year("monthly") == 12
        with pytest.raises(InvalidConfiguration):
            periods_per_year("hourly")

    def test_annualize(self):
        assert annualize_volatility(0.01, "daily") == pytest.approx(0.01 * np.sqrt(252))
        assert annualize_volatility(0.02, "monthly") == pytest.approx(0.02 * np.sqrt(12))

    def test_horizon_scaling(self):
        assert horizon_scaling_factor(252) == pytest.approx(1.0)
        assert horizon_scaling_factor(10) == pytest.approx(np.sqrt(10 / 252))
        with pytest.raises(InvalidConfiguration):
            horizon_scaling_factor(0)

    @pytest.mark.parametrize("frequency, periods", [
        ("daily", 252),
        ("weekly", 52),
        ("monthly", 12),
    ])
    def test_horizon_counts_periods_of_the_frequency(self, frequency, periods):
        assert horizon_scaling_factor(1, frequency) == pytest.approx(np.sqrt(1 / periods))
        assert horizon_scaling_factor(periods, frequency) == pytest.approx(1.0)

    def test_horizon_rejects_unknown_frequency(self):
        with pytest.raises(InvalidConfiguration):
            horizon_scaling_factor(1, "hourly")


class TestParametricVaR:
    def test_ten_day_99(self):
        annual = annualize_volatility(0.01, "daily")
        var = compute_parametric_var(annual, 1_000_000, 0.99, 10)

        expected = stats.norm.ppf(0.99) * 0.01 * np.sqrt(10) * 1_000_000
        assert var == pytest.approx(expected, rel=1e-12)
        assert var == pytest.approx(73_566, rel=1e-3)

    @pytest.mark.parametrize("frequency", ["weekly", "monthly"])
    def test_one_period_uses_period_volatility(self, frequency):
        annual = annualize_volatility(0.03, frequency)
        var = compute_parametric_var(annual, 1_000_000, 0.95, 1, frequency)

        assert var == pytest.approx(stats.norm.ppf(0.95) * 0.03 * 1_000_000, rel=1e-12)

    def test_four_weeks_scale_by_two(self):
        annual = annualize_volatility(0.03, "weekly")
        one = compute_parametric_var(annual, 1_000_000, 0.95, 1, "weekly")
        four = compute_parametric_var(annual, 1_000_000, 0.95, 4, "weekly")
        assert four == pytest.approx(2 * one)

    def test_linear_in_value(self):
        one = compute_parametric_var(0.2, 1_000, 0.95, 1)
        two = compute_parametric_var(0.2, 2_000, 0.95, 1)
        assert two == pytest.approx(2 * one)

    def test_standalone(self):
        cov = np.diag([0.0001, 0.0004])
        values = np.array([1e6, 2e6])
        standalone = compute_standalone_var(cov, values, "daily", 0.95, 1)

        z = stats.norm.ppf(0.95)
        np.testing.assert_allclose(standalone, [z * 0.01 * 1e6, z * 0.02 * 2e6])

    def test_standalone_monthly(self):
        cov = np.diag([0.0025])
        standalone = compute_standalone_var(cov, np.array([1e6]), "monthly", 0.99, 3)

        expected = stats.norm.ppf(0.99) * 0.05 * np.sqrt(3) * 1e6
        np.testing.assert_allclose(standalone, [expected])


class TestContributions:
    @pytest.mark.parametrize("seed", range(5))
    def test_euler_sum(self, seed):
        cov, values, weights = random_portfolio(seed)
        metrics = parametric_risk_metrics(weights, cov, values, "daily", 0.99, 10)

        assert metrics["var_contributions"].sum() == pytest.approx(
            metrics["portfolio_var"], rel=1e-9
        )

    @pytest.mark.parametrize("seed", range(5))
    def test_diversification_non_negative(self, seed):
        cov, values, weights = random_portfolio(seed)
        metrics = parametric_risk_metrics(weights, cov, values, "daily", 0.95, 1)

        assert metrics["diversification_benefit"] >= 0.0
        assert metrics["portfolio_var"] <= metrics["standalone_var"].sum() + 1e-6

    def test_single_asset(self):
        cov = np.array([[0.0004]])
        values = np.array([5e6])
        metrics = parametric_risk_metrics(np.array([1.0]), cov, values, "daily", 0.95, 1)

        assert metrics["var_contributions"][0] == pytest.approx(metrics["portfolio_var"])
        assert metrics["standalone_var"][0] == pytest.approx(metrics["portfolio_var"])
        assert metrics["diversification_benefit"] == pytest.approx(0.0, abs=1e-6)

    def test_perfect_correlation_has_no_benefit(self):
        sigma = np.array([0.01, 0.02, 0.015])
        cov = np.outer(sigma, sigma)
        values = np.array([1e6, 2e6, 3e6])
        metrics = parametric_risk_metrics(
            values / values.sum(), cov, values, "daily", 0.95, 1
        )

        assert metrics["diversification_benefit"] == pytest.approx(0.0, abs=1e-6)
        assert metrics["diversification_benefit"] >= 0.0

    def test_reuses_supplied_portfolio_variance(self):
        cov, values, weights = random_portfolio(7)
        variance = float(weights @ cov @ weights)

        computed = parametric_risk_metrics(weights, cov, values, "daily", 0.99, 10)
        supplied = parametric_risk_metrics(
            weights, cov, values, "daily", 0.99, 10, portfolio_variance=variance
        )
        assert supplied["portfolio_var"] == pytest.approx(computed["portfolio_var"], rel=1e-12)
        np.testing.assert_allclose(
            supplied["var_contributions"], computed["var_contributions"], rtol=1e-12
        )

        doubled = parametric_risk_metrics(
            weights, cov, values, "daily", 0.99, 10, portfolio_variance=4 * variance
        )
        assert doubled["portfolio_var"] == pytest.approx(2 * computed["portfolio_var"])

    def test_zero_variance_portfolio(self):
        with pytest.raises(StatisticalComputationError, match="variance is zero"):
            compute_var_contributions(np.array([0.5, 0.5]), np.zeros((2, 2)), 0.0)

    def test_benefit_clamps_rounding_noise(self):
        assert compute_diversification_benefit(np.array([50.0, 50.0]), 100.0 + 1e-10) == 0.0
        assert compute_diversification_benefit(np.array([60.0, 60.0]), 100.0) == pytest.approx(20.0)
