import json

import numpy as np
import pytest
from scipy import stats

from var_sandbox.calculator import ReducedConfidenceWarning, calculate_var, check_history_length
from var_sandbox.errors import InvalidConfiguration, StatisticalComputationError
from var_sandbox.loader import load_workbook, write_template
from var_sandbox.scales import default_scale_config
from var_sandbox.statistics import ZeroVarianceWarning


class TestCalculateVar:
    def test_template_workbook(self, tmp_path):
        upload = load_workbook(write_template(tmp_path / "template.xlsx"))
        result = calculate_var(upload)

        assert result.observations == 300
        assert not result.reduced_confidence
        assert result.warnings == []
        assert result.portfolio_var > 0
        assert result.portfolio_value == pytest.approx(4_643_500.0)
        assert result.impact_score == 1
        assert 1 <= result.likelihood_score <= 5
        assert result.matrix_size == 5
        assert result.currency == "NGN"
        assert sum(a.var_contribution for a in result.asset_contributions) == pytest.approx(
            result.portfolio_var, rel=1e-9
        )

    def test_correlated_pair_and_independent_asset(self, make_upload):
        rng = np.random.default_rng(21)
        x = rng.normal(0.0, 0.01, 500)
        independent = rng.normal(0.0, 0.02, 500)
        returns = np.column_stack([x, x, independent])
        upload = make_upload(
            returns,
            assets=["A", "B", "C"],
            market_values=[1e6, 2e6, 1e6],
            confidence_level=0.99,
            time_horizon_days=10,
        )

        result = calculate_var(upload)
        corr = result.correlation_matrix

        assert corr.loc["A", "B"] == pytest.approx(1.0, abs=1e-9)
        assert abs(corr.loc["A", "C"]) < 0.2
        assert result.diversification_benefit > 0
        assert result.portfolio_var < result.standalone_var_total

        cov = result.covariance_matrix.to_numpy()
        w = np.array([0.25, 0.5, 0.25])
        expected = (
            stats.norm.ppf(0.99) * np.sqrt(w @ cov @ w) * np.sqrt(10) * 4e6
        )
        assert result.portfolio_var == pytest.approx(expected, rel=1e-9)
        assert result.z_value == pytest.approx(2.326, abs=1e-3)
        assert result.horizon_scaling == pytest.approx(np.sqrt(10 / 252))

        contributions = {a.asset: a for a in result.asset_contributions}
        assert sum(a.var_contribution_pct for a in result.asset_contributions) == pytest.approx(100.0)
        assert contributions["B"].weight == pytest.approx(0.5)
        # A and B move together, so their contributions scale with value
        assert contributions["B"].var_contribution == pytest.approx(
            2 * contributions["A"].var_contribution, rel=1e-6
        )

    def test_equal_weight_volatility_bounds(self, make_upload):
        rng = np.random.default_rng(33)
        x = rng.normal(0.0, 0.02, 400)
        returns = np.column_stack([x, x, rng.normal(0.0, 0.01, 400)])

        result = calculate_var(make_upload(returns, assets=["A", "B", "C"]))

        vols = np.array([a.volatility for a in result.asset_contributions])
        weights = np.array([a.weight for a in result.asset_contributions])
        np.testing.assert_allclose(weights, [1 / 3] * 3)
        assert vols.min() <= result.portfolio_volatility <= weights @ vols

    def test_single_asset(self, make_upload):
        returns = np.random.default_rng(4).normal(0.0, 0.015, 300)
        result = calculate_var(make_upload(returns, assets=["Only"]))

        only = result.asset_contributions[0]
        assert only.weight == pytest.approx(1.0)
        assert only.var_contribution == pytest.approx(result.portfolio_var)
        assert only.standalone_var == pytest.approx(result.portfolio_var)
        assert result.diversification_benefit == pytest.approx(0.0, abs=1e-6)
        assert result.correlation_matrix.shape == (1, 1)

    def test_weekly_annualization(self, make_upload):
        returns = np.random.default_rng(8).normal(0.0, 0.03, 150)
        result = calculate_var(
            make_upload(returns, frequency="weekly", freq="W-FRI")
        )

        period_std = np.sqrt(result.covariance_matrix.iloc[0, 0])
        assert result.portfolio_volatility == pytest.approx(period_std * np.sqrt(52))
        assert not result.reduced_confidence

    def test_weekly_horizon_is_one_week(self, make_upload):
        returns = np.random.default_rng(8).normal(0.0, 0.03, 150)
        result = calculate_var(
            make_upload(returns, frequency="weekly", freq="W-FRI")
        )

        period_std = np.sqrt(result.covariance_matrix.iloc[0, 0])
        assert result.horizon_scaling == pytest.approx(np.sqrt(1 / 52))
        assert result.portfolio_var == pytest.approx(
            stats.norm.ppf(0.95) * period_std * 1e6, rel=1e-9
        )

    def test_monthly_horizon_counts_months(self, make_upload):
        returns = np.random.default_rng(12).normal(0.0, 0.05, (80, 2))
        result = calculate_var(
            make_upload(returns, frequency="monthly", freq="MS", time_horizon_days=3)
        )

        cov = result.covariance_matrix.to_numpy()
        w = np.array([0.5, 0.5])
        assert result.horizon_scaling == pytest.approx(np.sqrt(3 / 12))
        assert result.portfolio_var == pytest.approx(
            stats.norm.ppf(0.95) * np.sqrt(w @ cov @ w) * np.sqrt(3) * 2e6, rel=1e-9
        )
        assert not result.reduced_confidence

    def test_short_history_is_flagged(self, make_upload, sample_returns):
        upload = make_upload(sample_returns[:59])

        with pytest.warns(ReducedConfidenceWarning):
            result = calculate_var(upload)

        assert result.reduced_confidence
        assert "60 daily observations" in result.warnings[0]
        assert result.portfolio_var > 0

    def test_zero_variance_asset(self, make_upload):
        rng = np.random.default_rng(9)
        returns = np.column_stack([rng.normal(0.0, 0.01, 300), np.zeros(300)])

        with pytest.warns(ZeroVarianceWarning):
            result = calculate_var(make_upload(returns, assets=["A", "Cash"]))

        assert result.correlation_matrix.loc["A", "Cash"] == 0.0
        assert any("zero variance" in w for w in result.warnings)
        cash = result.asset_contributions[1]
        assert cash.standalone_var == 0.0
        assert cash.var_contribution == 0.0

    def test_all_constant_prices(self, make_upload):
        with pytest.warns(ZeroVarianceWarning):
            with pytest.raises(StatisticalComputationError, match="variance is zero"):
                calculate_var(make_upload(np.zeros((300, 2))))

    def test_overrides(self, make_upload, sample_returns):
        upload = make_upload(sample_returns)
        base = calculate_var(upload)
        stressed = calculate_var(upload, confidence_level="99%", time_horizon_days=10)

        assert stressed.confidence_level == 0.99
        assert stressed.time_horizon_days == 10
        assert stressed.portfolio_var == pytest.approx(
            base.portfolio_var * stats.norm.ppf(0.99) / stats.norm.ppf(0.95) * np.sqrt(10)
        )

    def test_invalid_override(self, make_upload, sample_returns):
        with pytest.raises(InvalidConfiguration):
            calculate_var(make_upload(sample_returns), confidence_level=0.5)

    def test_six_point_scale(self, make_upload, sample_returns):
        result = calculate_var(make_upload(sample_returns), default_scale_config(6))
        assert result.matrix_size == 6
        assert 1 <= result.likelihood_score <= 6

    def test_to_dict_is_json_serializable(self, make_upload, sample_returns):
        result = calculate_var(make_upload(sample_returns, assets=["A", "B", "C"]))
        payload = json.loads(json.dumps(result.to_dict()))

        assert payload["correlation_matrix"]["assets"] == ["A", "B", "C"]
        assert len(payload["asset_contributions"]) == 3
        assert payload["asset_contributions"][0]["asset"] == "A"
        assert payload["portfolio_var"] == pytest.approx(result.portfolio_var)


class TestHistoryLength:
    def test_thresholds(self):
        assert check_history_length(252, "daily") is None
        assert check_history_length(251, "daily") is not None
        assert check_history_length(104, "weekly") is None
        assert check_history_length(59, "monthly") is not None
