"""
VaR Sandbox — Main Orchestrator
===============================
Command-line entry point for the VaR analysis pipeline.

Execution Flow:
    1. Load and validate the upload workbook
    2. Resolve the scale configuration
    3. Statistical estimation (returns, Σ, ρ)
    4. Parametric VaR with per-asset breakdown
    5. Likelihood / impact scoring
    6. Visualization (optional)
    7. Results export (optional)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from var_sandbox.calculator import VaRResult, calculate_var
from var_sandbox.config import Settings
from var_sandbox.errors import VarSandboxError
from var_sandbox.loader import load_workbook, write_template
from var_sandbox.scales import ScaleConfig, default_scale_config

logger = logging.getLogger(__name__)


def print_header(text: str) -> None:
    """Print formatted section header."""
    width = 60
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width)


def print_metrics(metrics: dict, indent: int = 4) -> None:
    """Print dictionary of metrics with formatting."""
    prefix = " " * indent
    for key, val in metrics.items():
        if isinstance(val, float):
            print(f"{prefix}{key:.<35} {val:>18,.4f}")
        else:
            print(f"{prefix}{key:.<35} {str(val):>18}")


def _thresholds(text: str) -> List[float]:
    try:
        return [float(part) for part in text.split(",") if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected comma-separated numbers, got {text!r}"
        ) from None


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="var-sandbox",
        description="Parametric Value-at-Risk analysis for an uploaded portfolio workbook",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command")

    analyze = sub.add_parser("analyze", help="Run a VaR analysis on a workbook")
    analyze.add_argument("workbook", type=Path, help="Upload workbook (.xlsx)")
    analyze.add_argument(
        "--confidence",
        help="Confidence level override: 90, 95, 99 or 99.9",
    )
    analyze.add_argument(
        "--horizon",
        type=int,
        help="Time horizon override in periods of the data frequency",
    )
    analyze.add_argument(
        "--matrix-size",
        type=int,
        choices=[5, 6],
        help="Risk matrix size for the default thresholds",
    )
    analyze.add_argument(
        "--volatility-thresholds",
        type=_thresholds,
        help="Ascending annualized volatility thresholds in percent, e.g. 5,10,15,20",
    )
    analyze.add_argument(
        "--value-thresholds",
        type=_thresholds,
        help="Ascending portfolio value thresholds in millions, e.g. 10,50,100,500",
    )
    analyze.add_argument("--figures", type=Path, help="Directory for charts")
    analyze.add_argument("--output", type=Path, help="Write results as JSON")

    template = sub.add_parser("template", help="Write a sample upload workbook")
    template.add_argument("path", type=Path, help="Destination .xlsx file")

    return p


def resolve_scale_config(args: argparse.Namespace, settings: Settings) -> ScaleConfig:
    base = default_scale_config(args.matrix_size or settings.matrix_size)
    if args.volatility_thresholds is None and args.value_thresholds is None:
        return base
    return ScaleConfig(
        volatility_thresholds=args.volatility_thresholds or base.volatility_thresholds,
        value_thresholds=args.value_thresholds or base.value_thresholds,
    )


def report(result: VaRResult) -> None:
    """Print the analysis results."""
    print_header("PORTFOLIO SUMMARY")
    print_metrics({
        "portfolio_value": result.portfolio_value,
        "currency": result.currency,
        "data_frequency": result.data_frequency,
        "observations": result.observations,
    })

    print_header("PARAMETRIC VaR (VARIANCE-COVARIANCE)")
    print_metrics({
        "confidence_level": f"{result.confidence_level:.1%}",
        "z_value": result.z_value,
        "time_horizon_days": result.time_horizon_days,
        "horizon_scaling": result.horizon_scaling,
        "portfolio_volatility_pct": result.portfolio_volatility_pct,
        "portfolio_var": result.portfolio_var,
        "standalone_var_total": result.standalone_var_total,
        "diversification_benefit": result.diversification_benefit,
        "diversification_pct": result.diversification_pct,
    })

    print_header("ASSET CONTRIBUTIONS")
    table = pd.DataFrame([
        {
            "Asset": a.asset,
            "Type": a.asset_type,
            "Value": a.market_value,
            "Weight %": a.weight * 100,
            "Vol %": a.volatility * 100,
            "Standalone VaR": a.standalone_var,
            "Contribution": a.var_contribution,
            "Contribution %": a.var_contribution_pct,
        }
        for a in result.asset_contributions
    ])
    print("\n" + table.to_string(index=False, float_format=lambda x: f"{x:,.2f}"))

    print_header("CORRELATION MATRIX")
    print(result.correlation_matrix.to_string(float_format=lambda x: f"{x:.3f}"))

    print_header("RISK SCORES")
    print_metrics({
        "likelihood_score": f"{result.likelihood_score} / {result.matrix_size}",
        "impact_score": f"{result.impact_score} / {result.matrix_size}",
    })

    if result.warnings:
        print_header("WARNINGS")
        for message in result.warnings:
            print(f"  ! {message}")


def _run_analyze(args: argparse.Namespace, settings: Settings) -> None:
    logger.debug("Analyzing %s", args.workbook)
    scale_config = resolve_scale_config(args, settings)
    upload = load_workbook(args.workbook)
    result = calculate_var(
        upload,
        scale_config,
        confidence_level=args.confidence,
        time_horizon_days=args.horizon,
    )

    report(result)

    if args.figures:
        from var_sandbox.visualization import (
            plot_correlation_heatmap,
            plot_risk_matrix,
            plot_var_contributions,
        )

        print_header("GENERATING VISUALIZATIONS")
        fig_dir = str(args.figures)
        paths = [
            plot_correlation_heatmap(
                result.correlation_matrix.to_numpy(),
                list(result.correlation_matrix.columns),
                output_dir=fig_dir,
            ),
            plot_var_contributions(result, output_dir=fig_dir),
            plot_risk_matrix(result, output_dir=fig_dir),
        ]
        for path in paths:
            print(f"  ✓ {path}")

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        print(f"\n  Results saved to: {args.output}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        if args.command == "template":
            path = write_template(args.path)
            print(f"Template written to {path}")
        elif args.command == "analyze":
            _run_analyze(args, Settings.from_env())
    except VarSandboxError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
