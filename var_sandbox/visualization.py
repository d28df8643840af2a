"""
Visualization Module
====================
Produces static charts for VaR analysis reporting.

Generated Figures:
    1. Correlation Heatmap
    2. Standalone VaR vs VaR Contribution per Asset
    3. Likelihood × Impact Risk Matrix
"""

from pathlib import Path
from typing import List

import matplotlib.pyplot as plt
import matplotlib.ticker as mtick
import numpy as np
import seaborn as sns

from var_sandbox.calculator import VaRResult


# ─────────────────────────────────────────────────────────────
# Style Configuration
# ─────────────────────────────────────────────────────────────
plt.rcParams.update({
    "figure.figsize": (12, 7),
    "figure.dpi": 150,
    "font.size": 11,
    "font.family": "serif",
    "axes.grid": True,
    "grid.alpha": 0.3,
    "axes.spines.top": False,
    "axes.spines.right": False,
})

COLORS = {
    "standalone": "#ff7f0e",
    "contribution": "#d62728",
    "marker": "#111111",
}


def save_figure(fig: plt.Figure, name: str, output_dir: str = "results/figures") -> str:
    """Save figure to disk and return the path."""
    path = Path(output_dir)
    path.mkdir(parents=True, exist_ok=True)
    filepath = path / f"{name}.png"
    fig.savefig(filepath, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    return str(filepath)


def plot_correlation_heatmap(
    corr_matrix: np.ndarray,
    labels: List[str],
    output_dir: str = "results/figures",
) -> str:
    """
    Plot correlation matrix as an annotated heatmap.

    Parameters
    ----------
    corr_matrix : np.ndarray
        Correlation matrix (N x N).
    labels : list
        Asset labels.
    output_dir : str
        Output directory.

    Returns
    -------
    str
        Path to saved figure.
    """
    corr_matrix = np.asarray(corr_matrix)
    fig, ax = plt.subplots(figsize=(9, 7))

    mask = np.triu(np.ones_like(corr_matrix, dtype=bool), k=1)

    sns.heatmap(
        corr_matrix,
        mask=mask,
        annot=True,
        fmt=".3f",
        cmap="RdYlBu_r",
        center=0,
        vmin=-1,
        vmax=1,
        square=True,
        linewidths=0.5,
        xticklabels=labels,
        yticklabels=labels,
        ax=ax,
        cbar_kws={"shrink": 0.8, "label": "Correlation"},
    )

    ax.set_title("Asset Correlation Matrix",
                 fontsize=14, fontweight="bold")

    return save_figure(fig, "correlation_heatmap", output_dir)


def plot_var_contributions(
    result: VaRResult,
    output_dir: str = "results/figures",
) -> str:
    """
    Bar chart of standalone VaR against Euler VaR contribution per asset.

    The gap between the two bars is the asset's diversification benefit.

    Parameters
    ----------
    result : VaRResult
        Completed analysis.
    output_dir : str
        Output directory.

    Returns
    -------
    str
        Path to saved figure.
    """
    fig, ax = plt.subplots(figsize=(12, 7))

    assets = [a.asset for a in result.asset_contributions]
    x = np.arange(len(assets))
    width = 0.38

    standalone = [a.standalone_var for a in result.asset_contributions]
    contribution = [a.var_contribution for a in result.asset_contributions]

    ax.bar(x - width / 2, standalone, width, label="Standalone VaR",
           color=COLORS["standalone"], alpha=0.8)
    ax.bar(x + width / 2, contribution, width, label="VaR Contribution",
           color=COLORS["contribution"], alpha=0.8)
    ax.axhline(0, color=COLORS["marker"], linewidth=0.8)

    ax.set_xlabel("Asset", fontsize=12)
    ax.set_ylabel(f"VaR ({result.currency})", fontsize=12)
    ax.set_title(
        f"{result.confidence_level:.1%} {result.time_horizon_days}-Day VaR by Asset "
        f"(diversification benefit {result.diversification_pct:.1f}%)",
        fontsize=14, fontweight="bold",
    )
    ax.set_xticks(x)
    ax.set_xticklabels(assets, fontsize=11, rotation=20, ha="right")
    ax.legend(fontsize=11)
    ax.yaxis.set_major_formatter(mtick.StrMethodFormatter("{x:,.0f}"))

    return save_figure(fig, "var_contributions", output_dir)


def plot_risk_matrix(
    result: VaRResult,
    output_dir: str = "results/figures",
) -> str:
    """
    Likelihood × impact heatmap with the portfolio's scores marked.

    Cell colour is the product score (1 .. N²).

    Parameters
    ----------
    result : VaRResult
        Completed analysis.
    output_dir : str
        Output directory.

    Returns
    -------
    str
        Path to saved figure.
    """
    n = result.matrix_size
    scores = np.outer(np.arange(n, 0, -1), np.arange(1, n + 1))

    fig, ax = plt.subplots(figsize=(8, 7))

    sns.heatmap(
        scores,
        annot=True,
        fmt="d",
        cmap="RdYlGn_r",
        vmin=1,
        vmax=n * n,
        square=True,
        linewidths=0.5,
        xticklabels=list(range(1, n + 1)),
        yticklabels=list(range(n, 0, -1)),
        cbar=False,
        ax=ax,
    )

    # heatmap cell (col, row) centres sit at +0.5; likelihood runs top-down
    ax.scatter(
        result.impact_score - 0.5,
        n - result.likelihood_score + 0.5,
        s=600, facecolors="none", edgecolors=COLORS["marker"], linewidths=3,
        zorder=5, label="Portfolio VaR",
    )

    ax.set_xlabel("Impact", fontsize=12)
    ax.set_ylabel("Likelihood", fontsize=12)
    ax.set_title("VaR Risk Score", fontsize=14, fontweight="bold")
    ax.legend(loc="upper left", bbox_to_anchor=(1.02, 1.0), fontsize=10)

    return save_figure(fig, "risk_matrix", output_dir)
