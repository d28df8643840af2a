"""
VaR Sandbox Risk Engine
=======================
Portfolio Value-at-Risk analytics for the enterprise risk register:
- Workbook ingestion (holdings, price history, configuration)
- Return, covariance and correlation estimation
- Parametric (Variance-Covariance) VaR
- Standalone VaR, Euler VaR contributions, diversification benefit
- Likelihood / impact scoring against configurable scales
- AI-assisted risk, control and incident suggestions
"""

__version__ = "1.0.0"
