"""
Error classes for the VaR sandbox.

Every failure carries enough context (sheet, row, asset) for the user to
fix the uploaded workbook and try again.
"""

from typing import List, Optional, Sequence


class VarSandboxError(Exception):
    """Base error for VaR sandbox operations."""
    pass


class VarInputError(VarSandboxError):
    """The uploaded workbook cannot be used as-is."""

    def __init__(
        self,
        reason: str,
        sheet: Optional[str] = None,
        row: Optional[int] = None,
        asset: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.sheet = sheet
        self.row = row
        self.asset = asset
        super().__init__(self._render())

    def _render(self) -> str:
        where = []
        if self.sheet:
            where.append(f"sheet '{self.sheet}'")
        if self.row is not None:
            where.append(f"row {self.row}")
        if self.asset:
            where.append(f"asset '{self.asset}'")
        if not where:
            return self.reason
        return f"{', '.join(where)}: {self.reason}"


class MalformedSheet(VarInputError):
    """A sheet is missing, has the wrong headers or holds unusable values."""
    pass


class MissingPriceSeries(VarInputError):
    """A holding has no matching column in Price_History."""

    def __init__(self, assets: Sequence[str], sheet: str = "Price_History") -> None:
        self.assets: List[str] = list(assets)
        super().__init__(
            f"no price column for holding(s): {', '.join(self.assets)}",
            sheet=sheet,
            asset=self.assets[0] if len(self.assets) == 1 else None,
        )


class IncompleteData(VarInputError):
    """Price_History has gaps inside the lookback window."""

    def __init__(
        self,
        reason: str,
        asset: Optional[str] = None,
        start=None,
        end=None,
        count: int = 0,
        row: Optional[int] = None,
        sheet: str = "Price_History",
    ) -> None:
        self.start = start
        self.end = end
        self.count = count
        super().__init__(reason, sheet=sheet, row=row, asset=asset)


class InvalidConfiguration(VarInputError):
    """Unsupported confidence level, horizon or other run parameter."""

    def __init__(
        self,
        reason: str,
        key: Optional[str] = None,
        row: Optional[int] = None,
        sheet: Optional[str] = "Configuration",
    ) -> None:
        self.key = key
        super().__init__(reason, sheet=sheet, row=row)


class StatisticalComputationError(VarSandboxError):
    """A matrix operation failed on degenerate data."""

    def __init__(self, condition: str) -> None:
        self.condition = condition
        super().__init__(condition)


class ThresholdOrderingViolation(VarSandboxError):
    """Scale thresholds are not strictly ascending."""

    def __init__(self, scale: str, thresholds: Sequence[float]) -> None:
        self.scale = scale
        self.thresholds = list(thresholds)
        super().__init__(
            f"{scale} thresholds must be strictly ascending, got {self.thresholds}"
        )
