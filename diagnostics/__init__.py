"""Statistical diagnostics for the retail sales forecaster.

This package provides:
- Stationarity testing (ADF, KPSS) and differencing order selection
- Seasonal strength measurement from STL
- Residual diagnostics (Ljung-Box, Jarque-Bera, ARCH-LM) for fitted models
"""

from .stationarity import (
    StationarityResult,
    adf_test,
    kpss_test,
    seasonal_strength,
    ndiffs,
    nsdiffs,
    stationarity_report,
    suggest_differencing
)

from .residual_diagnostics import (
    ResidualDiagnostics,
    DiagnosticResult,
    DiagnosticTest,
    diagnostics_frame
)

__all__ = [
    # Stationarity
    'StationarityResult',
    'adf_test',
    'kpss_test',
    'seasonal_strength',
    'ndiffs',
    'nsdiffs',
    'stationarity_report',
    'suggest_differencing',

    # Residual diagnostics
    'ResidualDiagnostics',
    'DiagnosticResult',
    'DiagnosticTest',
    'diagnostics_frame'
]
