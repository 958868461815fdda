#!/usr/bin/env python3
"""
Seasonal forecasting of monthly Canadian retail trade sales.

Usage
-----
    python forecaster_retail.py --help
    python forecaster_retail.py --data data/retail_sales_canada.csv
    python forecaster_retail.py --models arima,ets,snaive --transform log --no-cv

The implementation lives in retail_forecaster_src/; see main.py there for the
workflow and the full list of options.
"""

from retail_forecaster_src.main import main

if __name__ == "__main__":
    main()
