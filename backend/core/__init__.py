"""Core forecasting logic: bars, resolutions, stores, features and ensembles.

This package contains pure business logic with no I/O dependencies
(no database, files, or network access). It is shared between the
realtime shell (app/) and the back-testing system (backtest/).
"""
