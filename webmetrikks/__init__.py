"""WebMetrikks - access log statistics with visitor country breakdowns."""

__version__ = "0.1.0"
