"""
Volume Divergence Flag (VDF): hidden accumulation detector.

Core components:
- engines/: daily aggregation, window scoring, zone clustering,
  distribution clusters, proximity signals, orchestrator
- data/: minute-bar fetch client
- services/: batch scan across many tickers
"""
