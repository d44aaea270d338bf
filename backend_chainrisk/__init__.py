"""
Backend ChainRisk: transaction graph risk and clustering engine.

Pure analytic functions over a materialized transaction graph snapshot:
critical-path flags, temporal/value/circular clusters, funding sources,
wallet and transaction risk scores, anomaly and pattern reports, risk trend
predictions and entity clustering. The engine performs no I/O besides logging.
"""

__version__ = "0.1.0"
