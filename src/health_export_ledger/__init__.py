"""
Health Export Ledger - Reconciliation and trend analysis for health exports.

Merges per-metric CSV exports (weight, steps, sleep, calories, macros, food logs)
into canonical daily tables, loads them into a SQL store, and serves
aggregated trend queries over the result.
"""

__version__ = "0.1.0"
