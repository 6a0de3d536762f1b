"""Core (UI-agnostic) logic for the biota metal trends dashboard.

This package contains:
- data loading (XLSX -> wide pandas frame -> long Measurement table)
- view parameter normalization
- aggregation and trend estimation (OLS, LOESS, Durbin-Watson)
- page compute functions (payloads of frames + Vega-Lite specs)
- view controllers wiring params to compute and render
"""
