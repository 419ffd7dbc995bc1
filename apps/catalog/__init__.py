"""Catalog app package.

Services and bundles offered for booking. The composer computes a
bundle's duration, price and per-service timing from its rules.
"""
