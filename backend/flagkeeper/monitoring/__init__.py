"""
Monitoring Package

Prometheus metrics for flag mutations and evaluations.
"""
