"""
Core Package

Settings, logging, error handling and the audit trail.
"""
