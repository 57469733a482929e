"""Flagkeeper: feature flag management and evaluation."""
