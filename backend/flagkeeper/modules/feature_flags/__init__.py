"""
Feature flag definitions, evaluation and the mutation protocol.
"""
