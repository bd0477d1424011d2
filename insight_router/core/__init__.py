"""
Core modules for Insight Router.

This package contains request fingerprinting, the result cache, the local
classifier, usage metering, feedback learning and the routing engine.
"""
