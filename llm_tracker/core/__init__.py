"""
Core modules for LLM Tracker.

This package contains rate resolution, cost calculation, usage
tracking and analytics.
"""
