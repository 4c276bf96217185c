"""
Form builder backend.

WHY: Top-level package for the form builder API. The billing subsystem
(plan changes, cancellation, trial handling) lives under services/.
"""

__version__ = "0.1.0"
