"""
Utility modules for the clinic planning application.

This package contains shared helpers used across the application: the
clinic clock and HH:MM time handling (datetime_utils) and ISO week and
workday arithmetic (calendar_math).
"""
