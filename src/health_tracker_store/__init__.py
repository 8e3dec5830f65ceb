"""
Health Tracker Store - Local-first data store for a personal tracking app.

Owns on-device persistence of workouts, nutrition, metrics, goals and
settings, keeps them normalized across schema versions, and mirrors them
to a per-account remote document.
"""

__version__ = "0.1.0"
