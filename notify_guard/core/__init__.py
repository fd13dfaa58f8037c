"""
Core modules for Notify Guard.

This package contains quota enforcement, VAPID signing, Web Push
dispatch, notification fan-out and preference rules.
"""
