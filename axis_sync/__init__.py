"""
Axis Sync - two-way synchronization between local tasks and Google Calendar
"""

__version__ = "1.0.0"
