"""Merged calendar over CRM appointments and Google Calendar.

events.py defines the unified CalendarEvent and one converter per source,
aggregator.py holds the per-source merge, feed.py connects the sources
(Firestore listeners and the listCalendarEvents function), and
preferences.py stores the user's month/day view.
"""
