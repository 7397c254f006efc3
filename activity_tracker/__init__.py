"""Activity Time Tracker: local-first time tracking with an optional spreadsheet mirror."""
