"""stepkeeper - session step tracking that survives process restarts.

Turns cumulative step counter readings from a motion sensor stream and/or
a polled health-data provider into session deltas, keeps a ledger of
completed sessions, and recovers accurately after the process is killed.
"""

__version__ = "0.1.0"
