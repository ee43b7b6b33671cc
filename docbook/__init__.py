"""
DocBook Appointment Service

A FastAPI service where customers book appointments with approved doctors,
doctors confirm them, and admins approve doctors and oversee bookings.
"""

__version__ = "1.0.0"
