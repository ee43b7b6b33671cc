"""
Test suite for the DocBook Appointment Service.

Contains unit tests for the booking ledger and authorization table, and
API tests for the HTTP surface.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
