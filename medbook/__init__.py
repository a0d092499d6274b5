"""Appointment lifecycle and scheduling engine for the clinic booking app."""

__version__ = "0.4.0"
