"""Cactoide: event RSVPs with optional instance federation."""
