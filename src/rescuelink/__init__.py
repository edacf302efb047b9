"""
RescueLink - Emergency SOS Response Coordination Engine

Matches distress signals with verified civilian responders and drives
each rescue from the first SOS to completion.
"""

__version__ = "1.0.0"
