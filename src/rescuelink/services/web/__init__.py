"""HTTP surface for RescueLink"""

from .sos_api import SOSWebService

__all__ = ['SOSWebService']
