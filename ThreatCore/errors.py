class ThreatCoreError(Exception):
    """Base class for errors raised by the decision core"""


class ValidationError(ThreatCoreError, ValueError):
    """Input rejected before any state was changed"""


class NotFoundError(ThreatCoreError, LookupError):
    """Referenced model version, verdict, feedback, adjustment or test does not exist"""


class TransientStoreError(ThreatCoreError):
    """Storage failure on a path that must not silently drop data"""
