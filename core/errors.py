"""Error taxonomy shared by config, transport, and camera layers."""


class SyncError(Exception):
    pass


class ConfigError(SyncError):
    """Invalid configuration; fatal at startup."""


class TransportError(SyncError):
    """Connection or receive failure on the trigger transport."""


class AcquisitionError(SyncError):
    """Frame source failure; fatal for the affected capture session."""


__all__ = ["SyncError", "ConfigError", "TransportError", "AcquisitionError"]
