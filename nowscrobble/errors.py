"""Error taxonomy shared by the tracker, the queue and the backends."""


class ScrobblerError(Exception): ...


class ConfigError(ScrobblerError):
    """Invalid configuration detected at load time."""


class TrackerInvariantViolation(ScrobblerError):
    """A sample that cannot be applied to the current session."""


class PollError(ScrobblerError): ...


# Delivery errors are raised by backend adapters so the queue can branch
class DeliveryError(ScrobblerError): ...
class RetryableDeliveryError(DeliveryError): ...
class PermanentDeliveryError(DeliveryError): ...


class QueueCorruptError(ScrobblerError): ...
class StoreCorruptError(ScrobblerError): ...
