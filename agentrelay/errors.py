"""Error taxonomy for conversation turns.

Only ``ProtocolError`` ever reaches the client (as an ``error`` event). The
others are contained where they happen: worker failures become failed tasks,
transport and persistence failures are logged and the turn carries on.
"""


class AgentRelayError(Exception):
    pass


class ProtocolError(AgentRelayError):
    """Malformed inbound payload or a conversation that was never initialized."""


class WorkerError(AgentRelayError):
    """A specialist worker could not produce a result for its task."""


class TransportError(AgentRelayError):
    """An event could not be delivered to the client connection."""


class PersistenceError(AgentRelayError):
    """A write to one of the storage collaborators failed."""
