"""Event relay - the consuming side of the broker queue.

Learn: the relay runs inside the API process as a background task. It
reads envelopes through BrokerListener and republishes each event onto
the live feed topics of every recipient.
"""

from parley.relay.consumer import ConsumerHandlerError, EventRelay, RelayStats

__all__ = ["ConsumerHandlerError", "EventRelay", "RelayStats"]
