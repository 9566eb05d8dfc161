"""Domain events emitted by the message mutation service."""
