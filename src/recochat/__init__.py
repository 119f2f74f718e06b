"""
recochat — Conversational product recommendation client.

Sends shopper messages to a remote recommendation agent, retries while the
service warms up, turns loosely formatted replies into recommendation cards
and keeps a local history of conversations.
"""

__version__ = "1.0.0"
