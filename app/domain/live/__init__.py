"""
Live media domain logic.

Includes:
- room: Peer registry and the room orchestrating signaling operations.
- broadcast: Broadcast pipeline bridging producers into the transcoder.
"""
