"""
Domain layer containing core business logic and domain services.

Submodules:
- live: Live media domain logic (room, peers, broadcast pipeline).
"""
