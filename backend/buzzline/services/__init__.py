"""Game engine services: lobby lifecycle, question flow, arbitration,
judging, presence and broadcasting.

HTTP routes and socket handlers import from here, keeping transport
concerns separated from the core game mechanics.
"""
