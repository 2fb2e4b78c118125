"""
Session Broker Service: keeps the game server's service token fresh and
resolves connecting players to their teams.
"""

__version__ = "0.1.0"
