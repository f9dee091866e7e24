"""Keeps an idle agent connected to a game server and answers uptime pings."""

__version__ = '1.0.0'
