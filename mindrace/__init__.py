"""
Host side of the MindRace two-player headset race.

Reads both competitors' devices over serial, decodes their JSON lines and
keeps the race state until a winner is known.
"""

__version__ = "0.3.0"
