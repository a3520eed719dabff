"""
Networked tic-tac-toe
=====================
A server pairs incoming connections two at a time and referees a game
between them over a fixed-size binary protocol; a terminal client plays it.
"""

__version__ = "1.0.0"
