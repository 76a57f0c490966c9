"""
xssprobe - reflected and DOM XSS probe engine.
"""

__version__ = "1.0.0"
