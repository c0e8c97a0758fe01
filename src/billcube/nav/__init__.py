"""
Navigation module: Cube state controller for interactive exploration.
"""

from billcube.nav.session import CubeSession, SessionStep

__all__ = ["CubeSession", "SessionStep"]
