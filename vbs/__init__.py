"""
VBS - Virtual Based Scenography

AI-driven project builder: describe a backend/frontend project in one line,
and VBS analyzes, configures, generates, installs, launches, tests and
documents it on a Linux host.
"""

__version__ = "2.1.0"
