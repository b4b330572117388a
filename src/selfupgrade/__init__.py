"""
selfupgrade - self-update orchestrator for a Python-packaged command-line tool.

This package decides whether an upgrade may run, checks a package index for a
newer release, downloads and verifies it, makes sure no conflicting process is
running, invokes the installer, and always cleans up downloaded assets.
"""

__version__ = "0.1.0"
