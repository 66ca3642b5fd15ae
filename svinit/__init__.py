"""A small init system with service supervision: init, runsvdir, runsv, logon and utmpset."""

__version__ = "0.1.0"