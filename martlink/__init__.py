"""martlink: trackable short links per mart/creative, mart sync and click reports."""

__version__ = "0.1.0"
