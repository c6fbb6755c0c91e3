"""Lidar localization: sensor synchronisation, ENU conversion, LOAM features, messaging and evaluation."""

__version__ = "0.1.0"