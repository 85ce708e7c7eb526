"""
Chat Harvest
Normalizes live chat, donation and viewer events from many streaming
platforms into one canonical stream for overlays and dashboards
"""

__version__ = "0.1.0"
