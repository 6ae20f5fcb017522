# qrlens/__init__.py

"""
QR Lens: point at an image on a page, a file or the clipboard, get the
QR payload back, and optionally score it for phishing signals.
"""

__version__ = "0.1.0"
