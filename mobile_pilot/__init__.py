"""
Mobile Pilot - plan-driven UI automation for Android apps
"""

__version__ = "0.1.0"
