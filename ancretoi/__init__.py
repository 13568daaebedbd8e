"""
Ancre-toi API
=============

Backend of the Ancre-toi course platform: learner runner, admin back-office,
blog and newsletter.
"""

__version__ = "1.0.0"
