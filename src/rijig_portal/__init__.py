"""
rijig_portal: Onboarding and login core of the Rijig waste-management portal.

Server-held session, pengelola registration state machine, OTP/PIN step
handlers and the guards protecting the dashboards.
"""

__version__ = "0.1.0"
