"""fedgate - SAML2 to OAuth2 federation bridge."""

__version__ = "0.1.0"
