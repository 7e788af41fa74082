"""samlsp - SAML 2.0 Web Browser SSO engine for Service Providers."""

__version__ = "0.1.0"
