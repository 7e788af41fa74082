"""SAML 2.0 Web Browser SSO protocol engine (Service Provider side).

Import from the submodules: ``auth`` for the session controller,
``config`` (in ``samlsp.core``) for settings, and the lower layers
(``bindings``, ``signature``, ``response``, ``validation``) directly.
"""
