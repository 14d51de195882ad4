"""EUSign - qualified electronic signature client.

Orchestrates a cryptographic service provider (signing, signature
introspection, key and certificate handling) and stages the per-user
files the provider expects on disk: certificate caches and provider
configuration generated from per-issuer templates.

Note: The bundled SoftwareProvider is non-qualified and intended for
development and testing. Qualified signatures require the issuer's
certified provider library behind the Provider interface.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
