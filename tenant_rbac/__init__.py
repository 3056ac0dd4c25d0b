"""Multi-tenant permission evaluation and caching service."""
