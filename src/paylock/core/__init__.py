"""Core building blocks: configuration, errors, logging, types and the REST client."""
