"""Credential-injecting pass-through relay for the OpenAI API."""
