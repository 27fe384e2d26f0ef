"""Deploy and teardown state machines."""
