"""Core logic: domain model, ports, services and use cases."""
