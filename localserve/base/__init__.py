"""Base package: configuration shared by the manager, the control API and the CLI."""
