"""Transport adapters for delivering payloads to the tax authority."""
