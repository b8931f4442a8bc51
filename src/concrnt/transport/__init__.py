"""HTTP transport: timed fetch and credential attachment."""
