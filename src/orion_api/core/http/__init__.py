"""HTTP plumbing: session cookies, auth dependencies, error translation."""
