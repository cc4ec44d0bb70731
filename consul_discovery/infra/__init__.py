"""Infrastructure: Consul client, discovery, logging and metrics."""
