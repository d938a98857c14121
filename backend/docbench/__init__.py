"""docbench: multi-model structured extraction benchmarking service."""
