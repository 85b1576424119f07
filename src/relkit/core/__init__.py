"""Core components for relkit: values, configuration, pools, execution and models."""
