"""ADELE edge: request admission and observability."""
