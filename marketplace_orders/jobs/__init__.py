"""Batch jobs run by the external scheduler."""
