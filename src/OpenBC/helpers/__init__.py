"""Helpers for the MPI worker entry point and in-process component tests."""
