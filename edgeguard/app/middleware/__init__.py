"""Middleware package for the edge filter."""
