"""Core types, schemas and text helpers."""
