"""Core layer: settings, exceptions, database primitives and shared schemas."""
