"""Persistent schema for kzsync."""
