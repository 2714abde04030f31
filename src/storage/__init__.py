"""
Detection Snapshot Sync - Storage Module

This module handles data storage and retrieval.
"""

from .database import DetectionStore, EXPECTED_SCHEMA_VERSION

__all__ = ['DetectionStore', 'EXPECTED_SCHEMA_VERSION']
