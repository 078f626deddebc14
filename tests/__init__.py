"""Tests for the staff sync service"""
