"""Relational store access."""
