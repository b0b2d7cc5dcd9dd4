"""Messaging — the queue that drives asynchronous processing."""
