"""
Event handling components.

Inbound operation models and the Event Gateway that turns them into
broadcasts.
"""
